"""
Employee repository: salesperson roster used for name resolution and aggregates.
"""
from typing import Dict, List

import pandas as pd

from salesboard.exceptions import QueryTimeoutError, StoreError, StoreWriteFailure
from salesboard.models import EmployeeRecord
from salesboard.observability import get_logger
from salesboard.repositories.base import BaseRepository

logger = get_logger(__name__)

EMPLOYEE_COLUMNS = (
    "id, first_name, last_name, email, phone, department, position, "
    "is_active, created_at, updated_at"
)


def _row_to_employee(row: tuple) -> EmployeeRecord:
    return EmployeeRecord(
        id=row[0],
        first_name=row[1] or "",
        last_name=row[2] or "",
        email=row[3],
        phone=row[4],
        department=row[5],
        position=row[6],
        is_active=bool(row[7]),
        created_at=row[8],
        updated_at=row[9],
    )


class EmployeesRepository(BaseRepository):
    """Repository for employee records."""

    async def upsert_employees(self, employees: List[EmployeeRecord]) -> int:
        """
        Upsert employees in one transaction. created_at is kept on update.

        Raises:
            StoreWriteFailure: If the batch could not be committed
        """
        if not employees:
            return 0

        df = pd.DataFrame([{
            "id": e.id,
            "first_name": e.first_name,
            "last_name": e.last_name,
            "email": e.email,
            "phone": e.phone,
            "department": e.department,
            "position": e.position,
            "is_active": e.is_active,
            "created_at": e.created_at,
            "updated_at": e.updated_at,
        } for e in employees]).drop_duplicates(subset="id", keep="last")

        def _upsert(conn) -> int:
            conn.register("employees_batch", df)
            try:
                conn.execute("""
                    INSERT INTO employees
                    SELECT
                        id,
                        CAST(first_name AS VARCHAR),
                        CAST(last_name AS VARCHAR),
                        CAST(email AS VARCHAR),
                        CAST(phone AS VARCHAR),
                        CAST(department AS VARCHAR),
                        CAST(position AS VARCHAR),
                        CAST(is_active AS BOOLEAN),
                        CAST(created_at AS TIMESTAMP),
                        CAST(updated_at AS TIMESTAMP)
                    FROM employees_batch
                    ON CONFLICT (id) DO UPDATE SET
                        first_name = excluded.first_name,
                        last_name = excluded.last_name,
                        email = excluded.email,
                        phone = excluded.phone,
                        department = excluded.department,
                        position = excluded.position,
                        is_active = excluded.is_active,
                        updated_at = excluded.updated_at
                """)
            finally:
                conn.unregister("employees_batch")
            return len(df)

        try:
            written = await self._transaction(_upsert, "upsert_employees")
        except (StoreError, QueryTimeoutError) as e:
            raise StoreWriteFailure(
                "Employee batch rolled back", details=e.details, batch_size=len(df)
            ) from e

        logger.info(f"Upserted {written} employees")
        return written

    async def get_employees(self, active_only: bool = False) -> List[EmployeeRecord]:
        query = f"SELECT {EMPLOYEE_COLUMNS} FROM employees"
        if active_only:
            query += " WHERE is_active"
        query += " ORDER BY id"
        rows = await self._fetch_all(query)
        return [_row_to_employee(row) for row in rows]

    async def get_employee_directory(self) -> Dict[int, EmployeeRecord]:
        """All employees keyed by id."""
        return {e.id: e for e in await self.get_employees()}

    async def count_employees(self) -> int:
        row = await self._fetch_one("SELECT COUNT(*) FROM employees")
        return row[0] if row else 0
