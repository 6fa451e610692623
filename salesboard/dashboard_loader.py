"""
Progressive dashboard loading.

`DashboardLoader.load()` returns the first bounded invoice page as soon as
it arrives. The heavier aggregates are scheduled at once as independent
asyncio tasks, each with its own pending/ready/error state. The only
ordering between them is data dependency: revenue waits for the full
invoice set.
"""
import asyncio
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Dict, List, Mapping, Optional

from salesboard.api_client import DashboardApiClient
from salesboard.observability import get_logger
from salesboard.revenue import compute_revenue

logger = get_logger(__name__)


class AggregateStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    ERROR = "error"


@dataclass
class AggregateState:
    """Progress of one background aggregate."""
    name: str
    status: AggregateStatus = AggregateStatus.PENDING
    value: Any = None
    error: Optional[BaseException] = None
    task: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def is_ready(self) -> bool:
        return self.status is AggregateStatus.READY

    @property
    def is_pending(self) -> bool:
        return self.status is AggregateStatus.PENDING


@dataclass
class DashboardView:
    """First page now, aggregates later."""
    first_page: Dict[str, Any]
    aggregates: Dict[str, AggregateState]
    background: List[asyncio.Task] = field(default_factory=list, repr=False)

    def __getitem__(self, name: str) -> AggregateState:
        return self.aggregates[name]

    async def wait(self) -> Dict[str, AggregateState]:
        """Wait until every aggregate is ready or failed."""
        tasks = [s.task for s in self.aggregates.values() if s.task] + self.background
        await asyncio.gather(*tasks, return_exceptions=True)
        return self.aggregates

    def cancel(self) -> None:
        for task in [s.task for s in self.aggregates.values() if s.task] + self.background:
            task.cancel()


class DashboardLoader:
    """
    Loads the dashboard the way the UI consumes it.

    Usage:
        loader = DashboardLoader(api)
        view = await loader.load(page=1, page_size=100)
        render(view.first_page)
        await view.wait()
        render(view["revenue"].value)
    """

    AGGREGATES = ("all_invoices", "revenue", "salespersons", "stats")

    def __init__(
        self,
        api: DashboardApiClient,
        period: str = "all",
        rates: Optional[Mapping[str, Decimal]] = None,
        reference: Optional[str] = None,
        preload_next: bool = True,
    ):
        self.api = api
        self.period = period
        self.rates = rates
        self.reference = reference
        self.preload_next = preload_next

    def _spawn(self, state: AggregateState, work: Awaitable[Any]) -> asyncio.Task:
        async def runner():
            try:
                value = await work
            except Exception as e:
                state.status = AggregateStatus.ERROR
                state.error = e
                logger.warning(f"Dashboard aggregate {state.name} failed: {e}")
                return None
            state.value = value
            state.status = AggregateStatus.READY
            return value

        state.task = asyncio.create_task(runner(), name=f"dashboard-{state.name}")
        return state.task

    async def _revenue(self, states: Dict[str, AggregateState]) -> Dict[str, Any]:
        source = states["all_invoices"]
        invoices = await source.task
        if source.status is AggregateStatus.ERROR:
            raise source.error
        summary = await asyncio.to_thread(compute_revenue, invoices, self.rates, self.reference)
        return summary.to_dict()

    async def load(
        self,
        page: int = 1,
        page_size: int = None,
        sort_by: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> DashboardView:
        """
        Fetch the first page and schedule the aggregates.

        Raises:
            DashboardAPIError: If the first page cannot be loaded
        """
        states = {name: AggregateState(name) for name in self.AGGREGATES}
        self._spawn(states["all_invoices"], self.api.get_all_invoices(sort_by=sort_by))
        self._spawn(states["revenue"], self._revenue(states))
        self._spawn(states["salespersons"], self.api.get_salespersons(period=self.period))
        self._spawn(states["stats"], self.api.get_stats())

        try:
            first_page = await self.api.get_invoices(page, page_size, sort_by, currency)
        except BaseException:
            for state in states.values():
                state.task.cancel()
            raise

        view = DashboardView(first_page=first_page, aggregates=states)
        if self.preload_next and first_page.get("hasNextPage"):
            view.background.append(asyncio.create_task(
                self.api.preload_next_page(page, page_size, sort_by, currency),
                name="dashboard-preload",
            ))
        return view
