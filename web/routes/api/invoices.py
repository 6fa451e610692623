"""Invoice listing and sales aggregates."""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from salesboard.config import config
from salesboard.query_service import QueryService
from web.schemas import InvoicePageResponse, InvoiceResponse, RevenueResponse, SalespersonResponse
from ._deps import query_service_dep, require_token

router = APIRouter(dependencies=[Depends(require_token)])


@router.get("/invoices", response_model=InvoicePageResponse)
async def list_invoices(
    page: int = Query(1, description="1-based page number"),
    page_size: int = Query(
        None, alias="pageSize", description="Rows per page; -1 returns every invoice"
    ),
    sort_by: Optional[str] = Query(None, alias="sortBy", description="invoiceDate or creationDate"),
    currency: Optional[str] = Query(None, description="Currency filter; omit or 'All' for every currency"),
    service: QueryService = Depends(query_service_dep),
):
    result = await service.list_invoices(page, page_size, sort_by, currency)
    return result.to_dict()


@router.get("/invoices/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(invoice_id: int, service: QueryService = Depends(query_service_dep)):
    """A single stored invoice. 404 if it has not been synced."""
    record = await service.get_invoice(invoice_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Invoice {invoice_id} not found")
    return record.to_dict()


@router.get("/salespersons", response_model=List[SalespersonResponse])
async def salesperson_performance(
    period: Optional[str] = Query(None, description="all, daily, monthly, quarterly or yearly"),
    year: int = 0,
    month: int = 0,
    quarter: int = 0,
    service: QueryService = Depends(query_service_dep),
):
    """Per-employee totals for a period, highest first."""
    rows = await service.salesperson_performance(period, year, month, quarter)
    return [row.to_dict() for row in rows]


@router.get("/summary/revenue", response_model=RevenueResponse)
async def revenue_summary(service: QueryService = Depends(query_service_dep)):
    summary = await service.revenue_in_reference_currency(
        config.currency.rates, config.currency.reference
    )
    return summary.to_dict()
