"""
Revenue in the reference currency.

Pure functions over invoice snapshots; no I/O. Accepts InvoiceRecords or
the camelCase dicts served by the API, so the same code runs on the server
and in the dashboard loader.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from salesboard.config import config
from salesboard.models import InvoiceRecord, is_cancelled_status, parse_decimal


@dataclass
class RevenueSummary:
    """Revenue converted into one reference currency."""
    reference_currency: str
    total: Decimal = Decimal("0")
    invoice_count: int = 0
    cancelled_count: int = 0
    by_currency: Dict[str, Decimal] = field(default_factory=dict)
    converted_by_currency: Dict[str, Decimal] = field(default_factory=dict)
    # Invoices in currencies without a rate, not part of total
    unconverted: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "referenceCurrency": self.reference_currency,
            "total": str(self.total),
            "invoiceCount": self.invoice_count,
            "cancelledCount": self.cancelled_count,
            "byCurrency": {k: str(v) for k, v in self.by_currency.items()},
            "convertedByCurrency": {k: str(v) for k, v in self.converted_by_currency.items()},
            "unconverted": dict(self.unconverted),
        }


def conversion_factors(
    rates: Mapping[str, Decimal],
    reference: str,
) -> Dict[str, Decimal]:
    """
    Multipliers into the reference currency.

    Rates are units of a common base per one unit of each currency.

    Raises:
        ValueError: If the reference currency has no rate
    """
    if reference not in rates or not rates[reference]:
        raise ValueError(f"No conversion rate for reference currency {reference!r}")
    base = Decimal(rates[reference])
    return {currency: Decimal(rate) / base for currency, rate in rates.items()}


def _invoice_fields(invoice: Any) -> Tuple[Optional[Decimal], Optional[str], Optional[str]]:
    if isinstance(invoice, InvoiceRecord):
        return invoice.total, invoice.currency, invoice.status
    return (
        parse_decimal(invoice.get("total")),
        invoice.get("currency"),
        invoice.get("status"),
    )


def compute_revenue(
    invoices: Iterable[Any],
    rates: Optional[Mapping[str, Decimal]] = None,
    reference: Optional[str] = None,
) -> RevenueSummary:
    """
    Sum invoice totals in the reference currency, skipping cancelled invoices.

    Args:
        invoices: InvoiceRecords or API invoice dicts
        rates: Units of a common base per currency (defaults to config)
        reference: Reference currency (defaults to config)
    """
    reference = reference or config.currency.reference
    factors = conversion_factors(rates if rates is not None else config.currency.rates, reference)
    summary = RevenueSummary(reference_currency=reference)

    for invoice in invoices:
        total, currency, status = _invoice_fields(invoice)
        if is_cancelled_status(status):
            summary.cancelled_count += 1
            continue

        currency = (currency or config.currency.default).upper()
        total = total if total is not None else Decimal("0")
        summary.by_currency[currency] = summary.by_currency.get(currency, Decimal("0")) + total

        factor = factors.get(currency)
        if factor is None:
            summary.unconverted[currency] = summary.unconverted.get(currency, 0) + 1
            continue

        converted = total * factor
        summary.converted_by_currency[currency] = (
            summary.converted_by_currency.get(currency, Decimal("0")) + converted
        )
        summary.total += converted
        summary.invoice_count += 1

    return summary
