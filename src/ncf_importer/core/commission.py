"""Commission breakdown for invoices ready to be persisted."""

from __future__ import annotations

from typing import Callable, Optional

from .errors import ImportStateError
from .fields import DEFAULT_NCF_PREFIX, full_ncf
from .models import GroupedInvoice, InvoiceCommand, InvoiceLine, Product
from .utils import round_money


def line_amounts(quantity: float, unit_price: float, is_offer: bool, percentage: float) -> tuple:
    """Return ``(gross, net, commission)`` for one line.

    Offer lines keep their gross value but carry no net amount, so they never
    earn commission.
    """

    gross = round_money(quantity * unit_price)
    net = 0.0 if is_offer else gross
    commission = round_money(net * percentage / 100.0)
    return gross, net, commission


def build_command(
    group: GroupedInvoice,
    product_lookup: Callable[[str], Optional[Product]],
    ncf_prefix: str = DEFAULT_NCF_PREFIX,
) -> InvoiceCommand:
    """Translate an eligible group into an invoice creation command."""

    if not group.is_eligible:
        raise ImportStateError(f"Invoice {group.ncf_suffix} is not eligible for import")
    if group.date is None:
        raise ImportStateError(f"Invoice {group.ncf_suffix} has no date")

    lines = []
    for row in group.rows:
        product = product_lookup(row.product_id)
        percentage = product.percentage if product else 0.0
        gross, net, commission = line_amounts(row.quantity, row.unit_price, row.is_offer, percentage)
        lines.append(
            InvoiceLine(
                product_id=row.product_id,
                product_name=row.product_name,
                quantity=row.quantity,
                unit_price=row.unit_price,
                is_offer=row.is_offer,
                percentage=percentage,
                gross_amount=gross,
                net_amount=net,
                commission=commission,
            )
        )

    return InvoiceCommand(
        ncf=full_ncf(group.ncf_suffix, ncf_prefix),
        ncf_suffix=group.ncf_suffix,
        date=group.date,
        client_id=group.client_id,
        lines=lines,
        gross_total=round_money(sum(line.gross_amount for line in lines)),
        net_total=round_money(sum(line.net_amount for line in lines)),
        total_commission=round_money(sum(line.commission for line in lines)),
    )


__all__ = ["line_amounts", "build_command"]
