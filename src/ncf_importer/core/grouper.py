"""Aggregate parsed rows into invoices keyed by NCF suffix."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List

from .models import NCF_SENTINEL, CsvRow, GroupedInvoice
from .utils import round_money


LOGGER = logging.getLogger(__name__)


def group_rows(rows: Iterable[CsvRow]) -> List[GroupedInvoice]:
    """Group rows by NCF suffix.

    Rows without a usable suffix are left out.  Row order is kept inside a
    group and groups come back sorted by suffix.
    """

    groups: Dict[str, GroupedInvoice] = {}
    for row in rows:
        suffix = row.ncf_suffix
        if not suffix or suffix == NCF_SENTINEL:
            continue

        group = groups.get(suffix)
        if group is None:
            group = GroupedInvoice(ncf_suffix=suffix, date=None, client_id=None, client_name=row.client_raw)
            groups[suffix] = group
        group.rows.append(row)

        if group.date is None and row.date is not None:
            group.date = row.date
        if group.client_id is None and row.client_id is not None:
            group.client_id = row.client_id
            group.client_name = row.client_name or row.client_raw

        if not row.is_valid or not row.product_resolved:
            group.has_errors = True

        if row.product_resolved and row.quantity is not None and row.unit_price is not None:
            amount = row.quantity * row.unit_price
            group.gross_total += amount
            if not row.is_offer:
                group.total += amount

    for group in groups.values():
        group.total = round_money(group.total)
        group.gross_total = round_money(group.gross_total)

    result = sorted(groups.values(), key=lambda group: group.ncf_suffix)
    LOGGER.debug(
        "Grouped rows into %s invoices (%s eligible)", len(result), sum(1 for group in result if group.is_eligible)
    )
    return result


__all__ = ["group_rows"]
