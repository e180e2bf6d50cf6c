"""CSV outputs: the import template and review reports of an import session."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

import pandas as pd

from .models import CsvRow, GroupedInvoice, PendingName
from .parser import EXPECTED_COLUMNS
from .utils import ensure_directory


LOGGER = logging.getLogger(__name__)

TEMPLATE_ROWS = [
    ("0001", "2024-01-15", "Farmacia Central", "Producto A", "10", "150.00"),
    ("0001", "2024-01-15", "Farmacia Central", "Producto B", "5", "200.50"),
    ("0002", "2024-01-16", "Farmacia Norte", "Producto A", "8", "150.00"),
    ("0002", "2024-01-16", "Farmacia Norte", "Producto C", "3", "300.00"),
]

REVIEW_COLUMNS = [
    "Línea",
    "NCF",
    "Fecha",
    "Cliente",
    "Cliente ID",
    "Producto",
    "Producto ID",
    "Origen producto",
    "Cantidad",
    "Precio unitario",
    "Oferta",
    "Válida",
    "Errores",
]

INVOICE_COLUMNS = ["NCF", "Fecha", "Cliente", "Cliente ID", "Líneas", "Total neto", "Total bruto", "Importable", "Errores"]

PENDING_COLUMNS = ["Tipo", "Nombre CSV", "Líneas", "Sugerencias"]


def template_dataframe() -> pd.DataFrame:
    return pd.DataFrame(TEMPLATE_ROWS, columns=list(EXPECTED_COLUMNS))


def write_template(path: Path) -> Path:
    """Write the header plus example rows users fill in."""

    path = Path(path)
    ensure_directory(path.parent)
    template_dataframe().to_csv(path, index=False, encoding="utf-8")
    LOGGER.info("Template written to %s", path)
    return path


def template_text() -> str:
    return template_dataframe().to_csv(index=False)


def build_review_dataframe(rows: Iterable[CsvRow]) -> pd.DataFrame:
    records = [
        {
            "Línea": row.line_number,
            "NCF": row.ncf_suffix or row.ncf_raw,
            "Fecha": row.date.isoformat() if row.date else row.date_raw,
            "Cliente": row.client_name or row.client_raw,
            "Cliente ID": row.client_id or "",
            "Producto": row.product_name or row.product_raw,
            "Producto ID": row.product_id or "",
            "Origen producto": row.product_source,
            "Cantidad": row.quantity if row.quantity is not None else row.quantity_raw,
            "Precio unitario": row.unit_price if row.unit_price is not None else row.price_raw,
            "Oferta": row.is_offer,
            "Válida": row.is_valid,
            "Errores": row.error_text,
        }
        for row in rows
    ]
    return pd.DataFrame(records, columns=REVIEW_COLUMNS)


def build_invoice_dataframe(groups: Iterable[GroupedInvoice]) -> pd.DataFrame:
    records = [
        {
            "NCF": group.ncf_suffix,
            "Fecha": group.date.isoformat() if group.date else "",
            "Cliente": group.client_name,
            "Cliente ID": group.client_id or "",
            "Líneas": len(group.rows),
            "Total neto": group.total,
            "Total bruto": group.gross_total,
            "Importable": group.is_eligible,
            "Errores": group.error_text,
        }
        for group in groups
    ]
    return pd.DataFrame(records, columns=INVOICE_COLUMNS)


def build_pending_dataframe(pending: Iterable[PendingName]) -> pd.DataFrame:
    records = [
        {
            "Tipo": entry.match_type,
            "Nombre CSV": entry.csv_name,
            "Líneas": " ".join(str(number) for number in entry.line_numbers),
            "Sugerencias": " | ".join(
                f"{suggestion.entity_name} ({suggestion.score:.2f})" for suggestion in entry.suggestions
            ),
        }
        for entry in pending
    ]
    return pd.DataFrame(records, columns=PENDING_COLUMNS)


def export_review(session, folder: Path, run_id: str) -> Tuple[Path, Path, Optional[Path]]:
    """Write row, invoice and pending-name reports for ``session``.

    The pending report is only written when something is unresolved.
    """

    folder = Path(folder)
    ensure_directory(folder)

    rows_path = folder / f"revision_filas_{run_id}.csv"
    build_review_dataframe(session.rows).to_csv(rows_path, index=False, encoding="utf-8-sig")

    invoices_path = folder / f"revision_facturas_{run_id}.csv"
    build_invoice_dataframe(session.groups).to_csv(invoices_path, index=False, encoding="utf-8-sig")

    pending: List[PendingName] = session.pending_names(with_suggestions=True)
    pending_path: Optional[Path] = None
    if pending:
        pending_path = folder / f"pendientes_{run_id}.csv"
        build_pending_dataframe(pending).to_csv(pending_path, index=False, encoding="utf-8-sig")

    LOGGER.info("Review reports written to %s", folder)
    return rows_path, invoices_path, pending_path


__all__ = [
    "TEMPLATE_ROWS",
    "template_dataframe",
    "template_text",
    "write_template",
    "build_review_dataframe",
    "build_invoice_dataframe",
    "build_pending_dataframe",
    "export_review",
]
