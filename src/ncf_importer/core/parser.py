"""Parser turning raw CSV exports into validated :class:`CsvRow` objects."""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Sequence

from .fields import extract_ncf_suffix, parse_date, parse_price, parse_quantity
from .models import NCF_SENTINEL, CsvRow
from .utils import normalize_text


LOGGER = logging.getLogger(__name__)

EXPECTED_COLUMNS = ("NCF_SUFFIX", "FECHA", "CLIENTE", "PRODUCTO", "CANTIDAD", "PRECIO_UNITARIO")
COLUMN_COUNT = len(EXPECTED_COLUMNS)

COLUMN_POLICIES = ("exact", "at_least")

HEADER_PATTERN = re.compile(
    r"^(ncf|ncf[ _]?suffix|suffix|fecha|date|cliente|client|producto|product|cantidad|qty|quantity"
    r"|precio|precio[ _]?unitario|price|unit[ _]?price)$",
    re.IGNORECASE,
)
HEADER_MIN_MATCHES = 3


def split_lines(text: str) -> List[tuple]:
    """Return ``(line_number, stripped_line)`` pairs for every non blank line."""

    text = (text or "").lstrip("\ufeff")
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    pairs = []
    for index, line in enumerate(text.split("\n"), start=1):
        stripped = line.strip()
        if stripped:
            pairs.append((index, stripped))
    return pairs


def is_header(cells: Sequence[str]) -> bool:
    if not cells:
        return False
    if HEADER_PATTERN.match(cells[0].strip()):
        return True
    hits = sum(1 for cell in cells if HEADER_PATTERN.match(cell.strip()))
    return hits >= HEADER_MIN_MATCHES


class CsvRecordParser:
    """Read the fixed six column invoice layout.

    Rows are never dropped for being malformed: a row with the wrong column
    count or unreadable values is still returned, flagged invalid, so the
    user can see what was rejected.  Errors accumulate on the row.
    """

    def __init__(self, *, column_policy: str = "exact", zero_price_is_offer: bool = True) -> None:
        if column_policy not in COLUMN_POLICIES:
            raise ValueError(f"Unsupported column policy '{column_policy}'. Valid values: {list(COLUMN_POLICIES)}")
        self.column_policy = column_policy
        self.zero_price_is_offer = zero_price_is_offer

    def parse(self, text: str) -> List[CsvRow]:
        rows: List[CsvRow] = []
        skipped_headers = 0
        for line_number, line in split_lines(text):
            cells = [cell.strip() for cell in line.split(",")]
            if is_header(cells):
                skipped_headers += 1
                continue
            rows.append(self.parse_row(line_number, cells))

        LOGGER.info(
            "Parsed %s rows (%s invalid, %s header lines skipped)",
            len(rows),
            sum(1 for row in rows if not row.is_valid),
            skipped_headers,
        )
        return rows

    def parse_row(self, line_number: int, cells: Sequence[str]) -> CsvRow:
        padded = list(cells[:COLUMN_COUNT]) + [""] * (COLUMN_COUNT - len(cells))
        ncf, fecha, cliente, producto, cantidad, precio = padded
        row = CsvRow(
            line_number=line_number,
            ncf_raw=ncf,
            date_raw=fecha,
            client_raw=cliente,
            product_raw=producto,
            quantity_raw=cantidad,
            price_raw=precio,
        )

        errors = row.field_errors
        error = self._column_error(len(cells))
        if error:
            errors.append(error)

        if not ncf:
            errors.append("NCF vacío")
        else:
            row.ncf_suffix = extract_ncf_suffix(ncf)
            if not row.ncf_suffix or row.ncf_suffix == NCF_SENTINEL:
                errors.append("NCF inválido")

        if not fecha:
            errors.append("Fecha vacía")
        else:
            row.date = parse_date(fecha)
            if row.date is None:
                errors.append("Fecha inválida")

        if not producto:
            errors.append("Producto vacío")
        elif not normalize_text(producto):
            errors.append("Producto inválido")

        if not cantidad:
            errors.append("Cantidad vacía")
        else:
            quantity = parse_quantity(cantidad)
            if quantity is None:
                errors.append("Cantidad debe ser número > 0")
            else:
                row.quantity = quantity

        if not precio:
            errors.append("Precio vacío")
        else:
            self._apply_price(row, parse_price(precio))

        return row

    def _column_error(self, count: int) -> Optional[str]:
        if count < COLUMN_COUNT:
            return f"Faltan columnas (tiene {count}, necesita {COLUMN_COUNT})"
        if count > COLUMN_COUNT and self.column_policy == "exact":
            return f"Sobran columnas (tiene {count}, necesita {COLUMN_COUNT})"
        return None

    def _apply_price(self, row: CsvRow, price: Optional[float]) -> None:
        if price is None:
            row.field_errors.append("Precio debe ser número >= 0")
            return
        if price == 0:
            if not self.zero_price_is_offer:
                row.field_errors.append("Precio debe ser número > 0")
                return
            row.is_offer = True
        row.unit_price = price


__all__ = [
    "EXPECTED_COLUMNS",
    "COLUMN_COUNT",
    "COLUMN_POLICIES",
    "CsvRecordParser",
    "is_header",
    "split_lines",
]
