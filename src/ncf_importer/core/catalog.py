"""Catalogue access: products and clients the importer resolves names against."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

import pandas as pd

from .models import Client, Product
from .parser import split_lines
from .utils import normalize_text


LOGGER = logging.getLogger(__name__)

DEFAULT_PERCENTAGE = 25.0


class CatalogProvider(ABC):
    """Read-only source of the current products and clients."""

    @abstractmethod
    def products(self) -> List[Product]:
        ...

    @abstractmethod
    def clients(self) -> List[Client]:
        ...


class StaticCatalog(CatalogProvider):
    def __init__(self, products: Iterable[Product] = (), clients: Iterable[Client] = ()) -> None:
        self._products = list(products)
        self._clients = list(clients)

    def products(self) -> List[Product]:
        return list(self._products)

    def clients(self) -> List[Client]:
        return list(self._clients)


def _sanitise_column(name: str) -> str:
    return normalize_text(name).replace(" ", "_")


def _read_table(path: Path) -> pd.DataFrame:
    if path.suffix.lower() in {".xlsx", ".xlsm", ".xls"}:
        df = pd.read_excel(path, engine="openpyxl", dtype=str)
    else:
        df = pd.read_csv(path, dtype=str, encoding="utf-8-sig")
    df.columns = [_sanitise_column(str(col)) for col in df.columns]
    return df.fillna("")


class FileCatalogProvider(CatalogProvider):
    """Load the catalogue from CSV or Excel exports of the products/clients tables."""

    COLUMN_MAPPING = {
        "id": "id",
        "codigo": "id",
        "cod": "id",
        "name": "name",
        "nombre": "name",
        "producto": "name",
        "product": "name",
        "cliente": "name",
        "client": "name",
        "percentage": "percentage",
        "porcentaje": "percentage",
        "comision": "percentage",
    }

    def __init__(self, products_file: Optional[Path], clients_file: Optional[Path] = None) -> None:
        self.products_file = Path(products_file) if products_file else None
        self.clients_file = Path(clients_file) if clients_file else None

    def _records(self, path: Optional[Path]) -> List[dict]:
        if path is None:
            return []
        if not path.exists():
            raise FileNotFoundError(f"Catalogue file not found: {path}")
        df = _read_table(path)
        records = []
        for _, row in df.iterrows():
            data = {self.COLUMN_MAPPING.get(col, col): str(row[col]).strip() for col in row.index}
            if not data.get("id") or not data.get("name"):
                continue
            records.append(data)
        return records

    def products(self) -> List[Product]:
        products = []
        for data in self._records(self.products_file):
            try:
                percentage = float(data.get("percentage", "").replace(",", ".") or 0)
            except ValueError:
                LOGGER.warning("Invalid percentage '%s' for product %s", data.get("percentage"), data["id"])
                percentage = 0.0
            products.append(Product(id=data["id"], name=data["name"], percentage=percentage))
        LOGGER.info("Loaded %s products from %s", len(products), self.products_file)
        return products

    def clients(self) -> List[Client]:
        clients = [Client(id=data["id"], name=data["name"]) for data in self._records(self.clients_file)]
        if self.clients_file:
            LOGGER.info("Loaded %s clients from %s", len(clients), self.clients_file)
        return clients


@dataclass
class ParsedProduct:
    name: str
    percentage: float
    is_new: bool
    line_number: int
    error: Optional[str] = None


def parse_product_list(
    text: str,
    existing_names: Iterable[str],
    default_percentage: float = DEFAULT_PERCENTAGE,
) -> List[ParsedProduct]:
    """Parse a one column product list for bulk catalogue creation.

    The first non blank line is the header.  Only the first column is read.
    A name repeated inside the file is reported as a duplicate; names already
    in the catalogue are kept but flagged ``is_new=False``.
    """

    existing = {normalize_text(name) for name in existing_names}
    seen = set()
    parsed: List[ParsedProduct] = []

    for line_number, line in split_lines(text)[1:]:
        name = line.split(",")[0].strip()
        if not name:
            continue
        key = normalize_text(name)
        if key in seen:
            parsed.append(
                ParsedProduct(
                    name=name,
                    percentage=default_percentage,
                    is_new=False,
                    line_number=line_number,
                    error="Duplicado en el archivo",
                )
            )
            continue
        seen.add(key)
        parsed.append(
            ParsedProduct(name=name, percentage=default_percentage, is_new=key not in existing, line_number=line_number)
        )

    return parsed


__all__ = [
    "DEFAULT_PERCENTAGE",
    "CatalogProvider",
    "StaticCatalog",
    "FileCatalogProvider",
    "ParsedProduct",
    "parse_product_list",
]
