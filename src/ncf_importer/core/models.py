"""Dataclasses describing the core domain objects used by the importer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional


PRODUCT = "product"
CLIENT = "client"
MATCH_TYPES = (PRODUCT, CLIENT)

NCF_SENTINEL = "0000"


@dataclass
class Product:
    id: str
    name: str
    percentage: float = 0.0


@dataclass
class Client:
    id: str
    name: str


@dataclass
class ManualMatch:
    """Human confirmed correspondence between a CSV name and a catalogue entity."""

    id: str
    match_type: str
    csv_name: str
    matched_id: str
    matched_name: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "match_type": self.match_type,
            "csv_name": self.csv_name,
            "matched_id": self.matched_id,
            "matched_name": self.matched_name,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ManualMatch":
        return cls(
            id=str(data["id"]),
            match_type=data["match_type"],
            csv_name=data["csv_name"],
            matched_id=str(data["matched_id"]),
            matched_name=data.get("matched_name") or "",
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


@dataclass
class Resolution:
    """Outcome of resolving one free-text name against the catalogue."""

    entity_id: Optional[str] = None
    entity_name: Optional[str] = None
    source: str = "unresolved"
    score: float = 0.0

    @property
    def resolved(self) -> bool:
        return self.entity_id is not None


@dataclass
class CsvRow:
    """One data line of an import file.

    ``field_errors`` hold structural and parsing problems and never change
    after parsing.  ``resolution_errors`` are owned by the resolver and are
    rebuilt every time the row is resolved again.
    """

    line_number: int
    ncf_raw: str = ""
    date_raw: str = ""
    client_raw: str = ""
    product_raw: str = ""
    quantity_raw: str = ""
    price_raw: str = ""
    ncf_suffix: str = ""
    date: Optional[date] = None
    quantity: Optional[float] = None
    unit_price: Optional[float] = None
    is_offer: bool = False
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    product_source: str = "unresolved"
    product_score: float = 0.0
    client_id: Optional[str] = None
    client_name: Optional[str] = None
    client_source: str = "unresolved"
    client_score: float = 0.0
    field_errors: List[str] = field(default_factory=list)
    resolution_errors: List[str] = field(default_factory=list)

    @property
    def errors(self) -> List[str]:
        return [*self.field_errors, *self.resolution_errors]

    @property
    def is_valid(self) -> bool:
        return not self.field_errors and not self.resolution_errors

    @property
    def error_text(self) -> str:
        return "; ".join(self.errors)

    @property
    def product_resolved(self) -> bool:
        return self.product_id is not None

    @property
    def client_resolved(self) -> bool:
        return self.client_id is not None


@dataclass
class GroupedInvoice:
    ncf_suffix: str
    date: Optional[date]
    client_id: Optional[str]
    client_name: str
    rows: List[CsvRow] = field(default_factory=list)
    has_errors: bool = False
    total: float = 0.0
    gross_total: float = 0.0

    @property
    def is_eligible(self) -> bool:
        return bool(self.rows) and not self.has_errors

    @property
    def error_text(self) -> str:
        messages = []
        for row in self.rows:
            for error in row.errors:
                messages.append(f"Línea {row.line_number}: {error}")
        return "; ".join(messages)


@dataclass
class InvoiceLine:
    product_id: str
    quantity: float
    unit_price: float
    is_offer: bool
    product_name: Optional[str] = None
    percentage: float = 0.0
    gross_amount: float = 0.0
    net_amount: float = 0.0
    commission: float = 0.0


@dataclass
class InvoiceCommand:
    """Normalised invoice creation request handed to the persistence layer."""

    ncf: str
    ncf_suffix: str
    date: date
    client_id: Optional[str]
    lines: List[InvoiceLine]
    gross_total: float = 0.0
    net_total: float = 0.0
    total_commission: float = 0.0

    def to_dict(self) -> dict:
        return {
            "ncf": self.ncf,
            "ncf_suffix": self.ncf_suffix,
            "date": self.date.isoformat(),
            "client_id": self.client_id,
            "gross_total": self.gross_total,
            "net_total": self.net_total,
            "total_commission": self.total_commission,
            "lines": [
                {
                    "product_id": line.product_id,
                    "product_name": line.product_name,
                    "quantity": line.quantity,
                    "unit_price": line.unit_price,
                    "is_offer": line.is_offer,
                    "percentage": line.percentage,
                    "gross_amount": line.gross_amount,
                    "net_amount": line.net_amount,
                    "commission": line.commission,
                }
                for line in self.lines
            ],
        }


@dataclass
class CommitResult:
    ncf: str
    ncf_suffix: str
    success: bool
    invoice_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class PendingName:
    """A distinct unresolved name waiting for a manual assignment."""

    match_type: str
    csv_name: str
    normalized: str
    line_numbers: List[int] = field(default_factory=list)
    suggestions: List["Suggestion"] = field(default_factory=list)


@dataclass
class Suggestion:
    entity_id: str
    entity_name: str
    score: float


@dataclass
class ImportSummary:
    total_rows: int
    valid_rows: int
    invalid_rows: int
    resolved_products: int
    unresolved_products: int
    resolved_clients: int
    unresolved_clients: int
    groups: int
    eligible_groups: int
    state: str

    def to_dict(self) -> dict:
        return dict(self.__dict__)


__all__ = [
    "PRODUCT",
    "CLIENT",
    "MATCH_TYPES",
    "NCF_SENTINEL",
    "Product",
    "Client",
    "ManualMatch",
    "Resolution",
    "CsvRow",
    "GroupedInvoice",
    "InvoiceLine",
    "InvoiceCommand",
    "CommitResult",
    "PendingName",
    "Suggestion",
    "ImportSummary",
]
