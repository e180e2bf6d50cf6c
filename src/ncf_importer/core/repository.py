"""Persistence collaborators receiving finalised invoices."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Sequence

from .errors import DuplicateInvoiceError, PersistenceError
from .models import CommitResult, InvoiceCommand
from .utils import dump_json, load_json, utc_now_iso


LOGGER = logging.getLogger(__name__)


class InvoiceRepository(ABC):
    """Stores invoices; must reject an NCF that is already on record."""

    @abstractmethod
    async def create_invoice(self, command: InvoiceCommand) -> str:
        """Persist ``command`` and return the new invoice id.

        Raises :class:`DuplicateInvoiceError` when the NCF exists and
        :class:`PersistenceError` for any other failure.
        """

    async def create_invoices(self, commands: Sequence[InvoiceCommand]) -> List[CommitResult]:
        """Persist a batch.  One failing invoice does not stop the others."""

        results = []
        for command in commands:
            try:
                invoice_id = await self.create_invoice(command)
            except PersistenceError as exc:
                LOGGER.warning("Invoice %s rejected: %s", command.ncf, exc)
                results.append(CommitResult(ncf=command.ncf, ncf_suffix=command.ncf_suffix, success=False, error=str(exc)))
                continue
            results.append(CommitResult(ncf=command.ncf, ncf_suffix=command.ncf_suffix, success=True, invoice_id=invoice_id))
        return results


class JsonInvoiceRepository(InvoiceRepository):
    """Invoice ledger kept in a JSON file, one entry per committed invoice."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def _read(self) -> List[dict]:
        try:
            payload = load_json(self.path) or {}
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceError(f"Failed to read invoices from {self.path}: {exc}") from exc
        return list(payload.get("invoices", []))

    def list_invoices(self) -> List[dict]:
        return self._read()

    def exists(self, ncf: str) -> bool:
        return any(entry.get("ncf") == ncf for entry in self._read())

    async def create_invoice(self, command: InvoiceCommand) -> str:
        async with self._lock:
            invoices = self._read()
            if any(entry.get("ncf") == command.ncf for entry in invoices):
                raise DuplicateInvoiceError(command.ncf)

            invoice_id = uuid.uuid4().hex
            entry = command.to_dict()
            entry.update({"id": invoice_id, "created_at": utc_now_iso()})
            invoices.append(entry)
            try:
                dump_json(self.path, {"invoices": invoices})
            except OSError as exc:
                raise PersistenceError(f"Failed to persist invoice {command.ncf}: {exc}") from exc

        LOGGER.info("Saved invoice %s with %s lines", command.ncf, len(command.lines))
        return invoice_id


__all__ = ["InvoiceRepository", "JsonInvoiceRepository"]
