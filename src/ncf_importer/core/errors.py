"""Exceptions raised by the import pipeline and its collaborators."""

from __future__ import annotations


class ImporterError(Exception):
    """Base class for every error raised by the importer."""


class MatchStoreError(ImporterError):
    """A saved-match backend call failed."""


class MatchNotFoundError(MatchStoreError):
    def __init__(self, match_id: str) -> None:
        super().__init__(f"Saved match {match_id} not found")
        self.match_id = match_id


class PersistenceError(ImporterError):
    """The invoice persistence layer rejected or failed a write."""


class DuplicateInvoiceError(PersistenceError):
    def __init__(self, ncf: str) -> None:
        super().__init__(f"Ya existe una factura con este NCF: {ncf}")
        self.ncf = ncf


class ImportStateError(ImporterError):
    """An operation was requested in a state that does not allow it."""


__all__ = [
    "ImporterError",
    "MatchStoreError",
    "MatchNotFoundError",
    "PersistenceError",
    "DuplicateInvoiceError",
    "ImportStateError",
]
