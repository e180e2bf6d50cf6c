"""High level orchestration of the invoice import pipeline."""

from __future__ import annotations

import json
import logging
import uuid
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from ..config import Settings
from .catalog import CatalogProvider, FileCatalogProvider
from .commission import build_command
from .errors import ImportStateError, PersistenceError
from .grouper import group_rows
from .models import (
    CLIENT,
    MATCH_TYPES,
    PRODUCT,
    CommitResult,
    CsvRow,
    GroupedInvoice,
    ImportSummary,
    InvoiceCommand,
    PendingName,
)
from .parser import CsvRecordParser
from .repository import InvoiceRepository, JsonInvoiceRepository
from .resolver import Resolver
from .synonyms import HttpMatchStore, JsonMatchStore, MatchStore
from .utils import dump_json, normalize_text, now_timestamp


LOGGER = logging.getLogger(__name__)


class ImportState(str, Enum):
    IDLE = "idle"
    PARSING = "parsing"
    AWAITING_MANUAL_MATCHES = "awaiting_manual_matches"
    READY = "ready"
    NOTHING_TO_IMPORT = "nothing_to_import"
    COMMITTING = "committing"
    DONE = "done"
    PARTIALLY_FAILED = "partially_failed"
    FAILED = "failed"


TERMINAL_STATES = {ImportState.DONE, ImportState.PARTIALLY_FAILED, ImportState.FAILED}


class ImportSession:
    """One import of one file, from raw text to committed invoices.

    A session is single use: to start over, discard it and create a new one.
    The only awaited steps are the saved-match reads and writes and the
    final commit.
    """

    def __init__(
        self,
        catalog: CatalogProvider,
        store: MatchStore,
        repository: InvoiceRepository,
        *,
        parser: Optional[CsvRecordParser] = None,
        product_threshold: float = 0.62,
        client_threshold: float = 0.68,
        suggestion_count: int = 5,
        ncf_prefix: str = "B010000",
        commit_mode: str = "single",
    ) -> None:
        self.catalog = catalog
        self.store = store
        self.repository = repository
        self.parser = parser or CsvRecordParser()
        self.product_threshold = product_threshold
        self.client_threshold = client_threshold
        self.suggestion_count = suggestion_count
        self.ncf_prefix = ncf_prefix
        self.commit_mode = commit_mode

        self.state = ImportState.IDLE
        self.rows: List[CsvRow] = []
        self.groups: List[GroupedInvoice] = []
        self.results: List[CommitResult] = []
        self.resolver: Optional[Resolver] = None
        self._pending_writes = 0
        self._skipped_matches = False

    @property
    def pending_writes(self) -> int:
        return self._pending_writes

    @property
    def eligible_groups(self) -> List[GroupedInvoice]:
        return [group for group in self.groups if group.is_eligible]

    @property
    def can_commit(self) -> bool:
        return self.state == ImportState.READY and self._pending_writes == 0 and bool(self.eligible_groups)

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    async def load(self, text: str) -> List[CsvRow]:
        if self.state != ImportState.IDLE:
            raise ImportStateError(f"Session already used (state: {self.state.value}); start a new one")

        self.state = ImportState.PARSING
        try:
            self.resolver = Resolver(
                self.catalog.products(),
                self.catalog.clients(),
                self.store,
                product_threshold=self.product_threshold,
                client_threshold=self.client_threshold,
                suggestion_count=self.suggestion_count,
            )
            await self.resolver.prepare()
        except Exception:
            self.state = ImportState.IDLE
            raise

        self.rows = self.resolver.resolve_rows(self.parser.parse(text))
        self._regroup()
        LOGGER.info(
            "Loaded %s rows into %s invoices (%s eligible); state %s",
            len(self.rows),
            len(self.groups),
            len(self.eligible_groups),
            self.state.value,
        )
        return self.rows

    def _regroup(self) -> None:
        self.groups = group_rows(self.rows)
        if self.pending_names() and not self._skipped_matches:
            self.state = ImportState.AWAITING_MANUAL_MATCHES
        elif self.eligible_groups:
            self.state = ImportState.READY
        else:
            self.state = ImportState.NOTHING_TO_IMPORT

    @staticmethod
    def _raw_name(row: CsvRow, match_type: str) -> str:
        return row.product_raw if match_type == PRODUCT else row.client_raw

    @staticmethod
    def _is_unresolved(row: CsvRow, match_type: str) -> bool:
        if match_type == PRODUCT:
            return bool(normalize_text(row.product_raw)) and not row.product_resolved
        return bool(normalize_text(row.client_raw)) and not row.client_resolved

    def pending_names(self, match_type: Optional[str] = None, *, with_suggestions: bool = False) -> List[PendingName]:
        """Distinct unresolved names, in order of first appearance."""

        types = [match_type] if match_type else list(MATCH_TYPES)
        pending: Dict[tuple, PendingName] = {}
        for kind in types:
            for row in self.rows:
                if not self._is_unresolved(row, kind):
                    continue
                raw = self._raw_name(row, kind)
                key = (kind, normalize_text(raw))
                entry = pending.get(key)
                if entry is None:
                    entry = PendingName(match_type=kind, csv_name=raw, normalized=key[1])
                    if with_suggestions and self.resolver is not None:
                        entry.suggestions = self.resolver.suggestions(kind, raw)
                    pending[key] = entry
                entry.line_numbers.append(row.line_number)
        return list(pending.values())

    async def assign_match(self, match_type: str, csv_name: str, entity_id: str) -> int:
        """Save a manual match and apply it to every row with the same name.

        Returns the number of rows that were resolved again.  When the store
        write fails the error propagates and no row changes.
        """

        if self.state not in (ImportState.AWAITING_MANUAL_MATCHES, ImportState.READY, ImportState.NOTHING_TO_IMPORT):
            raise ImportStateError(f"Cannot assign matches in state {self.state.value}")

        self._pending_writes += 1
        try:
            match = await self.resolver.remember(match_type, csv_name, entity_id)
        finally:
            self._pending_writes -= 1

        affected = [row for row in self.rows if normalize_text(self._raw_name(row, match_type)) == match.csv_name]
        for row in affected:
            self.resolver.resolve_row(row)
        self._regroup()
        LOGGER.info("Manual %s match '%s' applied to %s rows", match_type, csv_name, len(affected))
        return len(affected)

    def skip_manual_matches(self) -> None:
        """Stop waiting for assignments and continue with what resolved."""

        if self.state != ImportState.AWAITING_MANUAL_MATCHES:
            raise ImportStateError(f"Nothing to skip in state {self.state.value}")
        self._skipped_matches = True
        self._regroup()

    def commands(self) -> List[InvoiceCommand]:
        return [build_command(group, self._product, self.ncf_prefix) for group in self.eligible_groups]

    def _product(self, product_id: str):
        return self.resolver.entity(PRODUCT, product_id) if self.resolver else None

    async def commit(self) -> List[CommitResult]:
        if self._pending_writes:
            raise ImportStateError("A manual match is still being saved; wait before committing")
        if self.state != ImportState.READY:
            raise ImportStateError(f"Cannot commit in state {self.state.value}")

        commands = self.commands()
        self.state = ImportState.COMMITTING
        LOGGER.info("Committing %s invoices (%s mode)", len(commands), self.commit_mode)

        if self.commit_mode == "batch":
            results = await self._commit_batch(commands)
        else:
            results = [await self._commit_one(command) for command in commands]

        self.results = results
        succeeded = sum(1 for result in results if result.success)
        if succeeded == len(results):
            self.state = ImportState.DONE
        elif succeeded == 0:
            self.state = ImportState.FAILED
        else:
            self.state = ImportState.PARTIALLY_FAILED
        LOGGER.info("Commit finished: %s saved, %s failed", succeeded, len(results) - succeeded)
        return results

    async def _commit_one(self, command: InvoiceCommand) -> CommitResult:
        try:
            invoice_id = await self.repository.create_invoice(command)
        except PersistenceError as exc:
            LOGGER.warning("Invoice %s rejected: %s", command.ncf, exc)
            return CommitResult(ncf=command.ncf, ncf_suffix=command.ncf_suffix, success=False, error=str(exc))
        except Exception as exc:
            LOGGER.exception("Unexpected failure saving invoice %s", command.ncf)
            return CommitResult(ncf=command.ncf, ncf_suffix=command.ncf_suffix, success=False, error=str(exc))
        return CommitResult(ncf=command.ncf, ncf_suffix=command.ncf_suffix, success=True, invoice_id=invoice_id)

    async def _commit_batch(self, commands: List[InvoiceCommand]) -> List[CommitResult]:
        try:
            return await self.repository.create_invoices(commands)
        except Exception as exc:
            LOGGER.exception("Batch commit of %s invoices failed", len(commands))
            return [
                CommitResult(ncf=command.ncf, ncf_suffix=command.ncf_suffix, success=False, error=str(exc))
                for command in commands
            ]

    def summary(self) -> ImportSummary:
        rows = self.rows
        return ImportSummary(
            total_rows=len(rows),
            valid_rows=sum(1 for row in rows if row.is_valid),
            invalid_rows=sum(1 for row in rows if not row.is_valid),
            resolved_products=sum(1 for row in rows if row.product_resolved),
            unresolved_products=sum(1 for row in rows if self._is_unresolved(row, PRODUCT)),
            resolved_clients=sum(1 for row in rows if row.client_resolved),
            unresolved_clients=sum(1 for row in rows if self._is_unresolved(row, CLIENT)),
            groups=len(self.groups),
            eligible_groups=len(self.eligible_groups),
            state=self.state.value,
        )


def build_match_store(settings: Settings) -> MatchStore:
    config = settings.match_store
    if config.backend == "http":
        if not config.base_url:
            raise ValueError("match_store.base_url is required for the http backend")
        return HttpMatchStore(config.base_url, token=config.token, timeout=config.timeout)
    return JsonMatchStore(settings.paths.match_store_file)


class Processor:
    """Wires configuration, catalogue, match store and invoice storage together."""

    def __init__(
        self,
        settings: Settings,
        *,
        catalog: Optional[CatalogProvider] = None,
        store: Optional[MatchStore] = None,
        repository: Optional[InvoiceRepository] = None,
    ) -> None:
        self.settings = settings
        self.settings.ensure_folders()
        self.catalog = catalog or FileCatalogProvider(settings.paths.products_file, settings.paths.clients_file)
        self.store = store or build_match_store(settings)
        self.repository = repository or JsonInvoiceRepository(settings.paths.invoice_store_file)

    def new_session(self) -> ImportSession:
        options = self.settings.import_options
        matching = self.settings.matching
        return ImportSession(
            self.catalog,
            self.store,
            self.repository,
            parser=CsvRecordParser(
                column_policy=options.column_policy,
                zero_price_is_offer=options.zero_price_is_offer,
            ),
            product_threshold=matching.product_threshold,
            client_threshold=matching.client_threshold,
            suggestion_count=matching.suggestions,
            ncf_prefix=options.ncf_prefix,
            commit_mode=options.commit_mode,
        )

    async def import_text(self, text: str) -> ImportSession:
        session = self.new_session()
        await session.load(text)
        return session

    async def import_file(self, path: Path) -> ImportSession:
        text = Path(path).read_text(encoding="utf-8-sig")
        return await self.import_text(text)

    def persist_summary(self, session: ImportSession, *, source: Optional[str] = None) -> Path:
        run_id = f"{now_timestamp()}_{uuid.uuid4().hex[:8]}"
        log_path = self.settings.paths.log_folder / f"run_{run_id}.json"
        payload = {
            "run_id": run_id,
            "source": source,
            "summary": session.summary().to_dict(),
            "invoices": [
                {
                    "ncf_suffix": group.ncf_suffix,
                    "date": group.date.isoformat() if group.date else None,
                    "client_id": group.client_id,
                    "rows": len(group.rows),
                    "total": group.total,
                    "gross_total": group.gross_total,
                    "eligible": group.is_eligible,
                }
                for group in session.groups
            ],
            "results": [result.__dict__ for result in session.results],
        }
        dump_json(log_path, payload)
        LOGGER.info("Run %s: %s", run_id, payload["summary"])
        return log_path

    def list_runs(self) -> List[dict]:
        runs = []
        for json_file in sorted(self.settings.paths.log_folder.glob("run_*.json")):
            runs.append(json.loads(json_file.read_text(encoding="utf-8")))
        runs.sort(key=lambda entry: entry.get("run_id", ""), reverse=True)
        return runs

    async def aclose(self) -> None:
        await self.store.aclose()


__all__ = ["ImportState", "ImportSession", "Processor", "build_match_store", "TERMINAL_STATES"]
