import asyncio
import json
from datetime import date

import pytest

from ncf_importer.config import PathsConfig, Settings
from ncf_importer.core.catalog import StaticCatalog
from ncf_importer.core.errors import ImportStateError, MatchStoreError
from ncf_importer.core.models import CLIENT, PRODUCT, Client, Product
from ncf_importer.core.pipeline import ImportSession, ImportState, Processor, build_match_store
from ncf_importer.core.repository import JsonInvoiceRepository
from ncf_importer.core.synonyms import HttpMatchStore, MemoryMatchStore
from ncf_importer.core.utils import normalize_text


HEADER = "NCF_SUFFIX,FECHA,CLIENTE,PRODUCTO,CANTIDAD,PRECIO_UNITARIO"

CSV_READY = "\n".join(
    [
        HEADER,
        "B0100002904,2024-01-15,Farmacia Central,Plexgrip Jarabe,10,150.00",
        "B0100002904,2024-01-15,Farmacia Central,Vitamina C,2,0",
        "2905,16/01/2024,Farmacia Norte,Acetaminofen 500mg,5,80",
    ]
)

CSV_UNRESOLVED = "\n".join(
    [
        HEADER,
        "2904,2024-01-15,Farmacia Central,Jarabe PLX,10,150",
        "2905,2024-01-16,Farmacia Norte,Acetaminofen 500mg,5,80",
        "2906,2024-01-17,Farmacia Norte,JARABE  plx,1,150",
    ]
)


class SlowStore(MemoryMatchStore):
    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()

    async def upsert(self, match_type, csv_name, entity_id, entity_name):
        await self.release.wait()
        return await super().upsert(match_type, csv_name, entity_id, entity_name)


class FailingStore(MemoryMatchStore):
    async def upsert(self, match_type, csv_name, entity_id, entity_name):
        raise MatchStoreError("backend unavailable")


def build_catalog() -> StaticCatalog:
    return StaticCatalog(
        products=[
            Product(id="10", name="Plexgrip Jarabe", percentage=30),
            Product(id="11", name="Vitamina C 500mg", percentage=25),
            Product(id="12", name="Acetaminofen 500mg", percentage=20),
        ],
        clients=[Client(id="1", name="Farmacia Central"), Client(id="2", name="Farmacia Norte")],
    )


def build_session(tmp_path, store=None, **kwargs) -> ImportSession:
    return ImportSession(
        build_catalog(),
        store if store is not None else MemoryMatchStore(),
        JsonInvoiceRepository(tmp_path / "invoices.json"),
        **kwargs,
    )


def load(session, text):
    asyncio.run(session.load(text))
    return session


def test_clean_file_commits_every_invoice(tmp_path):
    session = load(build_session(tmp_path), CSV_READY)

    assert session.state == ImportState.READY
    assert session.can_commit
    assert [group.ncf_suffix for group in session.groups] == ["2904", "2905"]
    first, second = session.groups
    assert first.total == 1500.0
    assert first.rows[1].is_offer
    assert first.rows[1].product_source == "fuzzy"
    assert second.date == date(2024, 1, 16)
    assert second.total == 400.0

    results = asyncio.run(session.commit())

    assert [result.ncf for result in results] == ["B0100002904", "B0100002905"]
    assert all(result.success for result in results)
    assert session.state == ImportState.DONE
    assert session.finished

    invoices = session.repository.list_invoices()
    assert invoices[0]["ncf"] == "B0100002904"
    assert invoices[0]["client_id"] == "1"
    assert invoices[0]["total_commission"] == pytest.approx(450.0)
    assert len(invoices[0]["lines"]) == 2


def test_unresolved_product_waits_for_manual_match(tmp_path):
    session = load(build_session(tmp_path), CSV_UNRESOLVED)

    assert session.state == ImportState.AWAITING_MANUAL_MATCHES
    assert not session.can_commit
    pending = session.pending_names(PRODUCT, with_suggestions=True)
    assert len(pending) == 1
    assert pending[0].csv_name == "Jarabe PLX"
    assert pending[0].line_numbers == [2, 4]
    assert pending[0].suggestions[0].entity_id == "10"

    with pytest.raises(ImportStateError):
        asyncio.run(session.commit())


def test_manual_match_resolves_all_rows_and_is_remembered(tmp_path):
    store = MemoryMatchStore()
    session = load(build_session(tmp_path, store), CSV_UNRESOLVED)

    affected = asyncio.run(session.assign_match(PRODUCT, "Jarabe PLX", "10"))

    assert affected == 2
    assert session.state == ImportState.READY
    assert [row.product_id for row in session.rows if normalize_text(row.product_raw) == "jarabe plx"] == ["10", "10"]
    assert session.rows[1].product_id == "12"
    assert session.summary().unresolved_products == 0

    again = load(build_session(tmp_path, store), CSV_UNRESOLVED)
    assert again.state == ImportState.READY
    assert {row.product_source for row in again.rows if row.product_raw != "Acetaminofen 500mg"} == {"saved"}


def test_deleting_a_saved_match_brings_the_question_back(tmp_path):
    store = MemoryMatchStore()
    session = load(build_session(tmp_path, store), CSV_UNRESOLVED)
    asyncio.run(session.assign_match(PRODUCT, "Jarabe PLX", "10"))

    match = asyncio.run(store.find(PRODUCT, "jarabe plx"))
    asyncio.run(store.delete(match.id))

    again = load(build_session(tmp_path, store), CSV_UNRESOLVED)
    assert again.state == ImportState.AWAITING_MANUAL_MATCHES
    assert [entry.normalized for entry in again.pending_names()] == ["jarabe plx"]


def test_failed_assignment_leaves_rows_untouched(tmp_path):
    session = load(build_session(tmp_path, FailingStore()), CSV_UNRESOLVED)
    with pytest.raises(MatchStoreError):
        asyncio.run(session.assign_match(PRODUCT, "Jarabe PLX", "10"))
    assert session.pending_writes == 0
    assert session.state == ImportState.AWAITING_MANUAL_MATCHES
    assert session.rows[0].product_id is None


def test_skip_continues_with_resolved_invoices(tmp_path):
    session = load(build_session(tmp_path), CSV_UNRESOLVED)
    session.skip_manual_matches()

    assert session.state == ImportState.READY
    assert [group.ncf_suffix for group in session.eligible_groups] == ["2905"]

    results = asyncio.run(session.commit())
    assert [result.ncf_suffix for result in results] == ["2905"]
    assert session.state == ImportState.DONE

    with pytest.raises(ImportStateError):
        session.skip_manual_matches()


def test_commit_refused_while_match_is_being_saved(tmp_path):
    async def scenario():
        store = SlowStore()
        session = build_session(tmp_path, store)
        await session.load(CSV_UNRESOLVED)
        session.skip_manual_matches()
        assert session.state == ImportState.READY

        task = asyncio.create_task(session.assign_match(PRODUCT, "Jarabe PLX", "10"))
        await asyncio.sleep(0)
        assert session.pending_writes == 1
        assert not session.can_commit
        with pytest.raises(ImportStateError):
            await session.commit()

        store.release.set()
        await task
        assert session.pending_writes == 0
        return await session.commit()

    results = asyncio.run(scenario())
    assert [result.ncf_suffix for result in results] == ["2904", "2905", "2906"]


def test_duplicate_ncf_gives_partial_failure(tmp_path):
    first = load(build_session(tmp_path), "2904,2024-01-15,Farmacia Central,Plexgrip Jarabe,1,100")
    asyncio.run(first.commit())

    second = load(build_session(tmp_path), CSV_READY)
    results = asyncio.run(second.commit())

    assert second.state == ImportState.PARTIALLY_FAILED
    assert [result.success for result in results] == [False, True]
    assert results[0].error == "Ya existe una factura con este NCF: B0100002904"
    assert len(second.repository.list_invoices()) == 2
    assert second.repository.exists("B0100002905")


def test_every_invoice_failing_marks_session_failed(tmp_path):
    text = "2904,2024-01-15,Farmacia Central,Plexgrip Jarabe,1,100"
    asyncio.run(load(build_session(tmp_path), text).commit())

    again = load(build_session(tmp_path), text)
    asyncio.run(again.commit())
    assert again.state == ImportState.FAILED
    assert again.finished


def test_batch_commit(tmp_path):
    session = load(build_session(tmp_path, commit_mode="batch"), CSV_READY)
    results = asyncio.run(session.commit())
    assert [result.success for result in results] == [True, True]
    assert session.state == ImportState.DONE


def test_nothing_to_import(tmp_path):
    session = load(build_session(tmp_path), "0000,2024-01-15,Farmacia Central,Plexgrip Jarabe,1,100\n2904,,,,,")
    assert session.state == ImportState.NOTHING_TO_IMPORT
    assert session.summary().invalid_rows == 2
    with pytest.raises(ImportStateError):
        asyncio.run(session.commit())


def test_unresolved_client_is_asked_but_does_not_block(tmp_path):
    session = load(build_session(tmp_path), "2904,2024-01-15,Farmacia Desconocida,Plexgrip Jarabe,1,100")

    assert session.state == ImportState.AWAITING_MANUAL_MATCHES
    assert [entry.match_type for entry in session.pending_names()] == [CLIENT]
    assert session.groups[0].is_eligible

    session.skip_manual_matches()
    asyncio.run(session.commit())
    assert session.repository.list_invoices()[0]["client_id"] is None


def test_session_is_single_use(tmp_path):
    session = load(build_session(tmp_path), CSV_READY)
    with pytest.raises(ImportStateError):
        asyncio.run(session.load(CSV_READY))


def test_summary_counts(tmp_path):
    summary = load(build_session(tmp_path), CSV_UNRESOLVED).summary()
    assert summary.total_rows == 3
    assert summary.valid_rows == 1
    assert summary.unresolved_products == 2
    assert summary.groups == 3
    assert summary.eligible_groups == 1
    assert summary.state == "awaiting_manual_matches"


def build_settings(tmp_path, **store_options) -> Settings:
    paths = PathsConfig(
        match_store_file=tmp_path / "data" / "matches.json",
        invoice_store_file=tmp_path / "data" / "invoices.json",
        output_folder=tmp_path / "output",
        log_folder=tmp_path / "logs",
    )
    return Settings(paths=paths, match_store=store_options or {"backend": "json"})


def test_processor_imports_file_and_records_run(tmp_path):
    settings = build_settings(tmp_path)
    processor = Processor(settings, catalog=build_catalog())
    source = tmp_path / "facturas.csv"
    source.write_text("\ufeff" + CSV_READY, encoding="utf-8")

    session = asyncio.run(processor.import_file(source))
    asyncio.run(session.commit())
    log_path = processor.persist_summary(session, source=str(source))

    payload = json.loads(log_path.read_text(encoding="utf-8"))
    assert payload["summary"]["state"] == "done"
    assert [entry["ncf_suffix"] for entry in payload["invoices"]] == ["2904", "2905"]
    assert processor.list_runs()[0]["source"] == str(source)
    assert settings.paths.invoice_store_file.exists()


def test_build_match_store_backends(tmp_path):
    with pytest.raises(ValueError):
        build_match_store(build_settings(tmp_path, backend="http"))

    store = build_match_store(build_settings(tmp_path, backend="http", base_url="http://matches.test"))
    assert isinstance(store, HttpMatchStore)
    asyncio.run(store.aclose())


def test_fuzzy_rows_commit_while_invalid_row_is_reported(tmp_path):
    text = "\n".join(
        [
            HEADER,
            "B0100002904,2024-01-15,Farmacia Central,Plexgrip Jarabe 120ml,10,150",
            "B0100002904,2024-01-15,Farmacia Central,Vitamina C,2,35",
            "B0100002905,2024-01-16,Farmacia Norte,Acetaminofen 500mg,5,abc",
        ]
    )
    session = load(build_session(tmp_path), text)

    assert session.state == ImportState.READY
    first, second = session.groups
    assert [row.product_source for row in first.rows] == ["fuzzy", "fuzzy"]
    assert [row.product_id for row in first.rows] == ["10", "11"]
    assert first.has_errors is False
    assert first.total == 1570.0
    assert second.has_errors is True
    assert second.rows[0].errors == ["Precio debe ser número >= 0"]

    results = asyncio.run(session.commit())

    assert [(result.ncf, result.success) for result in results] == [("B0100002904", True)]
    assert session.state == ImportState.DONE


def test_punctuation_only_names_are_never_pending(tmp_path):
    text = "\n".join(
        [
            "2904,2024-01-15,-,Plexgrip Jarabe,1,100",
            "2905,2024-01-16,Farmacia Norte,---,1,100",
        ]
    )
    session = load(build_session(tmp_path), text)

    assert session.pending_names() == []
    assert session.state == ImportState.READY
    assert session.rows[1].errors == ["Producto inválido"]
    assert [group.ncf_suffix for group in session.eligible_groups] == ["2904"]

    asyncio.run(session.commit())
    assert session.repository.list_invoices()[0]["client_id"] is None


def test_run_logs_of_the_same_second_are_kept(tmp_path):
    processor = Processor(build_settings(tmp_path), catalog=build_catalog())
    session = asyncio.run(processor.import_text(CSV_READY))

    first = processor.persist_summary(session, source="a.csv")
    second = processor.persist_summary(session, source="b.csv")

    assert first != second
    assert first.exists() and second.exists()
    assert sorted(run["source"] for run in processor.list_runs()) == ["a.csv", "b.csv"]
