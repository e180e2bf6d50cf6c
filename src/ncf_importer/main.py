"""Command line interface for the NCF invoice importer."""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import Iterable, Optional, Tuple

from .config import Settings
from .core.catalog import FileCatalogProvider, parse_product_list
from .core.errors import ImporterError
from .core.generator import export_review, write_template
from .core.models import MATCH_TYPES
from .core.pipeline import ImportState, Processor
from .core.utils import now_timestamp


LOGGER = logging.getLogger(__name__)


def configure_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")


def load_settings(config_path: str) -> Settings:
    return Settings.load(config_path)


def parse_assignment(value: str) -> Tuple[str, str, str]:
    """Parse ``type:csv name=entity_id`` as given to ``--assign``."""

    try:
        match_type, rest = value.split(":", 1)
        csv_name, entity_id = rest.rsplit("=", 1)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid assignment '{value}', expected type:name=id") from None
    match_type = match_type.strip().lower()
    if match_type not in MATCH_TYPES:
        raise argparse.ArgumentTypeError(f"Invalid match type '{match_type}'. Valid values: {list(MATCH_TYPES)}")
    return match_type, csv_name.strip(), entity_id.strip()


async def _run_import(processor: Processor, args: argparse.Namespace) -> int:
    session = await processor.import_file(Path(args.file))
    for match_type, csv_name, entity_id in args.assign or []:
        count = await session.assign_match(match_type, csv_name, entity_id)
        print(f"Asignado {match_type} '{csv_name}' -> {entity_id} ({count} filas)")

    if session.state == ImportState.AWAITING_MANUAL_MATCHES and args.skip_unresolved:
        session.skip_manual_matches()

    summary = session.summary()
    print("Importación procesada")
    print(f"Filas válidas: {summary.valid_rows} / {summary.total_rows}")
    print(f"Productos sin resolver: {summary.unresolved_products}")
    print(f"Clientes sin resolver: {summary.unresolved_clients}")
    print(f"Facturas importables: {summary.eligible_groups} / {summary.groups}")

    for pending in session.pending_names(with_suggestions=True):
        options = ", ".join(f"{s.entity_name} [{s.entity_id}]" for s in pending.suggestions) or "sin sugerencias"
        print(f"  Pendiente {pending.match_type}: '{pending.csv_name}' (líneas {pending.line_numbers}) -> {options}")

    run_id = now_timestamp()
    if args.report:
        rows_path, invoices_path, pending_path = export_review(session, processor.settings.paths.output_folder, run_id)
        print(f"Reporte de filas: {rows_path}")
        print(f"Reporte de facturas: {invoices_path}")
        if pending_path:
            print(f"Pendientes: {pending_path}")

    exit_code = 0
    if args.commit:
        if not session.can_commit:
            print(f"No se puede importar en estado '{session.state.value}'")
            exit_code = 1
        else:
            results = await session.commit()
            for result in results:
                status = "OK" if result.success else f"ERROR: {result.error}"
                print(f"  Factura {result.ncf}: {status}")
            if session.state != ImportState.DONE:
                exit_code = 1

    processor.persist_summary(session, source=str(args.file))
    return exit_code


def command_import(args: argparse.Namespace) -> int:
    processor = Processor(load_settings(args.config))

    async def run() -> int:
        try:
            return await _run_import(processor, args)
        finally:
            await processor.aclose()

    return asyncio.run(run())


def command_template(args: argparse.Namespace) -> int:
    path = write_template(Path(args.path))
    print(f"Template generado: {path}")
    return 0


def command_matches(args: argparse.Namespace) -> int:
    processor = Processor(load_settings(args.config))

    async def run() -> int:
        store = processor.store
        try:
            if args.action == "list":
                matches = await (store.list_by_type(args.type) if args.type else store.list_all())
                for match in matches:
                    print(f"{match.id}\t{match.match_type}\t{match.csv_name}\t{match.matched_id}\t{match.matched_name}")
            elif args.action == "delete":
                await store.delete(args.match_id)
                print(f"Asociación {args.match_id} eliminada")
            elif args.action == "update":
                entities = processor.catalog.products() if args.type == "product" else processor.catalog.clients()
                entity = next((item for item in entities if str(item.id) == args.entity_id), None)
                if entity is None:
                    print(f"No existe {args.type} con id {args.entity_id}")
                    return 1
                await store.update(args.match_id, str(entity.id), entity.name)
                print(f"Asociación {args.match_id} actualizada -> {entity.name}")
            elif args.action == "clear":
                await store.clear()
                print("Asociaciones eliminadas")
        finally:
            await processor.aclose()
        return 0

    return asyncio.run(run())


def command_products(args: argparse.Namespace) -> int:
    settings = load_settings(args.config)
    catalog = FileCatalogProvider(settings.paths.products_file)
    existing = [product.name for product in catalog.products()]
    text = Path(args.file).read_text(encoding="utf-8-sig")
    parsed = parse_product_list(text, existing, default_percentage=settings.import_options.default_percentage)
    for entry in parsed:
        if entry.error:
            status = entry.error
        else:
            status = "nuevo" if entry.is_new else "existente"
        print(f"{entry.line_number}\t{entry.name}\t{entry.percentage:g}%\t{status}")
    new_count = sum(1 for entry in parsed if entry.is_new and not entry.error)
    print(f"Productos nuevos: {new_count}")
    return 0


def command_api(args: argparse.Namespace) -> int:
    from .api.server import create_app

    settings = load_settings(args.config)
    app = create_app(settings)
    import uvicorn

    uvicorn.run(app, host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="NCF invoice CSV importer")
    parser.add_argument("--config", default="config.yaml", help="Path to the configuration YAML file")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    import_parser = subparsers.add_parser("import", help="Parse, resolve and optionally commit a CSV file")
    import_parser.add_argument("file", help="CSV file to import")
    import_parser.add_argument(
        "--assign",
        action="append",
        type=parse_assignment,
        metavar="TYPE:NAME=ID",
        help="Save a manual match before committing (repeatable)",
    )
    import_parser.add_argument("--skip-unresolved", action="store_true", help="Continue with unresolved names left out")
    import_parser.add_argument("--commit", action="store_true", help="Save eligible invoices")
    import_parser.add_argument("--report", action="store_true", help="Write review CSV reports")
    import_parser.set_defaults(func=command_import)

    template_parser = subparsers.add_parser("template", help="Write the CSV import template")
    template_parser.add_argument("path", nargs="?", default="template_facturas.csv")
    template_parser.set_defaults(func=command_template)

    matches_parser = subparsers.add_parser("matches", help="Manage saved manual matches")
    matches_sub = matches_parser.add_subparsers(dest="action", required=True)
    list_parser = matches_sub.add_parser("list")
    list_parser.add_argument("--type", choices=MATCH_TYPES)
    delete_parser = matches_sub.add_parser("delete")
    delete_parser.add_argument("match_id")
    update_parser = matches_sub.add_parser("update")
    update_parser.add_argument("match_id")
    update_parser.add_argument("entity_id")
    update_parser.add_argument("--type", choices=MATCH_TYPES, default="product")
    matches_sub.add_parser("clear")
    matches_parser.set_defaults(func=command_matches)

    products_parser = subparsers.add_parser("products", help="Preview a bulk product list import")
    products_parser.add_argument("file")
    products_parser.set_defaults(func=command_products)

    api_parser = subparsers.add_parser("api", help="Start the FastAPI server")
    api_parser.add_argument("--host", default="0.0.0.0")
    api_parser.add_argument("--port", type=int, default=8000)
    api_parser.set_defaults(func=command_api)

    return parser


def main(argv: Optional[Iterable[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    configure_logging(args.verbose)
    try:
        exit_code = args.func(args)
    except (ImporterError, FileNotFoundError, ValueError) as exc:
        LOGGER.error("%s", exc)
        exit_code = 1
    if exit_code:
        raise SystemExit(exit_code)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    main()
