"""FastAPI application exposing the import pipeline."""

from __future__ import annotations

import uuid
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, File, HTTPException, UploadFile
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from ..config import Settings
from ..core.errors import ImportStateError, MatchNotFoundError, MatchStoreError
from ..core.generator import template_text
from ..core.matcher import search
from ..core.models import MATCH_TYPES, PRODUCT, CsvRow, GroupedInvoice
from ..core.pipeline import ImportSession, Processor


class AssignRequest(BaseModel):
    match_type: str
    csv_name: str
    entity_id: str


class UpdateMatchRequest(BaseModel):
    match_type: str
    entity_id: str


def row_payload(row: CsvRow) -> dict:
    return {
        "line_number": row.line_number,
        "ncf_suffix": row.ncf_suffix,
        "date": row.date.isoformat() if row.date else None,
        "client": row.client_raw,
        "client_id": row.client_id,
        "client_name": row.client_name,
        "product": row.product_raw,
        "product_id": row.product_id,
        "product_name": row.product_name,
        "product_source": row.product_source,
        "quantity": row.quantity,
        "unit_price": row.unit_price,
        "is_offer": row.is_offer,
        "is_valid": row.is_valid,
        "errors": row.errors,
    }


def group_payload(group: GroupedInvoice) -> dict:
    return {
        "ncf_suffix": group.ncf_suffix,
        "date": group.date.isoformat() if group.date else None,
        "client_id": group.client_id,
        "client_name": group.client_name,
        "lines": [row.line_number for row in group.rows],
        "total": group.total,
        "gross_total": group.gross_total,
        "has_errors": group.has_errors,
        "eligible": group.is_eligible,
    }


def session_payload(session_id: str, session: ImportSession) -> dict:
    return {
        "id": session_id,
        "state": session.state.value,
        "can_commit": session.can_commit,
        "finished": session.finished,
        "summary": session.summary().to_dict(),
        "rows": [row_payload(row) for row in session.rows],
        "invoices": [group_payload(group) for group in session.groups],
        "pending": [
            {
                "match_type": entry.match_type,
                "csv_name": entry.csv_name,
                "line_numbers": entry.line_numbers,
                "suggestions": [suggestion.__dict__ for suggestion in entry.suggestions],
            }
            for entry in session.pending_names(with_suggestions=True)
        ],
        "results": [result.__dict__ for result in session.results],
    }


def create_app(settings: Settings, processor: Optional[Processor] = None) -> FastAPI:
    app = FastAPI(title="NCF Invoice Importer")
    processor = processor or Processor(settings)
    sessions: Dict[str, ImportSession] = {}

    def get_processor() -> Processor:
        return processor

    def get_session(session_id: str) -> ImportSession:
        session = sessions.get(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail="Importación no encontrada")
        return session

    def check_type(match_type: str) -> None:
        if match_type not in MATCH_TYPES:
            raise HTTPException(status_code=400, detail=f"Tipo inválido: {match_type}")

    @app.on_event("shutdown")
    async def shutdown() -> None:
        await processor.aclose()

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    @app.get("/template", response_class=PlainTextResponse)
    async def template() -> PlainTextResponse:
        return PlainTextResponse(
            template_text(),
            media_type="text/csv",
            headers={"Content-Disposition": "attachment; filename=template_facturas.csv"},
        )

    @app.post("/imports")
    async def create_import(file: UploadFile = File(...), pipeline: Processor = Depends(get_processor)) -> dict:
        content = await file.read()
        try:
            text = content.decode("utf-8-sig")
        except UnicodeDecodeError:
            raise HTTPException(status_code=400, detail="El archivo debe estar en UTF-8") from None
        try:
            session = await pipeline.import_text(text)
        except MatchStoreError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        session_id = uuid.uuid4().hex
        sessions[session_id] = session
        return session_payload(session_id, session)

    @app.get("/imports/{session_id}")
    async def get_import(session_id: str) -> dict:
        return session_payload(session_id, get_session(session_id))

    @app.post("/imports/{session_id}/matches")
    async def assign_match(session_id: str, request: AssignRequest) -> dict:
        session = get_session(session_id)
        check_type(request.match_type)
        try:
            await session.assign_match(request.match_type, request.csv_name, request.entity_id)
        except ImportStateError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except MatchStoreError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return session_payload(session_id, session)

    @app.post("/imports/{session_id}/skip")
    async def skip_matches(session_id: str) -> dict:
        session = get_session(session_id)
        try:
            session.skip_manual_matches()
        except ImportStateError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return session_payload(session_id, session)

    @app.post("/imports/{session_id}/commit")
    async def commit(session_id: str, pipeline: Processor = Depends(get_processor)) -> dict:
        session = get_session(session_id)
        try:
            await session.commit()
        except ImportStateError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        pipeline.persist_summary(session, source=session_id)
        payload = session_payload(session_id, session)
        # results are returned once, then the finished session is dropped
        if session.finished:
            del sessions[session_id]
        return payload

    @app.delete("/imports/{session_id}")
    async def discard(session_id: str) -> dict:
        get_session(session_id)
        del sessions[session_id]
        return {"status": "discarded"}

    @app.get("/runs")
    async def list_runs(pipeline: Processor = Depends(get_processor)) -> List[dict]:
        return pipeline.list_runs()

    @app.get("/catalog/{match_type}")
    async def search_catalog(match_type: str, q: str = "", pipeline: Processor = Depends(get_processor)) -> List[dict]:
        check_type(match_type)
        entities = pipeline.catalog.products() if match_type == PRODUCT else pipeline.catalog.clients()
        return [{"id": entity.id, "name": entity.name} for entity in search(q, entities)]

    @app.get("/matches")
    async def list_matches(match_type: Optional[str] = None, pipeline: Processor = Depends(get_processor)) -> List[dict]:
        try:
            if match_type:
                check_type(match_type)
                matches = await pipeline.store.list_by_type(match_type)
            else:
                matches = await pipeline.store.list_all()
        except MatchStoreError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return [match.to_dict() for match in matches]

    @app.put("/matches/{match_id}")
    async def update_match(match_id: str, request: UpdateMatchRequest, pipeline: Processor = Depends(get_processor)) -> dict:
        check_type(request.match_type)
        entities = pipeline.catalog.products() if request.match_type == PRODUCT else pipeline.catalog.clients()
        entity = next((item for item in entities if str(item.id) == request.entity_id), None)
        if entity is None:
            raise HTTPException(status_code=400, detail=f"No existe {request.match_type} con id {request.entity_id}")
        try:
            match = await pipeline.store.update(match_id, str(entity.id), entity.name)
        except MatchNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except MatchStoreError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return match.to_dict()

    @app.delete("/matches/{match_id}")
    async def delete_match(match_id: str, pipeline: Processor = Depends(get_processor)) -> dict:
        try:
            await pipeline.store.delete(match_id)
        except MatchNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except MatchStoreError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return {"status": "deleted"}

    return app


__all__ = ["create_app"]
