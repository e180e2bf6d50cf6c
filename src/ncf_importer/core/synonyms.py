"""Persistence backends for saved manual matches.

A saved match maps the normalised spelling of a product or client name as it
appears in spreadsheets to the catalogue entity a person picked for it.  The
resolver consults these before any fuzzy attempt, so once a name has been
corrected it is never asked for again.

Every backend exposes the same coroutine based :class:`MatchStore` contract.
Backends raise :class:`MatchStoreError` on failure and never hide it behind
an empty result.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

import httpx

from .errors import MatchNotFoundError, MatchStoreError
from .models import MATCH_TYPES, ManualMatch
from .utils import dump_json, load_json, normalize_text, utc_now_iso


LOGGER = logging.getLogger(__name__)


def _check_type(match_type: str) -> None:
    if match_type not in MATCH_TYPES:
        raise ValueError(f"Unsupported match type '{match_type}'. Valid values: {list(MATCH_TYPES)}")


class MatchStore(ABC):
    """Repository of saved matches keyed by ``(match_type, normalize(csv_name))``."""

    @abstractmethod
    async def list_all(self) -> List[ManualMatch]:
        """Return every saved match, most recently updated first."""

    @abstractmethod
    async def list_by_type(self, match_type: str) -> List[ManualMatch]:
        ...

    @abstractmethod
    async def upsert(self, match_type: str, csv_name: str, entity_id: str, entity_name: str) -> ManualMatch:
        """Create or overwrite the match for ``csv_name`` (last write wins)."""

    @abstractmethod
    async def update(self, match_id: str, entity_id: str, entity_name: str) -> ManualMatch:
        ...

    @abstractmethod
    async def delete(self, match_id: str) -> None:
        ...

    async def find(self, match_type: str, csv_name: str) -> Optional[ManualMatch]:
        key = normalize_text(csv_name)
        for match in await self.list_by_type(match_type):
            if match.csv_name == key:
                return match
        return None

    async def clear(self) -> None:
        for match in await self.list_all():
            await self.delete(match.id)

    async def aclose(self) -> None:
        return None


class _LocalMatchStore(MatchStore):
    """Shared bookkeeping for the backends that keep matches in a dict."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()

    @abstractmethod
    def _read(self) -> Dict[str, ManualMatch]:
        ...

    @abstractmethod
    def _write(self, matches: Dict[str, ManualMatch]) -> None:
        ...

    async def list_all(self) -> List[ManualMatch]:
        matches = list(self._read().values())
        matches.sort(key=lambda match: match.updated_at or "", reverse=True)
        return matches

    async def list_by_type(self, match_type: str) -> List[ManualMatch]:
        _check_type(match_type)
        return [match for match in await self.list_all() if match.match_type == match_type]

    async def upsert(self, match_type: str, csv_name: str, entity_id: str, entity_name: str) -> ManualMatch:
        _check_type(match_type)
        key = normalize_text(csv_name)
        if not key:
            raise ValueError("Cannot save a match for an empty name")

        async with self._lock:
            matches = self._read()
            now = utc_now_iso()
            existing = next(
                (match for match in matches.values() if match.match_type == match_type and match.csv_name == key),
                None,
            )
            if existing:
                existing.matched_id = str(entity_id)
                existing.matched_name = entity_name
                existing.updated_at = now
                match = existing
            else:
                match = ManualMatch(
                    id=uuid.uuid4().hex,
                    match_type=match_type,
                    csv_name=key,
                    matched_id=str(entity_id),
                    matched_name=entity_name,
                    created_at=now,
                    updated_at=now,
                )
                matches[match.id] = match
            self._write(matches)

        LOGGER.debug("Saved %s match '%s' -> %s", match_type, key, entity_id)
        return match

    async def update(self, match_id: str, entity_id: str, entity_name: str) -> ManualMatch:
        async with self._lock:
            matches = self._read()
            match = matches.get(match_id)
            if match is None:
                raise MatchNotFoundError(match_id)
            match.matched_id = str(entity_id)
            match.matched_name = entity_name
            match.updated_at = utc_now_iso()
            self._write(matches)
        return match

    async def delete(self, match_id: str) -> None:
        async with self._lock:
            matches = self._read()
            if matches.pop(match_id, None) is None:
                raise MatchNotFoundError(match_id)
            self._write(matches)
        LOGGER.debug("Deleted saved match %s", match_id)


class MemoryMatchStore(_LocalMatchStore):
    """Process local store, used for embedding and tests."""

    def __init__(self, matches: Optional[List[ManualMatch]] = None) -> None:
        super().__init__()
        self._matches: Dict[str, ManualMatch] = {match.id: match for match in matches or []}

    def _read(self) -> Dict[str, ManualMatch]:
        return self._matches

    def _write(self, matches: Dict[str, ManualMatch]) -> None:
        self._matches = matches


class JsonMatchStore(_LocalMatchStore):
    """Stores matches in a JSON document on disk.

    The file is read on every call so separate sessions observe each other's
    writes; there is no conflict detection beyond last write wins.
    """

    def __init__(self, path: Path) -> None:
        super().__init__()
        self.path = Path(path)

    def _read(self) -> Dict[str, ManualMatch]:
        try:
            payload = load_json(self.path) or {}
        except (OSError, json.JSONDecodeError) as exc:
            raise MatchStoreError(f"Failed to read saved matches from {self.path}: {exc}") from exc
        try:
            return {str(entry["id"]): ManualMatch.from_dict(entry) for entry in payload.get("matches", [])}
        except (KeyError, TypeError) as exc:
            raise MatchStoreError(f"Malformed saved match in {self.path}: {exc}") from exc

    def _write(self, matches: Dict[str, ManualMatch]) -> None:
        payload = {"matches": [match.to_dict() for match in matches.values()]}
        try:
            dump_json(self.path, payload)
        except OSError as exc:
            raise MatchStoreError(f"Failed to persist saved matches to {self.path}: {exc}") from exc


class HttpMatchStore(MatchStore):
    """Client for a REST backend holding the shared match table.

    Expected routes, relative to ``base_url``::

        GET    /matches[?match_type=...&csv_name=...]
        PUT    /matches                 upsert on (match_type, csv_name)
        PATCH  /matches/{id}
        DELETE /matches/{id}
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout)

    async def _request(self, method: str, url: str, *, match_id: Optional[str] = None, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise MatchStoreError(f"Match store request {method} {url} failed: {exc}") from exc

        if response.status_code == 404 and match_id is not None:
            raise MatchNotFoundError(match_id)
        if response.is_error:
            raise MatchStoreError(
                f"Match store request {method} {url} returned {response.status_code}: {response.text[:200]}"
            )
        return response

    @staticmethod
    def _parse(payload) -> ManualMatch:
        try:
            return ManualMatch.from_dict(payload)
        except (KeyError, TypeError) as exc:
            raise MatchStoreError(f"Malformed saved match payload: {payload!r}") from exc

    async def _list(self, params: Optional[dict] = None) -> List[ManualMatch]:
        response = await self._request("GET", "/matches", params=params or {})
        return [self._parse(entry) for entry in response.json()]

    async def list_all(self) -> List[ManualMatch]:
        return await self._list()

    async def list_by_type(self, match_type: str) -> List[ManualMatch]:
        _check_type(match_type)
        return await self._list({"match_type": match_type})

    async def find(self, match_type: str, csv_name: str) -> Optional[ManualMatch]:
        _check_type(match_type)
        matches = await self._list({"match_type": match_type, "csv_name": normalize_text(csv_name)})
        return matches[0] if matches else None

    async def upsert(self, match_type: str, csv_name: str, entity_id: str, entity_name: str) -> ManualMatch:
        _check_type(match_type)
        key = normalize_text(csv_name)
        if not key:
            raise ValueError("Cannot save a match for an empty name")
        body = {
            "match_type": match_type,
            "csv_name": key,
            "matched_id": str(entity_id),
            "matched_name": entity_name,
            "updated_at": utc_now_iso(),
        }
        response = await self._request("PUT", "/matches", json=body)
        return self._parse(response.json())

    async def update(self, match_id: str, entity_id: str, entity_name: str) -> ManualMatch:
        body = {"matched_id": str(entity_id), "matched_name": entity_name, "updated_at": utc_now_iso()}
        response = await self._request("PATCH", f"/matches/{match_id}", match_id=match_id, json=body)
        return self._parse(response.json())

    async def delete(self, match_id: str) -> None:
        await self._request("DELETE", f"/matches/{match_id}", match_id=match_id)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = ["MatchStore", "MemoryMatchStore", "JsonMatchStore", "HttpMatchStore"]
