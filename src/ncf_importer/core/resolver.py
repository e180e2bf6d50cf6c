"""Resolve free-text product and client names to catalogue identifiers."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Tuple, Union

from .errors import ImportStateError
from .matcher import best_fuzzy_match, suggest
from .models import CLIENT, MATCH_TYPES, PRODUCT, Client, CsvRow, ManualMatch, Product, Resolution, Suggestion
from .synonyms import MatchStore
from .utils import normalize_text


LOGGER = logging.getLogger(__name__)

PRODUCT_NOT_FOUND = "Producto no encontrado"

Entity = Union[Product, Client]


class Resolver:
    """Assign catalogue ids to rows.

    Lookup order for a name:

    1. a saved manual match whose target still exists in the catalogue
    2. exact equality of normalised names
    3. the best fuzzy candidate above the threshold for the entity type

    Results are memoised per ``(type, normalised name)`` for the lifetime of
    the resolver, which is one import batch.  Saved matches are read from the
    store once per type in :meth:`prepare`.
    """

    def __init__(
        self,
        products: Iterable[Product],
        clients: Iterable[Client],
        store: MatchStore,
        *,
        product_threshold: float = 0.62,
        client_threshold: float = 0.68,
        suggestion_count: int = 5,
    ) -> None:
        self.store = store
        self.thresholds = {PRODUCT: product_threshold, CLIENT: client_threshold}
        self.suggestion_count = suggestion_count
        self._entities: Dict[str, List[Entity]] = {PRODUCT: list(products), CLIENT: list(clients)}
        self._saved: Dict[str, Dict[str, ManualMatch]] = {}
        self._memo: Dict[Tuple[str, str], Resolution] = {}
        self._build_indexes()

    def _build_indexes(self) -> None:
        self._by_id: Dict[str, Dict[str, Entity]] = {}
        self._by_name: Dict[str, Dict[str, Entity]] = {}
        for match_type, entities in self._entities.items():
            by_id: Dict[str, Entity] = {}
            by_name: Dict[str, Entity] = {}
            for entity in entities:
                by_id[str(entity.id)] = entity
                # first entry wins so duplicates resolve in catalogue order
                by_name.setdefault(normalize_text(entity.name), entity)
            self._by_id[match_type] = by_id
            self._by_name[match_type] = by_name

    @property
    def prepared(self) -> bool:
        return len(self._saved) == len(MATCH_TYPES)

    async def prepare(self) -> None:
        """Load the saved matches for every entity type in one call per type."""

        for match_type in MATCH_TYPES:
            matches = await self.store.list_by_type(match_type)
            self._saved[match_type] = {match.csv_name: match for match in matches}
        self._memo.clear()
        LOGGER.debug(
            "Loaded %s saved product matches and %s saved client matches",
            len(self._saved[PRODUCT]),
            len(self._saved[CLIENT]),
        )

    def entities(self, match_type: str) -> List[Entity]:
        return list(self._entities[match_type])

    def entity(self, match_type: str, entity_id: str) -> Optional[Entity]:
        return self._by_id[match_type].get(str(entity_id))

    def resolve_name(self, match_type: str, name: str) -> Resolution:
        if not self.prepared:
            raise ImportStateError("Resolver.prepare() must run before resolving names")

        key = normalize_text(name)
        if not key:
            return Resolution()

        memo_key = (match_type, key)
        if memo_key not in self._memo:
            self._memo[memo_key] = self._resolve(match_type, key)
        return self._memo[memo_key]

    def _resolve(self, match_type: str, key: str) -> Resolution:
        saved = self._saved[match_type].get(key)
        if saved:
            entity = self.entity(match_type, saved.matched_id)
            if entity is not None:
                return Resolution(entity_id=str(entity.id), entity_name=entity.name, source="saved", score=1.0)
            LOGGER.warning(
                "Ignoring saved %s match '%s': entity %s no longer exists", match_type, key, saved.matched_id
            )

        entity = self._by_name[match_type].get(key)
        if entity is not None:
            return Resolution(entity_id=str(entity.id), entity_name=entity.name, source="exact", score=1.5)

        entity, score = best_fuzzy_match(key, self._entities[match_type], self.thresholds[match_type])
        if entity is not None:
            LOGGER.debug("Fuzzy matched %s '%s' -> %s (score %.2f)", match_type, key, entity.id, score)
            return Resolution(entity_id=str(entity.id), entity_name=entity.name, source="fuzzy", score=score)

        LOGGER.debug("No %s match for '%s' (best score %.2f)", match_type, key, score)
        return Resolution(score=score)

    def resolve_row(self, row: CsvRow) -> CsvRow:
        row.resolution_errors = []

        product = self.resolve_name(PRODUCT, row.product_raw)
        row.product_id = product.entity_id
        row.product_name = product.entity_name
        row.product_source = product.source
        row.product_score = product.score
        if normalize_text(row.product_raw) and not product.resolved:
            row.resolution_errors.append(PRODUCT_NOT_FOUND)

        client = self.resolve_name(CLIENT, row.client_raw)
        row.client_id = client.entity_id
        row.client_name = client.entity_name
        row.client_source = client.source
        row.client_score = client.score
        return row

    def resolve_rows(self, rows: Iterable[CsvRow]) -> List[CsvRow]:
        return [self.resolve_row(row) for row in rows]

    async def remember(self, match_type: str, csv_name: str, entity_id: str) -> ManualMatch:
        """Persist a manual choice and make it the answer for this batch.

        The store write is awaited first; when it fails nothing local changes.
        """

        if match_type not in MATCH_TYPES:
            raise ValueError(f"Unsupported match type '{match_type}'")
        entity = self.entity(match_type, entity_id)
        if entity is None:
            raise ValueError(f"Unknown {match_type} id '{entity_id}'")

        match = await self.store.upsert(match_type, csv_name, str(entity.id), entity.name)
        self._saved.setdefault(match_type, {})[match.csv_name] = match
        self._memo[(match_type, match.csv_name)] = Resolution(
            entity_id=str(entity.id), entity_name=entity.name, source="saved", score=1.0
        )
        LOGGER.info("Saved %s match '%s' -> %s (%s)", match_type, match.csv_name, entity.name, entity.id)
        return match

    def suggestions(self, match_type: str, name: str) -> List[Suggestion]:
        return suggest(name, self._entities[match_type], top_n=self.suggestion_count)


__all__ = ["Resolver", "PRODUCT_NOT_FOUND"]
