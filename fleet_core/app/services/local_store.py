"""
Local Store
===========
Durable key->string map on the device, backed by the `local_store` table.
Three fixed keys hold JSON arrays of materials, requests and movements.

- Missing or unparseable values are treated as absent
- Rows that fail validation are dropped one by one, never the whole load
- Every load de-duplicates by id, first occurrence wins
- Materials fall back to the seed catalog (stock 0) and that seed is persisted
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as SchemaError
from sqlalchemy.orm import Session, sessionmaker

from ..models import StoreEntry
from ..schemas import Material, MaterialRequest, StockMovement
from .errors import StoreParseError
from .merge import dedupe_by_key

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

MATERIALS_KEY = "materials"
REQUESTS_KEY = "requests"
MOVEMENTS_KEY = "movements"

NO_CODE = "S/C"
NO_NAME = "Material sem nome"


def parse_catalog(text: str) -> List[Material]:
    """
    Parse the tab-separated seed catalog: `code<TAB>name` per line.
    Extra tabs stay in the name. Duplicate codes collapse, first wins.
    """
    materials = []
    for line in text.splitlines():
        if not line.strip():
            continue
        parts = line.strip().split("\t")
        code = parts[0].strip() or NO_CODE
        name = "\t".join(parts[1:]).strip() or NO_NAME
        materials.append(Material(id=code, code=code, name=name, stock=0))
    return dedupe_by_key(materials, lambda m: m.code)


def parse_rows(raw: Optional[str], model: Type[M], label: str) -> List[M]:
    """
    Decode a persisted JSON array into models.

    Raises StoreParseError when the value itself is not a JSON array;
    individual bad rows are logged and skipped.
    """
    if raw is None:
        raise StoreParseError(f"{label}: no value")
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise StoreParseError(f"{label}: invalid JSON ({e})")
    if not isinstance(data, list):
        raise StoreParseError(f"{label}: expected a list, got {type(data).__name__}")

    rows = []
    for index, row in enumerate(data):
        try:
            rows.append(model.model_validate(row))
        except SchemaError as e:
            logger.warning("Dropping %s row %d: %s", label, index, e.errors()[:1])
    return rows


class LocalStore:
    """Synchronous persistence for the three entity collections"""

    def __init__(self, session_factory: sessionmaker, seed_catalog_path: Optional[Path] = None):
        self._session_factory = session_factory
        self._seed_catalog_path = seed_catalog_path

    # ------------------------------------------------------------------
    # raw key/value access
    # ------------------------------------------------------------------

    def get(self, key: str) -> Optional[str]:
        with self._session_factory() as db:
            entry = db.get(StoreEntry, key)
            return entry.value if entry else None

    def set(self, key: str, value: str):
        with self._session_factory() as db:
            self._put(db, key, value)
            db.commit()

    @staticmethod
    def _put(db: Session, key: str, value: str):
        entry = db.get(StoreEntry, key)
        if entry is None:
            db.add(StoreEntry(key=key, value=value, updated_at=datetime.utcnow()))
        else:
            entry.value = value
            entry.updated_at = datetime.utcnow()

    # ------------------------------------------------------------------
    # typed collections
    # ------------------------------------------------------------------

    def _load(self, key: str, model: Type[M], id_of: Callable[[M], str]) -> Optional[List[M]]:
        try:
            rows = parse_rows(self.get(key), model, key)
        except StoreParseError as e:
            logger.debug("Local %s treated as absent: %s", key, e)
            return None
        return dedupe_by_key(rows, id_of)

    def load_materials(self) -> List[Material]:
        materials = self._load(MATERIALS_KEY, Material, lambda m: m.code)
        if materials is not None:
            return materials
        materials = self.load_seed_catalog()
        self.save_materials(materials)
        return materials

    def load_requests(self) -> List[MaterialRequest]:
        return self._load(REQUESTS_KEY, MaterialRequest, lambda r: r.id) or []

    def load_movements(self) -> List[StockMovement]:
        return self._load(MOVEMENTS_KEY, StockMovement, lambda m: m.id) or []

    def load_seed_catalog(self) -> List[Material]:
        if not self._seed_catalog_path:
            return []
        try:
            text = Path(self._seed_catalog_path).read_text(encoding="utf-8")
        except OSError as e:
            logger.warning("Seed catalog %s unreadable: %s", self._seed_catalog_path, e)
            return []
        materials = parse_catalog(text)
        logger.info("Seeded %d materials from %s", len(materials), self._seed_catalog_path)
        return materials

    def save_materials(self, materials: List[Material]):
        self.save_snapshot(materials=materials)

    def save_requests(self, requests: List[MaterialRequest]):
        self.save_snapshot(requests=requests)

    def save_movements(self, movements: List[StockMovement]):
        self.save_snapshot(movements=movements)

    def save_snapshot(
        self,
        materials: Optional[List[Material]] = None,
        requests: Optional[List[MaterialRequest]] = None,
        movements: Optional[List[StockMovement]] = None,
    ) -> bool:
        """
        Write the given collections in a single transaction.

        Returns False when serialization fails; nothing is written then.
        """
        pending = {}
        try:
            for key, rows in ((MATERIALS_KEY, materials), (REQUESTS_KEY, requests), (MOVEMENTS_KEY, movements)):
                if rows is not None:
                    pending[key] = json.dumps([r.model_dump(mode="json", by_alias=True) for r in rows])
        except (TypeError, ValueError) as e:
            logger.error("Local store serialization failed, skipping save: %s", e)
            return False

        if not pending:
            return True

        with self._session_factory() as db:
            for key, value in pending.items():
                self._put(db, key, value)
            db.commit()
        return True
