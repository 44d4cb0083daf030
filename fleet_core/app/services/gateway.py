"""
Remote Sync Gateway
===================
Thin transport to the spreadsheet-backed endpoint.

- push(): one plain-text POST with the full snapshot, response not read
- pull(): cache-busted GET with a timeout, parsed defensively

The endpoint is slow and only eventually consistent. A push that returns
SENT was dispatched, nothing more: the gateway cannot tell "written" from
"accepted and dropped".
"""

import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, List, Optional

import requests
from pydantic import ValidationError as SchemaError

from ..schemas import Material, MaterialRequest, RequestedItem, StockMovement
from .errors import StoreParseError, TransportError
from .merge import dedupe_by_key

logger = logging.getLogger(__name__)


class PushStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    NOT_CONFIGURED = "not_configured"


class PullStatus(str, Enum):
    OK = "ok"
    NO_DATA = "no_data"
    NOT_CONFIGURED = "not_configured"


@dataclass
class RemoteSnapshot:
    """Parsed pull body. A collection is None when the remote did not send it."""
    materials: Optional[List[Material]] = None
    requests: Optional[List[MaterialRequest]] = None
    movements: Optional[List[StockMovement]] = None


@dataclass
class PullResult:
    status: PullStatus
    snapshot: Optional[RemoteSnapshot] = None


# =============================================================================
# PAYLOAD PARSING
# =============================================================================

def parse_items(raw: Any) -> List[RequestedItem]:
    """
    Item list of a pulled request: a JSON array, or a JSON string holding one.
    Anything malformed degrades to an empty list.
    """
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.warning("Unparseable request details: %.80r", raw)
            return []
    if not isinstance(raw, list):
        return []

    items = []
    for entry in raw:
        try:
            items.append(RequestedItem.model_validate(entry))
        except SchemaError:
            logger.warning("Dropping malformed requested item: %.80r", entry)
    return items


def parse_materials(rows: Iterable[Any]) -> List[Material]:
    materials = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        code = str(row.get("code") or "").strip()
        if not code:
            continue
        try:
            materials.append(Material(
                id=code,
                code=code,
                name=str(row.get("name") or "").strip() or code,
                stock=row.get("stock", 0),
            ))
        except SchemaError:
            logger.warning("Dropping malformed remote material %s", code)
    # the remote sheet is known to contain repeated codes
    return dedupe_by_key(materials, lambda m: m.code)


def parse_requests(rows: Iterable[Any]) -> List[MaterialRequest]:
    parsed = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        raw_items = row.get("items", row.get("details"))
        items = parse_items(raw_items)
        if not items:
            # rows with no usable items are corrupt
            logger.warning("Dropping remote request %s without items", row.get("id"))
            continue
        try:
            parsed.append(MaterialRequest(
                id=str(row.get("id") or "").strip(),
                vtr=str(row.get("vtr") or ""),
                timestamp=str(row.get("timestamp") or ""),
                items=items,
                status=row.get("status") or "Pending",
            ))
        except SchemaError as e:
            logger.warning("Dropping malformed remote request %s: %s", row.get("id"), e.errors()[:1])
    return dedupe_by_key(parsed, lambda r: r.id)


def parse_movements(rows: Iterable[Any]) -> List[StockMovement]:
    parsed = []
    for row in rows:
        try:
            parsed.append(StockMovement.model_validate(row))
        except SchemaError:
            logger.warning("Dropping malformed remote movement: %.80r", row)
    return dedupe_by_key(parsed, lambda m: m.id)


def parse_snapshot(body: Any) -> RemoteSnapshot:
    """Turn a pull body into a RemoteSnapshot; only a non-object body is an error."""
    if not isinstance(body, dict):
        raise StoreParseError(f"expected a JSON object, got {type(body).__name__}")

    snapshot = RemoteSnapshot()
    if isinstance(body.get("materials"), list):
        snapshot.materials = parse_materials(body["materials"])
    if isinstance(body.get("requests"), list):
        snapshot.requests = parse_requests(body["requests"])
    if isinstance(body.get("movements"), list):
        snapshot.movements = parse_movements(body["movements"])
    return snapshot


def build_payload(
    materials: Iterable[Material],
    requests_: Iterable[MaterialRequest],
    movements: Iterable[StockMovement],
) -> dict:
    """Write payload understood by the endpoint's `sync` action."""
    return {
        "action": "sync",
        "materials": [
            {"code": m.code, "name": m.name, "stock": m.stock}
            for m in materials
        ],
        "requests": [
            {
                "id": r.id,
                "vtr": r.vtr,
                "timestamp": r.timestamp,
                "status": r.status.value,
                "details": json.dumps([i.model_dump(by_alias=True) for i in r.items]),
            }
            for r in requests_
        ],
        "movements": [
            {
                "id": mv.id,
                "materialId": mv.material_id,
                "type": mv.type.value,
                "quantity": mv.quantity,
                "timestamp": mv.timestamp,
                "reason": mv.reason,
            }
            for mv in movements
        ],
    }


# =============================================================================
# TRANSPORT
# =============================================================================

class RemoteSyncGateway:
    """push/pull against one remote URL; both no-op when no URL is configured"""

    def __init__(
        self,
        url: Optional[str],
        pull_timeout_ms: int = 15000,
        push_timeout_ms: int = 15000,
        session: Optional[requests.Session] = None
    ):
        self.url = (url or "").strip() or None
        self.pull_timeout_ms = pull_timeout_ms
        self.push_timeout_ms = push_timeout_ms
        self._http = session or requests

    @property
    def configured(self) -> bool:
        return self.url is not None

    def push(
        self,
        materials: List[Material],
        requests_: List[MaterialRequest],
        movements: List[StockMovement],
    ) -> PushStatus:
        if not self.configured:
            logger.warning("Remote sync URL not configured, push skipped")
            return PushStatus.NOT_CONFIGURED

        body = json.dumps(build_payload(materials, requests_, movements))
        try:
            self._send(body)
        except TransportError as e:
            logger.warning("Push failed, local state stays authoritative: %s", e)
            return PushStatus.FAILED

        logger.info(
            "Pushed snapshot (%d materials, %d requests, %d movements)",
            len(materials), len(requests_), len(movements)
        )
        return PushStatus.SENT

    def _send(self, body: str):
        # text/plain keeps this a "simple" request: the endpoint cannot answer a pre-flight
        try:
            self._http.post(
                self.url,
                data=body.encode("utf-8"),
                headers={"Content-Type": "text/plain;charset=utf-8"},
                timeout=self.push_timeout_ms / 1000,
            )
        except requests.RequestException as e:
            raise TransportError(str(e)) from e

    def pull(self) -> PullResult:
        if not self.configured:
            return PullResult(PullStatus.NOT_CONFIGURED)

        try:
            body = self._fetch()
            snapshot = parse_snapshot(body)
        except (TransportError, StoreParseError) as e:
            logger.warning("Pull skipped: %s", e)
            return PullResult(PullStatus.NO_DATA)

        return PullResult(PullStatus.OK, snapshot)

    def _fetch(self) -> Any:
        try:
            r = self._http.get(
                self.url,
                params={"t": int(time.time() * 1000)},
                timeout=self.pull_timeout_ms / 1000,
            )
        except requests.Timeout as e:
            raise TransportError(f"timed out after {self.pull_timeout_ms} ms") from e
        except requests.RequestException as e:
            raise TransportError(str(e)) from e

        if not 200 <= r.status_code < 300:
            raise TransportError(f"remote answered HTTP {r.status_code}")
        try:
            return r.json()
        except ValueError as e:
            raise StoreParseError(f"response is not JSON: {e}") from e
