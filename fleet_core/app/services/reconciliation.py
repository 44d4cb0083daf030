"""
Reconciliation Engine
=====================
Local-first stock and request state with eventual convergence to the
remote store.

Every mutation goes through the same lifecycle:

    IDLE -> MUTATING -> PERSISTED -> PUSHING -> COOLING_DOWN -> IDLE

MUTATING and PERSISTED happen under one lock: the caller either sees the
whole change or none of it. The push runs in the background and its
outcome never reaches the caller. When the push finishes (sent or not) a
cooldown timer starts; until it fires, background pulls are dropped, since
the remote read path lags behind its write path. Manual refreshes always
run.

Local state is authoritative until a remote read replaces it. The remote
store is never treated as strongly consistent and there is no conflict
detection between devices: the last push wins there.

Stock accounting: a Fulfilled request always has its items deducted from
raw stock, a Pending one never does. The request policy only decides
which of the two states a new request starts in. Under reserve-only this
means Pending -> Fulfilled does change raw stock: the reservation turns
into a deduction, so effective stock stays the same and a later
Fulfilled -> Cancelled restore balances out.

A mutation that fails to persist leaves the engine in the state it was in
before, with its in-memory collections untouched.
"""

import logging
import random
import string
import threading
import uuid
from collections import OrderedDict
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError as SchemaError

from ..schemas import (
    Material, MaterialOut, MaterialRequest, MovementType, RequestedItem,
    RequestStatus, StockMovement, coerce_status
)
from .errors import (
    InsufficientStockError, RequestNotFoundError, UnknownMaterialError,
    ValidationError
)
from .gateway import PullStatus, RemoteSnapshot, RemoteSyncGateway
from .local_store import LocalStore
from .merge import merge_by_key
from .reservation import reservation_map, with_effective_stock
from .scheduler import Cancellable, Scheduler

logger = logging.getLogger(__name__)

REASON_MANUAL = "manual adjustment"
REASON_RESERVATION = "reservation"
REASON_DEDUCTION = "request deduction"
REASON_CONFIRMATION = "fulfilment confirmation"
REASON_REVERSAL = "cancellation reversal"

DEFAULT_COOLDOWN_MS = 4000


class SyncState(str, Enum):
    IDLE = "idle"
    MUTATING = "mutating"
    PERSISTED = "persisted"
    PUSHING = "pushing"
    COOLING_DOWN = "cooling_down"


class RequestPolicy(str, Enum):
    """How a new request touches stock"""
    RESERVE_ONLY = "reserve_only"    # starts Pending, counted via reservations
    EAGER_DEDUCT = "eager_deduct"    # starts Fulfilled, stock decremented at once


def new_request_id(taken: Iterable[str]) -> str:
    taken = set(taken)
    alphabet = string.ascii_uppercase + string.digits
    while True:
        candidate = "PED-" + "".join(random.choices(alphabet, k=4))
        if candidate not in taken:
            return candidate


def new_movement_id() -> str:
    return "MOV-" + uuid.uuid4().hex[:10].upper()


class ReconciliationEngine:
    """Serializes local mutations against the background pull loop"""

    def __init__(
        self,
        store: LocalStore,
        gateway: RemoteSyncGateway,
        scheduler: Scheduler,
        policy: Union[RequestPolicy, str] = RequestPolicy.RESERVE_ONLY,
        cooldown_ms: int = DEFAULT_COOLDOWN_MS,
        ledger_enabled: bool = True,
        allowed_vtrs: Optional[List[str]] = None,
        now: Callable[[], datetime] = datetime.utcnow
    ):
        self.store = store
        self.gateway = gateway
        self.scheduler = scheduler
        self.policy = RequestPolicy(policy)
        self.cooldown_ms = cooldown_ms
        self.ledger_enabled = ledger_enabled
        self.allowed_vtrs = list(allowed_vtrs or [])
        self._now = now

        self._lock = threading.RLock()
        self._materials: List[Material] = store.load_materials()
        self._requests: List[MaterialRequest] = store.load_requests()
        self._movements: List[StockMovement] = store.load_movements()

        self._state = SyncState.IDLE
        self._sync_in_flight = False
        self._push_generation = 0
        self._poller: Optional[Cancellable] = None
        self.last_updated: Optional[datetime] = None

    # =========================================================================
    # READ SIDE
    # =========================================================================

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def sync_in_flight(self) -> bool:
        return self._sync_in_flight

    @property
    def materials(self) -> List[Material]:
        with self._lock:
            return list(self._materials)

    @property
    def requests(self) -> List[MaterialRequest]:
        with self._lock:
            return list(self._requests)

    @property
    def movements(self) -> List[StockMovement]:
        with self._lock:
            return list(self._movements)

    def get_material(self, material_id: str) -> Material:
        with self._lock:
            for m in self._materials:
                if m.id == material_id:
                    return m
        raise UnknownMaterialError(f"Material {material_id} not found")

    def get_request(self, request_id: str) -> MaterialRequest:
        with self._lock:
            for r in self._requests:
                if r.id == request_id:
                    return r
        raise RequestNotFoundError(f"Request {request_id} not found")

    def materials_with_availability(self) -> List[MaterialOut]:
        """Materials joined with effective stock, recomputed on every call"""
        with self._lock:
            if self.policy == RequestPolicy.EAGER_DEDUCT:
                # stock already reflects every request
                return with_effective_stock(self._materials, [])
            return with_effective_stock(self._materials, self._requests)

    def available_stock(self, material_id: str) -> int:
        with self._lock:
            material = self.get_material(material_id)
            if self.policy == RequestPolicy.EAGER_DEDUCT:
                return material.stock
            reserved = reservation_map(self._requests).get(material_id, 0)
            return max(0, material.stock - reserved)

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def adjust_stock(self, material_id: str, new_stock: int) -> Optional[StockMovement]:
        """
        Set physical stock (clamped to >= 0) and record the signed delta.

        Returns the ledger entry, or None when nothing changed or the ledger
        is off.
        """
        with self._lock:
            material = self.get_material(material_id)
            target = max(0, int(new_stock))

            with self._mutation():
                delta = target - material.stock
                materials = [
                    m.model_copy(update={"stock": target}) if m.id == material_id else m
                    for m in self._materials
                ]
                movements = list(self._movements)
                movement = None
                if delta != 0 and self.ledger_enabled:
                    movement = self._movement(
                        material_id,
                        MovementType.IN if delta > 0 else MovementType.OUT,
                        abs(delta),
                        REASON_MANUAL
                    )
                    movements.append(movement)

                self._commit(materials=materials, movements=movements)

        logger.info("Stock of %s set to %d (delta %+d)", material_id, target, delta)
        self._schedule_push()
        return movement

    def create_request(self, vtr: str, items: List[Union[RequestedItem, dict]]) -> str:
        """
        Register a material request for a vehicle and return its id.

        Raises ValidationError (nothing is changed) for an empty or unknown
        vehicle, an empty item list, unknown materials, or quantities above
        the effective available stock.
        """
        vtr = (vtr or "").strip()
        if not vtr:
            raise ValidationError("Select a vehicle (VTR)")
        if self.allowed_vtrs and vtr not in self.allowed_vtrs:
            raise ValidationError(f"Unknown vehicle {vtr}")
        if not items:
            raise ValidationError("Select at least one material")

        wanted: Dict[str, int] = OrderedDict()
        for raw in items:
            try:
                item = raw if isinstance(raw, RequestedItem) else RequestedItem.model_validate(raw)
            except SchemaError as e:
                raise ValidationError(f"Invalid request item {raw!r}") from e
            wanted[item.material_id] = wanted.get(item.material_id, 0) + item.quantity

        with self._lock:
            for material_id, quantity in wanted.items():
                available = self.available_stock(material_id)
                if quantity > available:
                    raise InsufficientStockError(
                        f"Insufficient stock for {material_id}. "
                        f"Available: {available}, Requested: {quantity}"
                    )

            with self._mutation():
                eager = self.policy == RequestPolicy.EAGER_DEDUCT
                request = MaterialRequest(
                    id=new_request_id(r.id for r in self._requests),
                    vtr=vtr,
                    timestamp=self._now().isoformat(),
                    items=[RequestedItem(material_id=k, quantity=v) for k, v in wanted.items()],
                    status=RequestStatus.FULFILLED if eager else RequestStatus.PENDING,
                )

                materials = self._materials
                if eager:
                    materials = self._apply_items(materials, request.items, sign=-1)

                movements = list(self._movements)
                if self.ledger_enabled:
                    reason = REASON_DEDUCTION if eager else REASON_RESERVATION
                    for item in request.items:
                        movements.append(self._movement(
                            item.material_id, MovementType.OUT, item.quantity,
                            f"{reason} {request.id}"
                        ))

                self._commit(
                    materials=materials,
                    requests=self._requests + [request],
                    movements=movements
                )

        logger.info("Request %s registered for %s (%s)", request.id, vtr, request.status.value)
        self._schedule_push()
        return request.id

    def set_request_status(self, request_id: str, new_status: Union[RequestStatus, str]) -> bool:
        """
        Move a request to Fulfilled or Cancelled.

        Pending -> Fulfilled deducts the items; Pending -> Cancelled releases
        the reservation; Fulfilled -> Cancelled gives the items back to stock.
        Anything else (Cancelled is terminal) is a no-op and returns False.
        """
        try:
            new_status = coerce_status(new_status)
        except ValueError as e:
            raise ValidationError(f"Unknown request status {new_status!r}") from e

        with self._lock:
            request = self.get_request(request_id)
            current = request.status

            if current == RequestStatus.CANCELLED or current == new_status:
                return False
            if new_status == RequestStatus.PENDING:
                return False

            with self._mutation():
                materials = self._materials
                movements = list(self._movements)

                if new_status == RequestStatus.FULFILLED:
                    materials = self._apply_items(materials, request.items, sign=-1)
                    if self.ledger_enabled:
                        for item in request.items:
                            movements.append(self._movement(
                                item.material_id, MovementType.OUT, 0,
                                f"{REASON_CONFIRMATION} {request.id}"
                            ))
                else:
                    if current == RequestStatus.FULFILLED:
                        materials = self._apply_items(materials, request.items, sign=+1)
                    if self.ledger_enabled:
                        for item in request.items:
                            movements.append(self._movement(
                                item.material_id, MovementType.IN, item.quantity,
                                f"{REASON_REVERSAL} {request.id}"
                            ))

                updated = request.model_copy(update={"status": new_status})
                requests = [updated if r.id == request_id else r for r in self._requests]
                self._commit(materials=materials, requests=requests, movements=movements)

        logger.info("Request %s: %s -> %s", request_id, current.value, new_status.value)
        self._schedule_push()
        return True

    def push_now(self):
        """Push the current snapshot without a mutation (manual sync)"""
        self._schedule_push()

    # =========================================================================
    # PULL SIDE
    # =========================================================================

    def background_pull(self) -> bool:
        """
        Periodic pull. Dropped (not queued) while a sync is in flight, and
        discarded if a push started while the read was out.
        """
        with self._lock:
            if self._sync_in_flight:
                logger.debug("Background pull dropped: sync in flight")
                return False
            generation = self._push_generation

        result = self.gateway.pull()
        if result.status != PullStatus.OK:
            return False

        with self._lock:
            if self._sync_in_flight or generation != self._push_generation:
                logger.debug("Background pull discarded: local change since it started")
                return False
            self._merge(result.snapshot)
        return True

    def refresh(self) -> PullStatus:
        """Manual pull: always runs and applies, regardless of the in-flight flag"""
        result = self.gateway.pull()
        if result.status == PullStatus.OK:
            with self._lock:
                self._merge(result.snapshot)
        return result.status

    def start(self, interval_s: float):
        if self._poller is None:
            self._poller = self.scheduler.call_every(interval_s, self.background_pull)

    def stop(self):
        if self._poller is not None:
            self._poller.cancel()
            self._poller = None

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _movement(self, material_id: str, type_: MovementType, quantity: int, reason: str) -> StockMovement:
        return StockMovement(
            id=new_movement_id(),
            material_id=material_id,
            type=type_,
            quantity=quantity,
            timestamp=self._now().isoformat(),
            reason=reason,
        )

    def _apply_items(self, materials: List[Material], items: List[RequestedItem], sign: int) -> List[Material]:
        delta: Dict[str, int] = {}
        for item in items:
            delta[item.material_id] = delta.get(item.material_id, 0) + sign * item.quantity

        known = {m.id for m in materials}
        for material_id in delta:
            if material_id not in known:
                logger.warning("Request item references unknown material %s, stock untouched", material_id)

        return [
            m.model_copy(update={"stock": max(0, m.stock + delta[m.id])}) if m.id in delta else m
            for m in materials
        ]

    @contextmanager
    def _mutation(self):
        """MUTATING for the duration of the block, PERSISTED once it commits.
        Caller holds the lock."""
        previous = self._state
        self._state = SyncState.MUTATING
        try:
            yield
        except Exception:
            self._state = previous
            raise
        self._state = SyncState.PERSISTED

    def _commit(
        self,
        materials: Optional[List[Material]] = None,
        requests: Optional[List[MaterialRequest]] = None,
        movements: Optional[List[StockMovement]] = None,
    ):
        """Persist first, then swap in-memory state. Caller holds the lock."""
        self.store.save_snapshot(materials=materials, requests=requests, movements=movements)
        if materials is not None:
            self._materials = materials
        if requests is not None:
            self._requests = requests
        if movements is not None:
            self._movements = movements

    def _merge(self, snapshot: RemoteSnapshot):
        """Apply each collection the remote sent; remote rows win, local-only rows stay"""
        materials = requests = movements = None
        if snapshot.materials is not None:
            materials = merge_by_key(snapshot.materials, self._materials, lambda m: m.code)
        if snapshot.requests is not None:
            requests = merge_by_key(snapshot.requests, self._requests, lambda r: r.id)
        if snapshot.movements is not None:
            movements = merge_by_key(self._movements, snapshot.movements, lambda m: m.id)

        self._commit(materials=materials, requests=requests, movements=movements)
        self.last_updated = self._now()
        logger.info(
            "Merged remote snapshot (materials=%s, requests=%s, movements=%s)",
            len(snapshot.materials) if snapshot.materials is not None else "-",
            len(snapshot.requests) if snapshot.requests is not None else "-",
            len(snapshot.movements) if snapshot.movements is not None else "-",
        )

    def _schedule_push(self):
        with self._lock:
            self._push_generation += 1
            generation = self._push_generation
            self._sync_in_flight = True
            self._state = SyncState.PUSHING
            snapshot = (list(self._materials), list(self._requests), list(self._movements))
        self.scheduler.submit(lambda: self._run_push(generation, *snapshot))

    def _run_push(self, generation: int, materials, requests, movements):
        try:
            status = self.gateway.push(materials, requests, movements)
            logger.debug("Push #%d finished: %s", generation, status.value)
        except Exception:
            logger.exception("Push #%d failed", generation)
        finally:
            with self._lock:
                if generation == self._push_generation:
                    self._state = SyncState.COOLING_DOWN
            self.scheduler.call_later(self.cooldown_ms / 1000, lambda: self._end_cooldown(generation))

    def _end_cooldown(self, generation: int):
        with self._lock:
            # an older push's timer must not clear the flag of a newer one
            if generation != self._push_generation:
                return
            self._sync_in_flight = False
            self._state = SyncState.IDLE
