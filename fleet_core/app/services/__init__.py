"""
Services package initialization.
Local-first stock logic and remote reconciliation.
"""

from .errors import (
    InventoryError,
    ValidationError,
    InsufficientStockError,
    UnknownMaterialError,
    RequestNotFoundError,
    TransportError,
    StoreParseError,
)
from .gateway import (
    RemoteSyncGateway,
    RemoteSnapshot,
    PullResult,
    PullStatus,
    PushStatus,
)
from .local_store import LocalStore, parse_catalog
from .merge import dedupe_by_key, merge_by_key
from .reconciliation import ReconciliationEngine, RequestPolicy, SyncState
from .reservation import effective_stock, reservation_map, with_effective_stock
from .scheduler import Scheduler, ThreadScheduler

__all__ = [
    'InventoryError',
    'ValidationError',
    'InsufficientStockError',
    'UnknownMaterialError',
    'RequestNotFoundError',
    'TransportError',
    'StoreParseError',
    'RemoteSyncGateway',
    'RemoteSnapshot',
    'PullResult',
    'PullStatus',
    'PushStatus',
    'LocalStore',
    'parse_catalog',
    'dedupe_by_key',
    'merge_by_key',
    'ReconciliationEngine',
    'RequestPolicy',
    'SyncState',
    'effective_stock',
    'reservation_map',
    'with_effective_stock',
    'Scheduler',
    'ThreadScheduler',
]
