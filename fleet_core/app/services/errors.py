"""
Error taxonomy for stock and sync operations.

ValidationError and its subclasses are raised synchronously, before any
state is touched. TransportError never leaves the gateway: it is turned
into a PushStatus / PullStatus there. StoreParseError is localized to a
single persisted or pulled record.
"""


class InventoryError(Exception):
    """Base exception for inventory operations"""
    pass


class ValidationError(InventoryError):
    """Raised when caller input is rejected"""
    pass


class InsufficientStockError(ValidationError):
    """Raised when a request asks for more than the effective available stock"""
    pass


class UnknownMaterialError(ValidationError):
    """Raised when a material id is not in the local catalog"""
    pass


class RequestNotFoundError(InventoryError):
    """Raised when a request id is not known locally"""
    pass


class TransportError(InventoryError):
    """Raised when the remote endpoint cannot be reached or answers badly"""
    pass


class StoreParseError(InventoryError):
    """Raised when a persisted or pulled payload has the wrong shape"""
    pass
