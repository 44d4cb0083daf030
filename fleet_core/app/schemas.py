from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, validator


class RequestStatus(str, Enum):
    """Lifecycle of a material request"""
    PENDING = "Pending"
    FULFILLED = "Fulfilled"
    CANCELLED = "Cancelled"


class MovementType(str, Enum):
    """Direction of a ledger entry"""
    IN = "In"
    OUT = "Out"


# Labels written by earlier versions of the field app
LEGACY_STATUS_LABELS = {
    "pendente": RequestStatus.PENDING,
    "atendido": RequestStatus.FULFILLED,
    "cancelado": RequestStatus.CANCELLED,
}

LEGACY_MOVEMENT_LABELS = {
    "entrada": MovementType.IN,
    "saída": MovementType.OUT,
    "saida": MovementType.OUT,
}


def coerce_quantity(value) -> int:
    """Coerce spreadsheet-ish numbers ("5", 5.0, "") to a non-negative int."""
    if value is None or value == "":
        return 0
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        raise ValueError(f"not a number: {value!r}")
    return max(0, number)


def coerce_status(value) -> RequestStatus:
    """Accept a RequestStatus, its value, or a legacy label. Raises ValueError."""
    if isinstance(value, str) and value.strip().lower() in LEGACY_STATUS_LABELS:
        return LEGACY_STATUS_LABELS[value.strip().lower()]
    return RequestStatus(value)


# =============================================================================
# ENTITIES
# =============================================================================

class Material(BaseModel):
    """A catalog material. `id` is the code; `stock` is physical on-hand quantity."""
    id: str
    code: str
    name: str
    stock: int = 0

    @validator("stock", pre=True)
    def clamp_stock(cls, v):
        return coerce_quantity(v)


class RequestedItem(BaseModel):
    material_id: str = Field(..., alias="materialId", min_length=1)
    quantity: int = Field(..., gt=0)

    class Config:
        populate_by_name = True


class MaterialRequest(BaseModel):
    id: str = Field(..., min_length=1)
    vtr: str
    timestamp: str
    items: List[RequestedItem]
    status: RequestStatus = RequestStatus.PENDING

    @validator("status", pre=True)
    def accept_legacy_status(cls, v):
        if isinstance(v, str) and v.strip().lower() in LEGACY_STATUS_LABELS:
            return coerce_status(v)
        return v


class StockMovement(BaseModel):
    """Append-only ledger entry"""
    id: str = Field(..., min_length=1)
    material_id: str = Field(..., alias="materialId")
    type: MovementType
    quantity: int = Field(..., ge=0)
    timestamp: str
    reason: str = ""

    class Config:
        populate_by_name = True

    @validator("type", pre=True)
    def accept_legacy_type(cls, v):
        if isinstance(v, str) and v.strip().lower() in LEGACY_MOVEMENT_LABELS:
            return LEGACY_MOVEMENT_LABELS[v.strip().lower()]
        return v

    @validator("quantity", pre=True)
    def coerce_movement_quantity(cls, v):
        return coerce_quantity(v)


# =============================================================================
# API SCHEMAS
# =============================================================================

class MaterialOut(BaseModel):
    """Material with its effective available stock"""
    id: str
    code: str
    name: str
    stock: int
    available_stock: int


class StockAdjustIn(BaseModel):
    stock: int = Field(..., description="New physical stock; negative values clamp to 0")


class RequestCreateIn(BaseModel):
    vtr: str
    items: List[RequestedItem]


class RequestCreatedOut(BaseModel):
    id: str
    status: RequestStatus


class StatusChangeIn(BaseModel):
    status: RequestStatus


class StatusChangeOut(BaseModel):
    id: str
    status: RequestStatus
    changed: bool


class SyncStatusOut(BaseModel):
    state: str
    sync_in_flight: bool
    remote_configured: bool
    request_policy: str
    last_updated: Optional[str] = None


class RefreshOut(BaseModel):
    status: str
    last_updated: Optional[str] = None
