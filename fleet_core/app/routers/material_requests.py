from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..config import Settings
from ..deps import get_engine, get_settings, require_admin
from ..schemas import (
    MaterialRequest, RequestCreateIn, RequestCreatedOut, RequestStatus,
    StatusChangeIn, StatusChangeOut
)
from ..services.errors import RequestNotFoundError, ValidationError
from ..services.reconciliation import ReconciliationEngine

router = APIRouter(tags=["requests"])


@router.get("/vtrs", response_model=List[str])
def list_vtrs(settings: Settings = Depends(get_settings)):
    return settings.allowed_vtrs


@router.post("/requests", response_model=RequestCreatedOut, status_code=201)
def create_request(data: RequestCreateIn, engine: ReconciliationEngine = Depends(get_engine)):
    try:
        request_id = engine.create_request(data.vtr, data.items)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return RequestCreatedOut(id=request_id, status=engine.get_request(request_id).status)


@router.get("/requests", response_model=List[MaterialRequest], response_model_by_alias=True)
def list_requests(
    status: Optional[RequestStatus] = Query(None),
    engine: ReconciliationEngine = Depends(get_engine),
):
    requests = engine.requests
    if status:
        requests = [r for r in requests if r.status == status]
    return sorted(requests, key=lambda r: r.timestamp, reverse=True)


@router.post("/requests/{request_id}/status", response_model=StatusChangeOut)
def set_request_status(
    request_id: str,
    data: StatusChangeIn,
    engine: ReconciliationEngine = Depends(get_engine),
    _admin: bool = Depends(require_admin),
):
    try:
        changed = engine.set_request_status(request_id, data.status)
    except RequestNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return StatusChangeOut(
        id=request_id,
        status=engine.get_request(request_id).status,
        changed=changed,
    )
