from fastapi import APIRouter, Depends

from ..deps import get_engine, require_admin
from ..schemas import RefreshOut, SyncStatusOut
from ..services.reconciliation import ReconciliationEngine

router = APIRouter(prefix="/sync", tags=["sync"])


@router.get("/status", response_model=SyncStatusOut)
def sync_status(engine: ReconciliationEngine = Depends(get_engine)):
    return SyncStatusOut(
        state=engine.state.value,
        sync_in_flight=engine.sync_in_flight,
        remote_configured=engine.gateway.configured,
        request_policy=engine.policy.value,
        last_updated=engine.last_updated.isoformat() if engine.last_updated else None,
    )


@router.post("/refresh", response_model=RefreshOut)
def refresh(engine: ReconciliationEngine = Depends(get_engine)):
    """Pull now, even while a push is cooling down."""
    status = engine.refresh()
    return RefreshOut(
        status=status.value,
        last_updated=engine.last_updated.isoformat() if engine.last_updated else None,
    )


@router.post("/push", status_code=202)
def push(engine: ReconciliationEngine = Depends(get_engine), _admin: bool = Depends(require_admin)):
    """Send the full local snapshot to the remote store."""
    engine.push_now()
    return {"queued": True, "remote_configured": engine.gateway.configured}
