"""
Stock API Router
================
Catalog with effective available stock, manual adjustments and the
movement ledger.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..deps import get_engine, require_admin
from ..schemas import MaterialOut, StockAdjustIn, StockMovement
from ..services.errors import UnknownMaterialError
from ..services.reconciliation import ReconciliationEngine

router = APIRouter(tags=["stock"])


@router.get("/materials", response_model=List[MaterialOut])
def list_materials(
    search: Optional[str] = Query(None),
    available_only: bool = False,
    engine: ReconciliationEngine = Depends(get_engine),
):
    """
    List materials with their effective available stock.

    `search` matches code or name (case-insensitive); `available_only`
    keeps materials that can still be requested.
    """
    materials = engine.materials_with_availability()

    if search:
        term = search.strip().lower()
        materials = [
            m for m in materials
            if term in m.name.lower() or term in m.code.lower()
        ]

    if available_only:
        materials = [m for m in materials if m.available_stock > 0]

    return materials


@router.get("/materials/{material_id}", response_model=MaterialOut)
def get_material(material_id: str, engine: ReconciliationEngine = Depends(get_engine)):
    for m in engine.materials_with_availability():
        if m.id == material_id:
            return m
    raise HTTPException(status_code=404, detail="Material not found")


@router.put("/materials/{material_id}/stock", response_model=MaterialOut)
def adjust_stock(
    material_id: str,
    data: StockAdjustIn,
    engine: ReconciliationEngine = Depends(get_engine),
    _admin: bool = Depends(require_admin),
):
    """Set physical stock after a count; the delta goes to the ledger."""
    try:
        engine.adjust_stock(material_id, data.stock)
    except UnknownMaterialError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return get_material(material_id, engine)


@router.get("/movements", response_model=List[StockMovement], response_model_by_alias=True)
def list_movements(
    material_id: Optional[str] = Query(None),
    engine: ReconciliationEngine = Depends(get_engine),
    _admin: bool = Depends(require_admin),
):
    movements = engine.movements
    if material_id:
        movements = [mv for mv in movements if mv.material_id == material_id]
    return sorted(movements, key=lambda mv: mv.timestamp, reverse=True)
