"""
Effective available stock.

Reserved quantity for a material is the sum of its item quantities over
Pending requests; effective stock is max(0, stock - reserved). This is a
view: nothing here writes to a Material. Recompute it on every query.
"""

from collections import defaultdict
from typing import Dict, Iterable, List

from ..schemas import Material, MaterialOut, MaterialRequest, RequestStatus


def reservation_map(requests: Iterable[MaterialRequest]) -> Dict[str, int]:
    """Single pass over pending items: material id -> reserved quantity."""
    reserved: Dict[str, int] = defaultdict(int)
    for req in requests:
        if req.status != RequestStatus.PENDING:
            continue
        for item in req.items:
            reserved[item.material_id] += item.quantity
    return dict(reserved)


def effective_stock(material: Material, requests: Iterable[MaterialRequest]) -> int:
    reserved = reservation_map(requests).get(material.id, 0)
    return max(0, material.stock - reserved)


def with_effective_stock(
    materials: Iterable[Material],
    requests: Iterable[MaterialRequest]
) -> List[MaterialOut]:
    """Join every material with its effective stock (O(items) + O(materials))."""
    reserved = reservation_map(requests)
    return [
        MaterialOut(
            id=m.id,
            code=m.code,
            name=m.name,
            stock=m.stock,
            available_stock=max(0, m.stock - reserved.get(m.id, 0)),
        )
        for m in materials
    ]
