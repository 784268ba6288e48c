"""
Inventory Router: product CRUD, manual stock adjustment and repair.
"""
from fastapi import APIRouter, Depends

from hare_pos.models.api_models import ProductCreate, ProductUpdate, StockAdjust
from hare_pos.models.pos_models import Shelf
from hare_pos.routers.deps import get_session
from hare_pos.services.session_service import PosSession

router = APIRouter()


@router.get("")
async def get_inventory(session: PosSession = Depends(get_session)):
    return session.store.inventory.to_wire()


@router.post("/products", status_code=201)
async def add_product(body: ProductCreate, session: PosSession = Depends(get_session)):
    product = session.store.add_product(
        body.shelf,
        body.name,
        stock=body.stock,
        price=body.price,
        usage_per_cup=body.usage_per_cup,
        grams=body.grams,
    )
    return product.to_wire()


@router.patch("/products/{shelf}/{product_id}")
async def update_product(shelf: Shelf, product_id: str, body: ProductUpdate, session: PosSession = Depends(get_session)):
    product = session.store.update_product(shelf, product_id, **body.model_dump(exclude_none=True))
    return product.to_wire()


@router.delete("/products/{shelf}/{product_id}")
async def delete_product(shelf: Shelf, product_id: str, session: PosSession = Depends(get_session)):
    session.store.delete_product(shelf, product_id)
    return {"status": "deleted", "id": product_id}


@router.post("/products/{shelf}/{product_id}/adjust")
async def adjust_stock(shelf: Shelf, product_id: str, body: StockAdjust, session: PosSession = Depends(get_session)):
    product = session.store.adjust_stock(shelf, product_id, body.delta_kg)
    return product.to_wire()


@router.post("/repair")
async def repair_inventory(session: PosSession = Depends(get_session)):
    """Re-run deduplication/normalization and save the result."""
    return session.store.repair_inventory().to_wire()
