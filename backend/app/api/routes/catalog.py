from fastapi import APIRouter, Query, status
from sqlalchemy import or_, select

from app.api.deps import AdminDep, DbSessionDep
from app.core.errors import NotFound
from app.models.models import CatalogItem
from app.schemas.family import CatalogItemCreate, CatalogItemPublic, CatalogItemUpdate
from app.services.policy import magic_points_cost


router = APIRouter(prefix="/catalog", tags=["catalog"])


def _public(item: CatalogItem) -> CatalogItemPublic:
    data = CatalogItemPublic.model_validate(item)
    data.magic_points = magic_points_cost(item.price)
    return data


@router.get("", response_model=list[CatalogItemPublic])
async def list_catalog(
    db: DbSessionDep,
    q: str | None = Query(default=None, max_length=120),
    category: str | None = Query(default=None, max_length=120),
    max_price: float | None = Query(default=None, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
) -> list[CatalogItemPublic]:
    stmt = select(CatalogItem).where(CatalogItem.is_active.is_(True))
    if q and q.strip():
        pattern = f"%{q.strip()}%"
        stmt = stmt.where(or_(CatalogItem.title.ilike(pattern), CatalogItem.brand.ilike(pattern)))
    if category:
        stmt = stmt.where(CatalogItem.category == category)
    if max_price is not None:
        stmt = stmt.where(CatalogItem.price <= max_price)
    result = await db.execute(stmt.order_by(CatalogItem.title, CatalogItem.id).limit(limit))
    return [_public(item) for item in result.scalars().all()]


@router.get("/{item_id}", response_model=CatalogItemPublic)
async def get_catalog_item(item_id: int, db: DbSessionDep) -> CatalogItemPublic:
    item = await db.get(CatalogItem, item_id)
    if item is None or not item.is_active:
        raise NotFound("Gift not found in catalog")
    return _public(item)


@router.post("", response_model=CatalogItemPublic, status_code=status.HTTP_201_CREATED)
async def create_catalog_item(payload: CatalogItemCreate, db: DbSessionDep, admin: AdminDep) -> CatalogItemPublic:
    item = CatalogItem(**payload.model_dump())
    db.add(item)
    await db.commit()
    await db.refresh(item)
    return _public(item)


@router.patch("/{item_id}", response_model=CatalogItemPublic)
async def update_catalog_item(
    item_id: int,
    payload: CatalogItemUpdate,
    db: DbSessionDep,
    admin: AdminDep,
) -> CatalogItemPublic:
    item = await db.get(CatalogItem, item_id)
    if item is None:
        raise NotFound("Gift not found in catalog")
    for key, value in payload.model_dump(exclude_unset=True).items():
        setattr(item, key, value)
    await db.commit()
    await db.refresh(item)
    return _public(item)
