"""Collection endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import get_premium_filter
from ..deps import get_db, get_storage
from ..pagination import PageParams, page_params, paginate
from ..services import catalog
from ..services.premium import PremiumFilter
from ..services.storage import StorageService

router = APIRouter(prefix="/api/v1/collections", tags=["Collections"])


@router.get("", response_model=schemas.PagedResponse[schemas.Collection])
def list_collections(
    params: PageParams = Depends(page_params),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    premium: PremiumFilter = Depends(get_premium_filter),
):
    return paginate(
        catalog.collections_query(db, premium),
        params,
        lambda collection: schemas.Collection.from_model(collection, storage),
        allowed_sorts=catalog.COLLECTION_SORTS,
        default_order=(models.Collection.title.asc(),),
    )


@router.get("/{collection_id}", response_model=schemas.Collection)
def get_collection(
    collection_id: int,
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    premium: PremiumFilter = Depends(get_premium_filter),
) -> schemas.Collection:
    collection = catalog.get_collection(db, collection_id, premium)
    counts = catalog.lecture_counts(db, [collection.id])
    return schemas.Collection.from_model(
        collection, storage, lecture_count=counts.get(collection.id, 0)
    )
