"""Category browsing endpoints."""

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

router = APIRouter(prefix="/api/v1/categories", tags=["Categories"])


@router.get("", response_model=list[schemas.Category])
def list_categories(db: Session = Depends(get_db)) -> list[schemas.Category]:
    """Active top-level categories in display order."""
    return [schemas.Category.from_model(c) for c in catalog.top_level_categories(db)]


@router.get("/featured", response_model=list[schemas.Category])
def list_featured_categories(db: Session = Depends(get_db)) -> list[schemas.Category]:
    return [schemas.Category.from_model(c) for c in catalog.featured_categories(db)]


@router.get("/{slug}", response_model=schemas.CategoryDetail)
def get_category(
    slug: str,
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    premium: PremiumFilter = Depends(get_premium_filter),
) -> schemas.CategoryDetail:
    """Category with its subcategories and up to five featured collections."""
    category = catalog.get_category(db, slug)
    base = schemas.Category.from_model(category)
    return schemas.CategoryDetail(
        **base.model_dump(),
        subcategories=[
            schemas.Category.from_model(sub) for sub in catalog.subcategories(db, category)
        ],
        featured_collections=[
            schemas.Collection.from_model(collection, storage)
            for collection in catalog.featured_collections(db, category, premium)
        ],
    )


@router.get("/{slug}/subcategories", response_model=list[schemas.Category])
def list_subcategories(slug: str, db: Session = Depends(get_db)) -> list[schemas.Category]:
    category = catalog.get_category(db, slug)
    return [schemas.Category.from_model(sub) for sub in catalog.subcategories(db, category)]


@router.get("/{slug}/lectures", response_model=schemas.PagedResponse[schemas.Lecture])
def list_category_lectures(
    slug: str,
    params: PageParams = Depends(page_params),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    premium: PremiumFilter = Depends(get_premium_filter),
):
    category = catalog.get_category(db, slug)
    return paginate(
        catalog.category_lectures(db, category, premium),
        params,
        lambda lecture: schemas.Lecture.from_model(lecture, storage),
        allowed_sorts=catalog.LECTURE_SORTS,
        default_order=(
            models.LectureCategory.is_primary.desc(),
            models.Lecture.play_count.desc(),
            models.Lecture.title.asc(),
        ),
    )


@router.get("/{slug}/collections", response_model=schemas.PagedResponse[schemas.Collection])
def list_category_collections(
    slug: str,
    params: PageParams = Depends(page_params),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    premium: PremiumFilter = Depends(get_premium_filter),
):
    category = catalog.get_category(db, slug)
    return paginate(
        catalog.category_collections(db, category, premium),
        params,
        lambda collection: schemas.Collection.from_model(collection, storage),
        allowed_sorts=catalog.COLLECTION_SORTS,
        default_order=(
            models.CollectionCategory.is_primary.desc(),
            models.Collection.title.asc(),
        ),
    )
