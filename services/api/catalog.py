"""Category and vendor management, plus suggestion endpoints."""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from shared import get_db, User, Category, Vendor
from services.api.deps import get_current_user
from services.api.schemas import (
    CategoryCreate, CategoryUpdate, VendorCreate, VendorUpdate,
    serialize_category, serialize_vendor,
)
from services.extractor.categorizer import DEFAULT_CATEGORIES
from services.invoices.operations import find_category_by_name, find_vendor_by_name
from services.learning.feedback import (
    get_personalized_category_suggestions, get_personalized_vendor_suggestions,
)
from services.reconciler.vendors import suggest_vendors

logger = logging.getLogger(__name__)

router = APIRouter(tags=["catalog"])


def _category(db: Session, user: User, category_id: UUID) -> Category:
    category = (
        db.query(Category)
        .filter(Category.category_id == category_id, Category.user_id == user.user_id)
        .first()
    )
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return category


def _vendor(db: Session, user: User, vendor_id: UUID) -> Vendor:
    vendor = (
        db.query(Vendor)
        .filter(Vendor.vendor_id == vendor_id, Vendor.user_id == user.user_id)
        .first()
    )
    if not vendor:
        raise HTTPException(status_code=404, detail="Vendor not found")
    return vendor


@router.get("/categories")
def list_categories(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    categories = (
        db.query(Category)
        .filter(Category.user_id == user.user_id)
        .order_by(Category.name.asc())
        .all()
    )
    return [serialize_category(c) for c in categories]


@router.post("/categories")
def create_category(
    request: CategoryCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    name = request.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Category name is required")
    if find_category_by_name(db, user, name):
        raise HTTPException(status_code=400, detail=f"Category '{name}' already exists")

    category = Category(
        name=name,
        description=request.description,
        color=request.color,
        icon=request.icon,
        user_id=user.user_id,
        organization_id=user.organization_id,
    )
    db.add(category)
    db.commit()
    db.refresh(category)
    return serialize_category(category)


@router.get("/categories/suggestions")
def category_suggestions(
    vendor_name: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Defaults re-ranked by the categories this user chose for the vendor before."""
    defaults = list(DEFAULT_CATEGORIES)
    if not vendor_name:
        return {"suggestions": defaults}
    return {
        "suggestions": get_personalized_category_suggestions(db, user.user_id, vendor_name, defaults)
    }


@router.put("/categories/{category_id}")
def update_category(
    category_id: UUID,
    request: CategoryUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    category = _category(db, user, category_id)
    changes = request.model_dump(exclude_unset=True)

    if changes.get("name") is not None:
        name = changes["name"].strip()
        existing = find_category_by_name(db, user, name)
        if not name or (existing and existing.category_id != category.category_id):
            raise HTTPException(status_code=400, detail=f"Category '{name}' already exists")
        changes["name"] = name

    for field, value in changes.items():
        setattr(category, field, value)
    db.commit()
    db.refresh(category)
    return serialize_category(category)


@router.delete("/categories/{category_id}")
def delete_category(
    category_id: UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    category = _category(db, user, category_id)
    db.delete(category)
    db.commit()
    return {"success": True, "category_id": str(category_id)}


@router.get("/vendors")
def list_vendors(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    vendors = db.query(Vendor).filter(Vendor.user_id == user.user_id).order_by(Vendor.name.asc()).all()
    return [serialize_vendor(v) for v in vendors]


@router.post("/vendors")
def create_vendor(
    request: VendorCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    name = request.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Vendor name is required")
    if find_vendor_by_name(db, user, name):
        raise HTTPException(status_code=400, detail=f"Vendor '{name}' already exists")

    vendor = Vendor(
        **request.model_dump(exclude={"name"}),
        name=name,
        user_id=user.user_id,
        organization_id=user.organization_id,
    )
    db.add(vendor)
    db.commit()
    db.refresh(vendor)
    return serialize_vendor(vendor)


@router.get("/vendors/suggestions")
def vendor_suggestions(
    name: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Past corrections for this name first, then fuzzy matches against known vendors."""
    existing = [v.name for v in db.query(Vendor).filter(Vendor.user_id == user.user_id).all()]
    personalized = get_personalized_vendor_suggestions(db, user.user_id, name or "", existing)
    suggestions = list(personalized)
    for candidate in suggest_vendors(name, existing):
        if candidate not in suggestions:
            suggestions.append(candidate)
    return {"suggestions": suggestions[:5]}


@router.get("/vendors/{vendor_id}")
def get_vendor(vendor_id: UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return serialize_vendor(_vendor(db, user, vendor_id))


@router.put("/vendors/{vendor_id}")
def update_vendor(
    vendor_id: UUID,
    request: VendorUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    vendor = _vendor(db, user, vendor_id)
    changes = request.model_dump(exclude_unset=True)

    if changes.get("name") is not None:
        name = changes["name"].strip()
        existing = find_vendor_by_name(db, user, name)
        if not name or (existing and existing.vendor_id != vendor.vendor_id):
            raise HTTPException(status_code=400, detail=f"Vendor '{name}' already exists")
        changes["name"] = name

    for field, value in changes.items():
        setattr(vendor, field, value)
    db.commit()
    db.refresh(vendor)
    return serialize_vendor(vendor)


@router.delete("/vendors/{vendor_id}")
def delete_vendor(vendor_id: UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    vendor = _vendor(db, user, vendor_id)
    db.delete(vendor)
    db.commit()
    return {"success": True, "vendor_id": str(vendor_id)}
