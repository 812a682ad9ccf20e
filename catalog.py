import re
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from pymongo.database import Database

from auth import get_current_user, require_admin
from cache import FeaturedProductsCache, get_featured_cache
from database import create_document, get_db, serialize_doc, to_object_id, utcnow
from schemas import CLAIM_STATUSES, Product, WarrantyClaim

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/products", tags=["products"])


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = None
    sale_price: Optional[float] = None
    category: Optional[str] = None
    image: Optional[str] = None
    quantity: Optional[int] = None


class QuantityCheckIn(BaseModel):
    id: str
    quantity: int


class WarrantyClaimIn(BaseModel):
    product_name: Optional[str] = None
    reason: Optional[str] = None
    photo: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None


class ClaimStatusIn(BaseModel):
    status: Optional[str] = None


def load_featured(db: Database) -> List[dict]:
    return [serialize_doc(p) for p in db["product"].find({"is_featured": True})]


def find_product_or_404(db: Database, product_id: str) -> dict:
    oid = to_object_id(product_id)
    product = db["product"].find_one({"_id": oid}) if oid else None
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@router.get("", dependencies=[Depends(require_admin)])
def get_all_products(db: Database = Depends(get_db)):
    return {"products": [serialize_doc(p) for p in db["product"].find()]}


@router.get("/featured")
def get_featured_products(db: Database = Depends(get_db), cache: FeaturedProductsCache = Depends(get_featured_cache)):
    return cache.get_or_load(lambda: load_featured(db))


@router.get("/recommendations")
def get_recommended_products(db: Database = Depends(get_db)):
    products = db["product"].aggregate([
        {"$sample": {"size": 4}},
        {"$project": {"_id": 1, "name": 1, "description": 1, "image": 1, "price": 1, "sale_price": 1}},
    ])
    return [serialize_doc(p) for p in products]


@router.get("/category/{category}")
def get_products_by_category(category: str, db: Database = Depends(get_db)):
    products = db["product"].find({"category": category, "close_out": {"$ne": True}})
    return {"success": True, "products": [serialize_doc(p) for p in products]}


@router.get("/search")
def search_products(name: Optional[str] = Query(None), db: Database = Depends(get_db)):
    if not name:
        raise HTTPException(status_code=400, detail="Query parameter is required")
    products = [serialize_doc(p) for p in db["product"].find({"name": {"$regex": re.escape(name), "$options": "i"}})]
    if not products:
        raise HTTPException(status_code=404, detail="No products found")
    return {"products": products}


@router.get("/clearance-sale")
def get_clearance_products(db: Database = Depends(get_db)):
    products = [serialize_doc(p) for p in db["product"].find({"close_out": True})]
    if not products:
        raise HTTPException(status_code=404, detail="No clearance sale products found")
    return {"products": products}


@router.post("", status_code=201, dependencies=[Depends(require_admin)])
def create_product(payload: Product, db: Database = Depends(get_db), cache: FeaturedProductsCache = Depends(get_featured_cache)):
    pid = create_document(db, "product", payload)
    if payload.is_featured:
        cache.refresh(lambda: load_featured(db))
    logger.info("product_created", product_id=pid)
    return {"id": pid, **payload.model_dump()}


@router.post("/update-quantity")
def check_product_quantity(payload: QuantityCheckIn, db: Database = Depends(get_db)):
    if payload.quantity < 0:
        raise HTTPException(status_code=400, detail="Quantity cannot be negative")
    product = find_product_or_404(db, payload.id)
    if product.get("quantity", 0) < payload.quantity:
        raise HTTPException(status_code=400, detail=f"Only {product.get('quantity', 0)} left in stock")
    return {"success": True, "message": "Product quantity updated successfully"}


@router.patch("/{product_id}", dependencies=[Depends(require_admin)])
def toggle_featured_product(product_id: str, db: Database = Depends(get_db), cache: FeaturedProductsCache = Depends(get_featured_cache)):
    product = find_product_or_404(db, product_id)
    is_featured = not product.get("is_featured", False)
    db["product"].update_one({"_id": product["_id"]}, {"$set": {"is_featured": is_featured, "updated_at": utcnow()}})
    cache.refresh(lambda: load_featured(db))
    return serialize_doc(db["product"].find_one({"_id": product["_id"]}))


@router.post("/id/{product_id}", dependencies=[Depends(require_admin)])
def edit_product(product_id: str, payload: ProductUpdate, db: Database = Depends(get_db), cache: FeaturedProductsCache = Depends(get_featured_cache)):
    product = find_product_or_404(db, product_id)
    update = payload.model_dump(exclude_none=True)
    update["updated_at"] = utcnow()
    db["product"].update_one({"_id": product["_id"]}, {"$set": update})
    cache.refresh(lambda: load_featured(db))
    return serialize_doc(db["product"].find_one({"_id": product["_id"]}))


@router.delete("/{product_id}", dependencies=[Depends(require_admin)])
def delete_product(product_id: str, db: Database = Depends(get_db), cache: FeaturedProductsCache = Depends(get_featured_cache)):
    product = find_product_or_404(db, product_id)
    db["product"].delete_one({"_id": product["_id"]})
    cache.refresh(lambda: load_featured(db))
    logger.info("product_deleted", product_id=product_id)
    return {"message": "Product deleted successfully"}


# Warranty claims

@router.post("/warranty/claim", status_code=201)
def claim_warranty(payload: WarrantyClaimIn, user=Depends(get_current_user), db: Database = Depends(get_db)):
    fields = payload.model_dump()
    if not all(fields.values()):
        raise HTTPException(status_code=400, detail="All fields are required")

    claim = WarrantyClaim(
        user_id=str(user["_id"]),
        product_name=payload.product_name,
        reason=payload.reason,
        address=payload.address,
        phone=payload.phone,
        image_url=payload.photo,
    )
    claim_id = create_document(db, "warrantyclaim", claim)
    logger.info("warranty_claim_created", claim_id=claim_id)
    return {"success": True, "id": claim_id}


@router.get("/warranty/claim/dashboard", dependencies=[Depends(require_admin)])
def warranty_claims_dashboard(db: Database = Depends(get_db)):
    claims = list(db["warrantyclaim"].find())
    user_ids = {to_object_id(c["user_id"]) for c in claims}
    users = {
        str(u["_id"]): {"name": u.get("name"), "email": u.get("email")}
        for u in db["user"].find({"_id": {"$in": [oid for oid in user_ids if oid]}})
    }
    result = []
    for claim in claims:
        doc = serialize_doc(claim)
        doc["user"] = users.get(claim["user_id"])
        result.append(doc)
    return result


@router.put("/warranty/claim/{claim_id}", dependencies=[Depends(require_admin)])
def update_warranty_claim_status(claim_id: str, payload: ClaimStatusIn, db: Database = Depends(get_db)):
    if payload.status not in CLAIM_STATUSES:
        raise HTTPException(status_code=400, detail="Invalid status")
    oid = to_object_id(claim_id)
    modified = 0
    if oid:
        res = db["warrantyclaim"].update_one({"_id": oid, "status": {"$ne": payload.status}}, {"$set": {"status": payload.status, "updated_at": utcnow()}})
        modified = res.modified_count
    if modified == 0:
        raise HTTPException(status_code=404, detail="Claim not found or status already set to this value")
    return {"success": True, "message": "Warranty claim status updated successfully"}


# Product detail page, looked up by name

@router.get("/{name}")
def get_product_page(name: str, db: Database = Depends(get_db)):
    product = db["product"].find_one({"name": name})
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"success": True, "product": serialize_doc(product)}
