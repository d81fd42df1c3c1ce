import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ValidationError

from cart import effective_price
from database import db, create_document, get_documents, now_utc, parse_object_id, serialize
from schemas import Product
from security import require_staff

logger = logging.getLogger("omahring.products")

router = APIRouter()
admin_router = APIRouter(dependencies=[Depends(require_staff)])


def _lowest_price(product: Dict[str, Any]) -> float:
    prices = [effective_price(v) for v in product.get("variants") or []]
    return min(prices) if prices else 0


def _title(product: Dict[str, Any]) -> str:
    return (product.get("title") or "").lower()


SORTERS = {
    "price-lowtohigh": (_lowest_price, False),
    "price-hightolow": (_lowest_price, True),
    "title-atoz": (_title, False),
    "title-ztoa": (_title, True),
}


def _split(value: Optional[str]) -> List[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


def load_product(product_id: str) -> Dict[str, Any]:
    product = db["product"].find_one({"_id": parse_object_id(product_id, "Product ID")})
    if not product:
        raise HTTPException(status_code=404, detail="Produk tidak ditemukan.")
    return product


# Shop

@router.get("/get")
def list_products(category: Optional[str] = None, brand: Optional[str] = None,
                  sort_by: str = "price-lowtohigh"):
    query: Dict[str, Any] = {}
    if _split(category):
        query["category"] = {"$in": _split(category)}
    if _split(brand):
        query["brand"] = {"$in": _split(brand)}
    products = get_documents("product", query)
    key, reverse = SORTERS.get(sort_by, SORTERS["price-lowtohigh"])
    products.sort(key=key, reverse=reverse)
    return {"data": [serialize(p) for p in products]}


@router.get("/get/{product_id}")
def get_product(product_id: str):
    return {"data": serialize(load_product(product_id))}


# Admin

class ProductDTO(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    brand: Optional[str] = None
    image: Optional[str] = None
    variants: Optional[List[Dict[str, Any]]] = None
    average_review: Optional[float] = None


def _validated(data: Dict[str, Any]) -> Product:
    try:
        return Product(**data)
    except ValidationError as exc:
        logger.info("Rejected product payload: %s", exc.errors())
        raise HTTPException(status_code=400, detail="Data varian atau produk tidak valid.")


@admin_router.post("/add", status_code=201)
def add_product(data: ProductDTO):
    if not all([data.title, data.description, data.category, data.image]) or not data.variants:
        raise HTTPException(
            status_code=400,
            detail="Harap lengkapi semua field, termasuk gambar dan setidaknya satu varian.",
        )
    product = _validated(data.model_dump(exclude_none=True))
    product_id = create_document("product", product)
    logger.info("Product %s added", product_id)
    return {"message": "Produk berhasil ditambahkan.",
            "data": serialize(db["product"].find_one({"_id": parse_object_id(product_id)}))}


@admin_router.put("/edit/{product_id}")
def edit_product(product_id: str, data: ProductDTO):
    current = load_product(product_id)
    merged = {k: v for k, v in current.items() if k not in ("_id", "created_at", "updated_at")}
    merged.update(data.model_dump(exclude_none=True))
    product = _validated(merged)
    db["product"].update_one({"_id": current["_id"]},
                             {"$set": product.model_dump() | {"updated_at": now_utc()}})
    return {"message": "Produk berhasil diperbarui.",
            "data": serialize(db["product"].find_one({"_id": current["_id"]}))}


@admin_router.delete("/delete/{product_id}")
def delete_product(product_id: str):
    result = db["product"].delete_one({"_id": parse_object_id(product_id, "Product ID")})
    if not result.deleted_count:
        raise HTTPException(status_code=404, detail="Produk tidak ditemukan.")
    return {"message": "Produk berhasil dihapus."}


@admin_router.get("/get")
def admin_list_products():
    return {"data": [serialize(p) for p in db["product"].find({}).sort("created_at", -1)]}


@admin_router.get("/get/{product_id}")
def admin_get_product(product_id: str):
    return {"data": serialize(load_product(product_id))}
