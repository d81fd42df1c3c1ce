import logging
from typing import Any, Dict, List, Literal, Optional

from bson import ObjectId
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from cart import (calculate_cart_total, cart_owner_filter, effective_price, find_line, find_variant,
                  has_stock, merge_cart_items, new_session_id, variant_snapshot)
from database import db, create_document, now_utc, serialize
from schemas import Cart

logger = logging.getLogger("omahring.cart")

router = APIRouter()

PLACEHOLDER_IMAGE = "/placeholder.png"


class AddToCartDTO(BaseModel):
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    product_id: str
    quantity: int
    variant_name: str


class UpdateCartDTO(BaseModel):
    id: str
    product_id: str
    variant_name: str
    quantity: int


class MergeCartDTO(BaseModel):
    user_id: str = Field(..., min_length=1)
    session_id: str = Field(..., min_length=1)
    action: Literal["merge", "replace"] = "merge"


def _find_product(product_id: str) -> Optional[Dict[str, Any]]:
    if not ObjectId.is_valid(product_id):
        return None
    return db["product"].find_one({"_id": ObjectId(product_id)})


def _require_stock(product_id: str, variant_name: str, quantity: int) -> Dict[str, Any]:
    product = _find_product(product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Produk tidak ditemukan.")
    variant = find_variant(product, variant_name)
    if not has_stock(variant, quantity):
        raise HTTPException(status_code=400, detail=f"Stok tidak mencukupi untuk varian {variant_name}")
    return variant


def _save_items(cart: Dict[str, Any], items: List[Dict[str, Any]]) -> None:
    cart["items"] = items
    cart["cart_total"] = calculate_cart_total(items)
    db["cart"].update_one({"_id": cart["_id"]},
                          {"$set": {"items": items, "cart_total": cart["cart_total"], "updated_at": now_utc()}})


def _load_cart(cart_id: str) -> Dict[str, Any]:
    cart = db["cart"].find_one(cart_owner_filter(cart_id))
    if not cart:
        raise HTTPException(status_code=404, detail="Keranjang tidak ditemukan.")
    return cart


def populate_cart(cart: Dict[str, Any], drop_missing: bool = True) -> Dict[str, Any]:
    """Attach product title/image to each line; lines for deleted products are pruned."""
    products = {}
    for item in cart.get("items", []):
        product = _find_product(item["product_id"])
        if product:
            products[item["product_id"]] = product
    if drop_missing:
        valid = [item for item in cart.get("items", []) if item["product_id"] in products]
        if len(valid) < len(cart.get("items", [])):
            logger.info("Pruned %d stale line(s) from cart %s", len(cart["items"]) - len(valid), cart["_id"])
            _save_items(cart, valid)
    lines = []
    for item in cart.get("items", []):
        product = products.get(item["product_id"]) or {}
        lines.append({
            "product_id": item["product_id"],
            "title": product.get("title", "Produk tidak ditemukan"),
            "image": product.get("image") or PLACEHOLDER_IMAGE,
            "price": item["variant"].get("price", 0),
            "sale_price": item["variant"].get("sale_price", 0),
            "unit_price": effective_price(item["variant"]),
            "quantity": item["quantity"],
            "variant": item["variant"],
        })
    out = serialize(cart)
    out["items"] = lines
    return out


@router.post("/add")
def add_to_cart(data: AddToCartDTO):
    if not data.product_id or data.quantity <= 0 or not data.variant_name:
        raise HTTPException(status_code=400,
                            detail="Data tidak valid! productId, quantity, dan varian wajib diisi.")
    variant = _require_stock(data.product_id, data.variant_name, data.quantity)

    owner: Dict[str, str]
    if data.user_id:
        owner = {"user_id": data.user_id}
    else:
        owner = {"session_id": data.session_id or new_session_id()}
    cart = db["cart"].find_one(owner)
    if not cart:
        cart_id = create_document("cart", Cart(**owner))
        cart = db["cart"].find_one({"_id": ObjectId(cart_id)})

    items = cart.get("items", [])
    index = find_line(items, data.product_id, data.variant_name)
    if index is None:
        items.append({"product_id": data.product_id, "quantity": data.quantity,
                      "variant": variant_snapshot(variant)})
    else:
        items[index]["quantity"] += data.quantity
    _save_items(cart, items)
    return {"data": populate_cart(cart, drop_missing=False),
            "user_id": cart.get("user_id"), "session_id": cart.get("session_id")}


@router.get("/get/{cart_id}")
def fetch_cart(cart_id: str):
    return {"data": populate_cart(_load_cart(cart_id))}


@router.put("/update-cart")
def update_cart_item_qty(data: UpdateCartDTO):
    if data.quantity <= 0:
        raise HTTPException(status_code=400, detail="Jumlah harus lebih dari 0.")
    _require_stock(data.product_id, data.variant_name, data.quantity)
    cart = _load_cart(data.id)
    items = cart.get("items", [])
    index = find_line(items, data.product_id, data.variant_name)
    if index is None:
        raise HTTPException(status_code=404, detail="Item tidak ada di keranjang.")
    items[index]["quantity"] = data.quantity
    _save_items(cart, items)
    return {"data": populate_cart(cart)}


@router.delete("/{cart_id}/{product_id}/{variant_name}")
def delete_cart_item(cart_id: str, product_id: str, variant_name: str):
    cart = _load_cart(cart_id)
    items = [item for item in cart.get("items", [])
             if not (item["product_id"] == product_id and item["variant"].get("name") == variant_name)]
    _save_items(cart, items)
    return {"data": populate_cart(cart)}


def _current_stock(product_id: str, variant_name: str) -> Optional[int]:
    product = _find_product(product_id)
    variant = find_variant(product, variant_name) if product else None
    return None if variant is None else variant.get("total_stock", 0)


@router.post("/merge")
def merge_cart(data: MergeCartDTO):
    """Reconcile a guest session cart with the user's cart after login."""
    guest_cart = db["cart"].find_one({"session_id": data.session_id})
    user_cart = db["cart"].find_one({"user_id": data.user_id})

    if guest_cart and data.action == "replace":
        db["cart"].delete_one({"_id": guest_cart["_id"]})
        logger.info("Discarded guest cart %s for user %s", data.session_id, data.user_id)
    elif guest_cart:
        if not user_cart:
            cart_id = create_document("cart", Cart(user_id=data.user_id))
            user_cart = db["cart"].find_one({"_id": ObjectId(cart_id)})
        merged, skipped = merge_cart_items(user_cart.get("items", []), guest_cart.get("items", []),
                                           _current_stock)
        _save_items(user_cart, merged)
        db["cart"].delete_one({"_id": guest_cart["_id"]})
        logger.info("Merged guest cart %s into user %s (%d line(s) skipped)",
                    data.session_id, data.user_id, len(skipped))

    if not user_cart:
        return {"message": "Keranjang akun masih kosong.",
                "data": {"user_id": data.user_id, "items": [], "cart_total": 0}}
    message = "Keranjang berhasil digabungkan!" if data.action == "merge" else \
        "Keranjang tamu dihapus. Menggunakan keranjang akun Anda."
    return {"message": message, "data": populate_cart(user_cart)}
