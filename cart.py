"""
Cart reconciliation helpers.

Carts are plain documents: {"user_id" | "session_id", "items": [...], "cart_total"}.
Each item holds a product id, a quantity and a snapshot of the variant taken
when it was added. Nothing here touches the database; the route handlers load
and save carts around these functions.
"""
import uuid
from copy import deepcopy
from typing import Any, Callable, Dict, List, Optional, Tuple

from bson import ObjectId

GUEST_PREFIX = "guest-"

StockLookup = Callable[[str, str], Optional[int]]


def new_session_id() -> str:
    return f"{GUEST_PREFIX}{uuid.uuid4()}"


def cart_owner_filter(cart_id: str) -> Dict[str, str]:
    """A valid ObjectId addresses a registered user's cart, anything else a guest session."""
    if ObjectId.is_valid(cart_id):
        return {"user_id": cart_id}
    return {"session_id": cart_id}


def effective_price(variant: Dict[str, Any]) -> float:
    price = variant.get("price") or 0
    sale_price = variant.get("sale_price") or 0
    if 0 < sale_price < price:
        return sale_price
    return price


def calculate_cart_total(items: List[Dict[str, Any]]) -> float:
    return sum(effective_price(item.get("variant") or {}) * item.get("quantity", 0) for item in items)


def find_variant(product: Dict[str, Any], variant_name: str) -> Optional[Dict[str, Any]]:
    for variant in product.get("variants") or []:
        if variant.get("name") == variant_name:
            return variant
    return None


def variant_snapshot(variant: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "name": variant["name"],
        "price": variant.get("price", 0),
        "sale_price": variant.get("sale_price", 0),
        "total_stock": variant.get("total_stock", 0),
    }


def find_line(items: List[Dict[str, Any]], product_id: str, variant_name: str) -> Optional[int]:
    for index, item in enumerate(items):
        if item.get("product_id") == product_id and (item.get("variant") or {}).get("name") == variant_name:
            return index
    return None


def has_stock(variant: Optional[Dict[str, Any]], quantity: int) -> bool:
    return variant is not None and variant.get("total_stock", 0) >= quantity


def merge_cart_items(user_items: List[Dict[str, Any]], guest_items: List[Dict[str, Any]],
                     stock_of: StockLookup) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """Fold a guest cart into a user's cart.

    Lines already present in the user cart get the guest quantity added with
    no stock ceiling. New lines are appended only when the current stock
    reported by ``stock_of(product_id, variant_name)`` covers the guest
    quantity; ``None`` means the product or variant no longer exists.

    Returns ``(merged_items, skipped_items)``. The inputs are not modified.
    """
    merged = deepcopy(user_items)
    skipped = []
    for guest_item in guest_items:
        product_id = guest_item.get("product_id")
        variant_name = (guest_item.get("variant") or {}).get("name")
        quantity = guest_item.get("quantity", 0)
        index = find_line(merged, product_id, variant_name)
        if index is not None:
            merged[index]["quantity"] += quantity
            continue
        stock = stock_of(product_id, variant_name)
        if stock is not None and stock >= quantity:
            merged.append(deepcopy(guest_item))
        else:
            skipped.append(guest_item)
    return merged, skipped
