import logging
import math
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel, EmailStr

import payments
from cart import GUEST_PREFIX, effective_price, find_variant
from database import db, create_document, now_utc, parse_object_id, serialize
from schemas import AddressInfo, CLOSED_ORDER_STATUSES, Order, OrderItem, OrderStatus, User
from security import require_staff

logger = logging.getLogger("omahring.orders")

router = APIRouter()
admin_router = APIRouter(dependencies=[Depends(require_staff)])

OPEN_PAYMENT_STATUSES = ("unpaid", "pending")


class OrderLineDTO(BaseModel):
    product_id: Optional[str] = None
    variant_name: Optional[str] = None
    quantity: Optional[int] = None
    image: Optional[str] = None


class CreateOrderDTO(BaseModel):
    user_id: Optional[str] = None
    cart_id: Optional[str] = None
    customer_name: Optional[str] = None
    email: Optional[EmailStr] = None
    cart_items: List[OrderLineDTO] = []
    address_info: Optional[Dict[str, Any]] = None
    total_amount: float = 0


class OrderStatusDTO(BaseModel):
    order_status: OrderStatus


def to_int(value: Any) -> int:
    amount = int(round(float(value or 0)))
    if amount < 0:
        raise HTTPException(status_code=400, detail="Jumlah tidak valid.")
    return amount


def load_order(order_id: str) -> Dict[str, Any]:
    order = db["order"].find_one({"_id": parse_object_id(order_id, "Order ID")})
    if not order:
        raise HTTPException(status_code=404, detail="Pesanan tidak ditemukan.")
    return order


def _resolve_customer(data: CreateOrderDTO) -> Dict[str, Any]:
    if data.user_id.startswith(GUEST_PREFIX):
        user = db["user"].find_one({"email": data.email})
        if not user:
            user_id = create_document("user", User(user_name=data.customer_name, email=data.email))
            user = db["user"].find_one({"_id": ObjectId(user_id)})
            logger.info("Created guest account %s for checkout", user_id)
        return user
    user = db["user"].find_one({"_id": ObjectId(data.user_id)}) if ObjectId.is_valid(data.user_id) else None
    if not user:
        raise HTTPException(status_code=404, detail="User tidak ditemukan.")
    return user


def _price_lines(lines: List[OrderLineDTO]) -> List[OrderItem]:
    """Re-read every line from the catalog, checking variant and stock."""
    items = []
    for line in lines:
        if not line.product_id or not line.variant_name or not line.quantity or line.quantity <= 0:
            raise HTTPException(status_code=400, detail="Item tidak lengkap.")
        product = db["product"].find_one({"_id": ObjectId(line.product_id)}) \
            if ObjectId.is_valid(line.product_id) else None
        if not product:
            raise HTTPException(status_code=404, detail=f"Produk {line.product_id} tidak ditemukan.")
        variant = find_variant(product, line.variant_name)
        if not variant:
            raise HTTPException(
                status_code=400,
                detail=f"Varian {line.variant_name} tidak ditemukan untuk {product.get('title')}.",
            )
        stock = variant.get("total_stock", 0)
        if stock < line.quantity:
            raise HTTPException(
                status_code=400,
                detail=f"Stok kurang untuk {product.get('title')} ({variant['name']}). Tersisa: {stock}",
            )
        items.append(OrderItem(
            product_id=str(product["_id"]),
            title=product.get("title", ""),
            image=line.image or product.get("image"),
            variant_name=variant["name"],
            price=to_int(effective_price(variant)),
            quantity=to_int(line.quantity),
        ))
    return items


@router.post("/create", status_code=201)
def create_order(data: CreateOrderDTO):
    if not data.user_id:
        raise HTTPException(status_code=400, detail="User ID diperlukan.")
    if not data.cart_items:
        raise HTTPException(status_code=400, detail="Cart items kosong.")
    address = data.address_info or {}
    if not address.get("address") or not address.get("city") or not address.get("phone"):
        raise HTTPException(status_code=400, detail="Informasi alamat tidak lengkap.")
    if not data.cart_id:
        raise HTTPException(status_code=400, detail="Cart ID diperlukan.")
    if not data.customer_name or not data.email:
        raise HTTPException(status_code=400, detail="Nama customer dan email diperlukan.")

    existing = db["order"].find_one({"cart_id": data.cart_id,
                                     "payment_status": {"$in": list(OPEN_PAYMENT_STATUSES)}})
    if existing:
        raise HTTPException(status_code=409, detail={
            "message": "Checkout untuk cart ini sudah berjalan. Selesaikan pembayaran atau batalkan dahulu.",
            "order_id": str(existing["_id"]),
        })

    user = _resolve_customer(data)
    items = _price_lines(data.cart_items)
    expected_total = sum(item.price * item.quantity for item in items)
    if to_int(data.total_amount) != expected_total:
        raise HTTPException(
            status_code=400,
            detail=f"Total amount tidak sesuai. FE={to_int(data.total_amount)}, Server={expected_total}",
        )

    order = Order(
        user_id=str(user["_id"]),
        customer_name=data.customer_name,
        email=data.email,
        cart_id=data.cart_id,
        cart_items=items,
        address_info=AddressInfo(
            address=address["address"],
            city=address["city"],
            kode_pos=address.get("kode_pos") or address.get("pincode") or "",
            phone=address["phone"],
            notes=address.get("notes") or "",
        ),
        total_amount=expected_total,
        order_date=now_utc(),
    )
    order_id = create_document("order", order)
    midtrans_order_id = payments.gateway_order_id(order_id)
    try:
        transaction = payments.create_snap_transaction(order.model_dump(), midtrans_order_id)
    except payments.PaymentGatewayError:
        db["order"].delete_one({"_id": ObjectId(order_id)})
        logger.warning("Order %s rolled back after gateway failure", order_id)
        raise HTTPException(status_code=502, detail="Gagal membuat transaksi pembayaran. Silakan coba lagi.")

    db["order"].update_one({"_id": ObjectId(order_id)}, {"$set": {"midtrans": {
        "order_id": midtrans_order_id,
        "order_ids": [midtrans_order_id],
        "attempt": 0,
        "token": transaction["token"],
        "redirect_url": transaction["redirect_url"],
        "token_issued_at": now_utc(),
    }}})
    logger.info("Order %s created for user %s, total %s", order_id, order.user_id, expected_total)
    return {
        "message": "Pesanan berhasil dibuat",
        "order_id": order_id,
        "user_id": order.user_id,
        "token": transaction["token"],
        "redirect_url": transaction["redirect_url"],
    }


@router.post("/{order_id}/regenerate-token")
def regenerate_token(order_id: str, force: bool = False):
    """Hand out a usable Snap token for an unpaid order, minting a new one when the old one is stale."""
    order = load_order(order_id)
    if order.get("payment_status") not in OPEN_PAYMENT_STATUSES or order.get("order_status") in CLOSED_ORDER_STATUSES:
        raise HTTPException(status_code=400, detail="Pesanan ini sudah dibayar atau ditutup.")

    midtrans = order.get("midtrans") or {}
    issued_at = midtrans.get("token_issued_at")
    if not force and midtrans.get("token") and payments.is_token_fresh(issued_at):
        return {
            "token": midtrans["token"],
            "redirect_url": midtrans.get("redirect_url"),
            "order_id": order_id,
            "expires_at": payments.token_expires_at(issued_at),
            "remaining_minutes": payments.token_remaining_minutes(issued_at),
            "regenerated": False,
        }

    attempt = midtrans.get("attempt", 0) + 1
    midtrans_order_id = payments.gateway_order_id(order_id, attempt)
    try:
        transaction = payments.create_snap_transaction(order, midtrans_order_id)
    except payments.PaymentGatewayError:
        raise HTTPException(status_code=502, detail="Gagal regenerate Snap token.")

    issued_at = now_utc()
    db["order"].update_one({"_id": order["_id"]}, {
        "$set": {
            "midtrans.order_id": midtrans_order_id,
            "midtrans.attempt": attempt,
            "midtrans.token": transaction["token"],
            "midtrans.redirect_url": transaction["redirect_url"],
            "midtrans.token_issued_at": issued_at,
            "order_update_date": issued_at,
        },
        "$push": {"midtrans.order_ids": midtrans_order_id},
    })
    logger.info("Snap token regenerated for order %s (attempt %d)", order_id, attempt)
    return {
        "token": transaction["token"],
        "redirect_url": transaction["redirect_url"],
        "order_id": order_id,
        "expires_at": payments.token_expires_at(issued_at),
        "remaining_minutes": payments.token_remaining_minutes(issued_at),
        "regenerated": True,
    }


def decrement_stock(item: Dict[str, Any]) -> bool:
    """Take the line's quantity off its variant, only while enough stock remains."""
    product = db["product"].find_one({"_id": ObjectId(item["product_id"])}) \
        if ObjectId.is_valid(item["product_id"]) else None
    if not product:
        return False
    for index, variant in enumerate(product.get("variants") or []):
        if variant.get("name") != item["variant_name"]:
            continue
        result = db["product"].update_one(
            {
                "_id": product["_id"],
                f"variants.{index}.name": item["variant_name"],
                f"variants.{index}.total_stock": {"$gte": item["quantity"]},
            },
            {"$inc": {f"variants.{index}.total_stock": -item["quantity"]}},
        )
        return result.modified_count == 1
    return False


def fulfill_paid_order(order: Dict[str, Any]) -> bool:
    """Apply the side effects of a confirmed payment to ``order`` in place.

    Returns False when the order was already fulfilled.
    """
    if order.get("payment_status") == "paid" or order.get("order_status") == "confirmed":
        logger.info("Order %s already fulfilled, skipping", order["_id"])
        return False

    needs_review = order.get("order_status") == "needs_review"
    for item in order.get("cart_items", []):
        if not decrement_stock(item):
            logger.error("Stock decrement failed: order=%s product=%s variant=%s qty=%s",
                         order["_id"], item["product_id"], item["variant_name"], item["quantity"])
            needs_review = True

    cart_id = order.get("cart_id")
    if cart_id and ObjectId.is_valid(cart_id):
        db["cart"].delete_one({"_id": ObjectId(cart_id)})
    elif cart_id:
        # guest checkouts reference their cart by session id
        db["cart"].delete_one({"session_id": cart_id})

    if ObjectId.is_valid(order.get("user_id", "")):
        db["user"].update_one({"_id": ObjectId(order["user_id"])},
                              {"$inc": {"performance.total_orders": 1,
                                        "performance.total_spend": order.get("total_amount", 0)}})

    order["payment_status"] = "paid"
    order["order_status"] = "needs_review" if needs_review else "confirmed"
    return True


@router.post("/notification")
def handle_notification(body: Dict[str, Any] = Body(...)):
    """Midtrans HTTP notification."""
    logger.info("Midtrans notification for %s: %s", body.get("order_id"), body.get("transaction_status"))
    if not body.get("transaction_id"):
        raise HTTPException(status_code=400, detail="transaction_id wajib ada pada notifikasi.")
    try:
        notification = payments.fetch_notification_status(body)
    except payments.PaymentGatewayError:
        raise HTTPException(status_code=502, detail="Gagal memverifikasi notifikasi pembayaran.")

    if not payments.verify_signature(notification):
        logger.error("Invalid Midtrans signature for order %s", notification.get("order_id"))
        raise HTTPException(status_code=403, detail="Invalid signature")

    midtrans_order_id = str(notification.get("order_id", ""))
    order = db["order"].find_one({"midtrans.order_ids": midtrans_order_id})
    if not order:
        logger.error("Order %s not found", midtrans_order_id)
        raise HTTPException(status_code=404, detail="Order not found")

    transaction_status = notification.get("transaction_status")
    midtrans = dict(order.get("midtrans") or {})
    midtrans.update({
        "transaction_id": notification.get("transaction_id"),
        "transaction_status": transaction_status,
        "fraud_status": notification.get("fraud_status"),
        "payment_type": notification.get("payment_type"),
        "status_code": notification.get("status_code"),
        "gross_amount": notification.get("gross_amount"),
        "last_notification_order_id": midtrans_order_id,
    })

    payment_status, order_status = payments.map_transaction_status(transaction_status,
                                                                    notification.get("fraud_status"))
    superseded = midtrans_order_id != (order.get("midtrans") or {}).get("order_id")
    if payment_status == "paid":
        fulfill_paid_order(order)
    elif superseded:
        # A token that was replaced by a regenerated one expiring or being cancelled says nothing
        # about the current payment attempt.
        logger.info("Ignoring %s for superseded attempt %s", transaction_status, midtrans_order_id)
    else:
        order["payment_status"] = payment_status
        order["order_status"] = order_status

    db["order"].update_one({"_id": order["_id"]}, {"$set": {
        "midtrans": midtrans,
        "payment_status": order["payment_status"],
        "order_status": order["order_status"],
        "order_update_date": now_utc(),
    }})
    logger.info("Order %s -> %s/%s", order["_id"], order["payment_status"], order["order_status"])
    return {"received": True}


@router.get("/list/{user_id}")
def list_orders_by_user(user_id: str):
    orders = db["order"].find({"user_id": user_id}).sort("order_date", -1)
    return {"data": [serialize(o) for o in orders]}


@router.get("/details/{order_id}")
def get_order_details(order_id: str):
    return {"data": serialize(load_order(order_id))}


# Admin

@admin_router.get("/get")
def list_all_orders(page: int = 1, limit: int = 10, status: Optional[str] = None):
    page = max(page, 1)
    limit = min(max(limit, 1), 100)
    query: Dict[str, Any] = {"order_status": status} if status else {}
    total = db["order"].count_documents(query)
    cursor = db["order"].find(query).sort("order_date", -1).skip((page - 1) * limit).limit(limit)
    return {
        "data": [serialize(o) for o in cursor],
        "current_page": page,
        "total_pages": max(1, math.ceil(total / limit)),
        "total_orders": total,
    }


@admin_router.get("/details/{order_id}")
def admin_order_details(order_id: str):
    return {"data": serialize(load_order(order_id))}


@admin_router.put("/update/{order_id}")
def update_order_status(order_id: str, data: OrderStatusDTO):
    order = load_order(order_id)
    db["order"].update_one({"_id": order["_id"]},
                           {"$set": {"order_status": data.order_status.value, "order_update_date": now_utc()}})
    logger.info("Order %s status set to %s", order_id, data.order_status.value)
    return {"message": "Status pesanan berhasil diperbarui!",
            "data": serialize(db["order"].find_one({"_id": order["_id"]}))}


@admin_router.get("/stats")
def order_stats():
    revenue = 0
    for o in db["order"].find({"payment_status": "paid"}):
        revenue += int(o.get("total_amount", 0))
    return {"data": {
        "pending": db["order"].count_documents({"order_status": "pending"}),
        "confirmed": db["order"].count_documents({"order_status": "confirmed"}),
        "total_revenue": revenue,
    }}
