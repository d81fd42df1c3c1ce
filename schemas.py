"""
Document models for the storefront collections: user, product, cart, order and promo.

Carts and orders embed their lines (CartItem, OrderItem); users embed their
address book. References between collections are hex id strings, except a
guest cart, which is keyed by its "guest-" session id.

Orders carry two independent states. OrderStatus tracks fulfilment from
pending through delivered, or into one of the closed states (cancelled,
expired, rejected). PaymentStatus mirrors what Midtrans reported last.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, ConfigDict, Field, EmailStr, model_validator


class Role(str, Enum):
    user = "user"
    member = "member"
    admin = "admin"
    manager = "manager"


class OrderStatus(str, Enum):
    pending = "pending"
    confirmed = "confirmed"
    processing = "processing"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"
    expired = "expired"
    challenge = "challenge"
    needs_review = "needs_review"
    rejected = "rejected"


class PaymentStatus(str, Enum):
    unpaid = "unpaid"
    pending = "pending"
    paid = "paid"
    failed = "failed"
    refund = "refund"
    chargeback = "chargeback"


class DiscountType(str, Enum):
    percentage = "percentage"
    fixed = "fixed"


def _utc(moment: datetime) -> datetime:
    return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)


STAFF_ROLES = (Role.admin.value, Role.manager.value)
CUSTOMER_ROLES = (Role.user.value, Role.member.value)
CLOSED_ORDER_STATUSES = (OrderStatus.cancelled.value, OrderStatus.expired.value, OrderStatus.rejected.value)


class Address(BaseModel):
    address_id: str
    name: str
    email: EmailStr
    address: str
    city: str
    kode_pos: str
    phone: str
    notes: str = ""


class Performance(BaseModel):
    total_orders: int = 0
    total_spend: int = 0


class User(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    user_name: str
    email: EmailStr
    password_hash: Optional[str] = Field(None, description="Empty for guest accounts created at checkout")
    role: Role = Role.user
    addresses: List[Address] = []
    performance: Performance = Field(default_factory=Performance)


class Variant(BaseModel):
    name: str = Field(..., min_length=1, description="e.g. 'Kemasan 1 kg'")
    price: float = Field(..., ge=0)
    sale_price: float = Field(0, ge=0, description="0 means not on sale")
    total_stock: int = Field(0, ge=0)


class Product(BaseModel):
    title: str
    description: str
    category: str
    brand: Optional[str] = None
    image: str
    variants: List[Variant] = Field(..., min_length=1)
    average_review: float = 0


class CartItem(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)
    variant: Variant  # snapshot at add-to-cart time


class Cart(BaseModel):
    user_id: Optional[str] = None
    session_id: Optional[str] = None  # guests
    items: List[CartItem] = []
    cart_total: float = 0


class OrderItem(BaseModel):
    product_id: str
    title: str
    image: Optional[str] = None
    variant_name: str
    price: int
    quantity: int = Field(..., ge=1)


class AddressInfo(BaseModel):
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    kode_pos: str = ""
    phone: str = Field(..., min_length=1)
    notes: str = ""


class Order(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    user_id: str
    customer_name: str
    email: EmailStr
    cart_id: str
    cart_items: List[OrderItem]
    address_info: AddressInfo
    order_status: OrderStatus = OrderStatus.pending
    payment_method: str = "midtrans"
    payment_status: PaymentStatus = PaymentStatus.unpaid
    total_amount: int = Field(..., ge=0)
    order_date: datetime
    order_update_date: Optional[datetime] = None
    midtrans: Dict[str, Any] = {}


class PromoConditions(BaseModel):
    min_orders: int = Field(0, ge=0)
    applicable_products: List[str] = []


class Promo(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    title: str
    promo_code: str = Field(..., min_length=1)
    discount_type: DiscountType
    discount_value: float = Field(..., ge=0)
    is_active: bool = True
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    conditions: PromoConditions = Field(default_factory=PromoConditions)

    @model_validator(mode="after")
    def check_discount(self):
        if self.discount_type == DiscountType.percentage.value and self.discount_value > 100:
            raise ValueError("Diskon persentase tidak boleh lebih dari 100")
        if self.start_date and self.end_date and _utc(self.end_date) < _utc(self.start_date):
            raise ValueError("Tanggal akhir promo harus setelah tanggal mulai")
        return self
