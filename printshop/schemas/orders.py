"""
Order Pydantic schemas for API request/response validation.

Item customizations are a tagged union on ``kind``: a voucher purchase
names the template it buys, a prioritized item carries its production
extras, and a plain item carries only the optional extras.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Literal, Optional, Union
from uuid import UUID

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from printshop.services.orders.enums import (
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ProductType,
)


class PlainItem(BaseModel):
    """Regular print item."""

    kind: Literal["plain"] = "plain"
    design_file_url: Optional[str] = Field(None, max_length=500)
    layout: bool = Field(default=False, description="Layout service requested")
    cutting: bool = Field(default=False, description="Cutting service requested")


class PrioritizedItem(BaseModel):
    """Print item produced ahead of the regular queue."""

    kind: Literal["prioritized"] = "prioritized"
    priority: int = Field(default=1, ge=1, le=5, description="Production priority level")
    design_file_url: Optional[str] = Field(None, max_length=500)
    layout: bool = False
    cutting: bool = False


class VoucherPurchaseItem(BaseModel):
    """Purchase of a prepaid voucher cloned from a template."""

    kind: Literal["voucher_purchase"] = "voucher_purchase"
    voucher_template_id: UUID = Field(..., description="Template to issue from")


ItemCustomization = Annotated[
    Union[PlainItem, PrioritizedItem, VoucherPurchaseItem],
    Field(discriminator="kind"),
]


class ShippingAddressRequest(BaseModel):
    """Recipient address snapshot stored on the order."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(None, max_length=255)
    address: str = Field(..., min_length=1, max_length=500)
    city: str = Field(..., min_length=1, max_length=100)
    postal_code: str = Field(..., min_length=1, max_length=20)
    country: str = Field(default="ES", max_length=100)
    phone: Optional[str] = Field(None, max_length=50)
    email: Optional[str] = Field(None, max_length=255)


class OrderItemRequest(BaseModel):
    """Order line item."""

    model_config = ConfigDict(str_strip_whitespace=True)

    product_type: ProductType
    product_name: str = Field(..., min_length=1, max_length=255)
    quantity: Decimal = Field(
        ...,
        gt=0,
        max_digits=10,
        decimal_places=2,
        description="Meters for DTF textile, units otherwise",
    )
    unit_price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    customizations: ItemCustomization = Field(default_factory=PlainItem)

    @model_validator(mode="after")
    def validate_voucher_purchase(self) -> "OrderItemRequest":
        """Voucher purchases must be VOUCHER products and vice versa."""
        buys_voucher = isinstance(self.customizations, VoucherPurchaseItem)
        if buys_voucher != (self.product_type == ProductType.VOUCHER):
            raise ValueError(
                "voucher_purchase customizations are only valid on voucher products"
            )
        return self

    def to_service_dict(self) -> dict[str, Any]:
        return {
            "product_type": self.product_type.value,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "customizations": self.customizations.model_dump(mode="json"),
        }


class OrderCreateRequest(BaseModel):
    """Request schema for placing an order."""

    model_config = ConfigDict(str_strip_whitespace=True)

    user_id: Optional[UUID] = Field(None, description="Registered customer, omit for guests")
    customer_name: str = Field(..., min_length=1, max_length=255)
    customer_email: str = Field(..., min_length=3, max_length=255)
    customer_phone: Optional[str] = Field(None, max_length=50)
    shipping_address: Optional[ShippingAddressRequest] = None
    items: list[OrderItemRequest] = Field(..., min_length=1, max_length=50)
    shipping_cost: Decimal = Field(default=Decimal("0.00"), ge=0, decimal_places=2)
    discount_amount: Decimal = Field(default=Decimal("0.00"), ge=0, decimal_places=2)
    points_to_use: int = Field(default=0, ge=0)
    pay_with_vouchers: bool = False
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("customer_email")
    @classmethod
    def validate_email_format(cls, v: str) -> str:
        """Validate email format."""
        if "@" not in v or "." not in v.split("@")[-1]:
            raise ValueError("Invalid email format")
        return v.lower()


class OrderStatusUpdateRequest(BaseModel):
    """Admin status change."""

    status: OrderStatus
    notes: Optional[str] = Field(None, max_length=1000)


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_type: ProductType
    product_name: str
    quantity: Decimal
    unit_price: Decimal
    subtotal: Decimal
    customizations: dict[str, Any]


class OrderResponse(BaseModel):
    """Order with items and money breakdown."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    user_id: Optional[UUID]
    status: OrderStatus
    payment_status: PaymentStatus
    payment_method: Optional[PaymentMethod]
    subtotal: Decimal
    discount_amount: Decimal
    points_discount: Decimal
    tax_amount: Decimal
    shipping_cost: Decimal
    total_price: Decimal
    points_used: int
    points_earned: int
    voucher_id: Optional[UUID]
    is_voucher_purchase: bool
    customer_name: str
    customer_email: str
    customer_phone: Optional[str]
    shipping_address: Optional[dict[str, Any]]
    notes: Optional[str]
    tracking_number: Optional[str]
    paid_at: Optional[datetime]
    confirmed_at: Optional[datetime]
    shipped_at: Optional[datetime]
    delivered_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime
    items: list[OrderItemResponse] = Field(default_factory=list)


class OrderHistoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    status: OrderStatus
    notes: Optional[str]
    actor: Optional[str]
    created_at: datetime


class OrderListResponse(BaseModel):
    items: list[OrderResponse]
    total: int
    limit: int
    offset: int
