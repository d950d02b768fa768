"""Payment gateway signal schemas."""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from printshop.services.orders.enums import OrderStatus, PaymentStatus


class PaymentConfirmedSignal(BaseModel):
    """Gateway notification that an order's checkout was paid."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        json_schema_extra={
            "examples": [
                {
                    "order_id": "123e4567-e89b-12d3-a456-426614174000",
                    "amount_paid": "60.50",
                    "payment_reference": "cs_test_a1b2c3",
                }
            ]
        },
    )

    order_id: UUID
    amount_paid: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    payment_reference: Optional[str] = Field(None, max_length=255)


class PaymentFailedSignal(BaseModel):
    """Gateway notification that a checkout failed or expired."""

    model_config = ConfigDict(str_strip_whitespace=True)

    order_id: UUID
    reason: Optional[str] = Field(None, max_length=500)


class PaymentSignalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    status: OrderStatus
    payment_status: PaymentStatus
    points_earned: int
