"""
Pydantic schemas for payment gateway requests and responses.

The gateway speaks camelCase; models accept either the wire alias or the
Python field name.
"""
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

PayEntrypoint = Literal["MiniAppPay", "H5Pay"]
PayPlatform = Literal["wechat", "alipay"]


class CreateOrderRequest(BaseModel):
    """Request body for creating a recharge order."""

    pay_entrypoint: PayEntrypoint = Field(..., alias="payEntrypoint")
    pay_platform: PayPlatform = Field(..., alias="payPlatform")
    attach: str = Field(..., min_length=1, description="Session attach token")
    amount: int = Field(..., gt=0, description="Amount in minor currency units")

    model_config = {"populate_by_name": True}


class H5Redirect(BaseModel):
    """Browser redirect to a hosted payment page."""

    url: str = Field(..., min_length=1)


class MiniAppRedirect(BaseModel):
    """Hand-off to a payment mini program."""

    appid: str = Field(..., min_length=1)
    path: str = Field(..., min_length=1)


RedirectTarget = Union[H5Redirect, MiniAppRedirect]


class CreatedOrder(BaseModel):
    """Order created by the gateway together with where to send the payer."""

    order_id: str = Field(..., alias="orderId", min_length=1)
    redirect: RedirectTarget

    model_config = {"populate_by_name": True}


class PaymentStatus(BaseModel):
    """
    Status record returned by the gateway for one order.

    Every field is optional: an unpaid order comes back with some of them
    missing or empty.
    """

    order_id: Optional[str] = Field(default=None, alias="orderId")
    amount: Optional[int] = Field(default=None, description="Amount in minor units")
    description: Optional[str] = None
    create_time: Optional[str] = Field(default=None, alias="createTime")
    pay_time: Optional[str] = Field(default=None, alias="payTime")
    attach: Optional[str] = None

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator("create_time", "pay_time", mode="before")
    @classmethod
    def coerce_timestamp(cls, v: object) -> object:
        """Gateways sometimes send epoch numbers instead of strings."""
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v
