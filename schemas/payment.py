from pydantic import BaseModel, Field
from typing import Optional


class PaymentVerificationRequest(BaseModel):
    """Body posted by the checkout page once Paystack reports the charge complete."""

    reference: Optional[str] = None
    delivery_method_id: Optional[str] = Field(default=None, alias="deliveryMethodId")
    address_id: Optional[str] = Field(default=None, alias="addressId")
    discount_code: Optional[str] = Field(default=None, alias="discountCode")

    class Config:
        populate_by_name = True


class PaymentVerificationResponse(BaseModel):
    success: bool = True
    order_id: str = Field(serialization_alias="orderId")


class FunctionError(BaseModel):
    error: str
