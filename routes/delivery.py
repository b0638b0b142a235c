from typing import List
from fastapi import APIRouter

from schemas.order import DeliveryMethodOut
from services.delivery import list_delivery_methods

router = APIRouter(prefix="/delivery-methods", tags=["delivery"])


@router.get("/", response_model=List[DeliveryMethodOut])
def get_delivery_methods():
    return list_delivery_methods()
