from decimal import Decimal
from typing import Dict, List, Optional

# Flat delivery prices in major currency units. The checkout UI adds the chosen
# price to the Paystack charge; the verified amount already includes it.
DELIVERY_METHODS: Dict[str, Decimal] = {
    "same-day": Decimal("50"),
    "express": Decimal("30"),
    "normal": Decimal("15"),
}


def delivery_price(method_id: str) -> Optional[Decimal]:
    return DELIVERY_METHODS.get(method_id)


def list_delivery_methods() -> List[Dict[str, object]]:
    return [{"id": method_id, "price": price} for method_id, price in DELIVERY_METHODS.items()]
