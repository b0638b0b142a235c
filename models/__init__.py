# Import models so that SQLAlchemy metadata includes them on app startup
from .user import User  # noqa: F401
from .product import Product, ProductVariant  # noqa: F401
from .cart_item import CartItem  # noqa: F401
from .shipping_address import ShippingAddress  # noqa: F401
from .discount import Discount  # noqa: F401
from .payment import PaymentTransaction  # noqa: F401
from .order import Order  # noqa: F401
from .order_item import OrderItem  # noqa: F401
from .reconciliation import ReconciliationRecord  # noqa: F401
