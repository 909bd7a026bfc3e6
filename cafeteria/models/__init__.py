# Import all models here so SQLAlchemy registers them with Base.metadata
from cafeteria.models.cart import CartItem
from cafeteria.models.menu_item import MenuCategory, MenuItem
from cafeteria.models.order import Order, OrderItem, OrderStatus, PaymentMethod, PaymentStatus
from cafeteria.models.profile import Profile, Role, User

__all__ = [
    "CartItem",
    "MenuCategory",
    "MenuItem",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentMethod",
    "PaymentStatus",
    "Profile",
    "Role",
    "User",
]
