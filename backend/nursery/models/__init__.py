from .auth import User, Profile, SignupOTP, PasswordResetToken, EmailChangeRequest, ActiveSession
from .catalog import Category, Product, ProductImage
from .inventory import InventoryMovement
from .cart import Cart, CartItem
from .orders import Order, OrderItem, OrderStatusHistory
from .payments import PaymentTransaction
from .support import SupportTicket
from .content import BlogPost, PlantCareGuide
from .reviews import ProductReview
from .activity import ActivityLog
from .notifications import NotificationOutbox

__all__ = [
    'User', 'Profile', 'SignupOTP', 'PasswordResetToken', 'EmailChangeRequest', 'ActiveSession',
    'Category', 'Product', 'ProductImage',
    'InventoryMovement',
    'Cart', 'CartItem',
    'Order', 'OrderItem', 'OrderStatusHistory',
    'PaymentTransaction',
    'SupportTicket',
    'BlogPost', 'PlantCareGuide',
    'ProductReview',
    'ActivityLog',
    'NotificationOutbox',
]
