from .catalog import Attribute, AttributeValue, Product, ProductAttribute, ProductVariant, VariantAttributeValue
from .carts import Cart, CartItem
from .orders import (
    Order, OrderItem,
    ORDER_PENDING, ORDER_PROCESSING, ORDER_SHIPPED, ORDER_DELIVERED, ORDER_CANCELLED, ORDER_STATUSES,
    DELIVERY_HOME, DELIVERY_PICKUP, DELIVERY_TYPES,
)
from .sales import PosSale, PosSaleItem, SALE_COMPLETED, SALE_VOIDED, PAYMENT_TYPES
from .inventory import StockMovement, DocumentSequence, MOVEMENT_REASONS

__all__ = [
    'Attribute', 'AttributeValue', 'Product', 'ProductAttribute',
    'ProductVariant', 'VariantAttributeValue',
    'Cart', 'CartItem',
    'Order', 'OrderItem',
    'ORDER_PENDING', 'ORDER_PROCESSING', 'ORDER_SHIPPED', 'ORDER_DELIVERED', 'ORDER_CANCELLED',
    'ORDER_STATUSES', 'DELIVERY_HOME', 'DELIVERY_PICKUP', 'DELIVERY_TYPES',
    'PosSale', 'PosSaleItem', 'SALE_COMPLETED', 'SALE_VOIDED', 'PAYMENT_TYPES',
    'StockMovement', 'DocumentSequence', 'MOVEMENT_REASONS',
]
