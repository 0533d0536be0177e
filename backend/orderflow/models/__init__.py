from .orders import Order, OrderLine, Suggestion, LineImage, ORDER_ROLE_SLOTS
from .shortages import ShortageReport

__all__ = [
    'Order', 'OrderLine', 'Suggestion', 'LineImage', 'ORDER_ROLE_SLOTS',
    'ShortageReport',
]
