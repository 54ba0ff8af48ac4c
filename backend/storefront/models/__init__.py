from .catalog import Product
from .vouchers import Voucher, UserVoucherGrant, VoucherRedemption
from .orders import Order, OrderItem, OrderStatusEvent, OrderSequence
from .payments import Payment, PaymentStatusEvent

__all__ = [
    'Product',
    'Voucher', 'UserVoucherGrant', 'VoucherRedemption',
    'Order', 'OrderItem', 'OrderStatusEvent', 'OrderSequence',
    'Payment', 'PaymentStatusEvent',
]
