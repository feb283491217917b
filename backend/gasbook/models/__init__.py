from .users import User, SessionToken, UserToken
from .bookings import Booking, BookingEvent, Payment
from .inventory import CylinderStock, StockAdjustment, StockReservation, CylinderBatch
from .deliveries import DeliveryPartner, DeliveryAssignment
from .contacts import ContactMessage, ContactReply
from .settings import SystemSettings

__all__ = [
    'User', 'SessionToken', 'UserToken',
    'Booking', 'BookingEvent', 'Payment',
    'CylinderStock', 'StockAdjustment', 'StockReservation', 'CylinderBatch',
    'DeliveryPartner', 'DeliveryAssignment',
    'ContactMessage', 'ContactReply',
    'SystemSettings',
]
