from .catalog import Product, Warehouse, Partner
from .inventory import Batch, BatchMovement, AllocationRecord
from .orders import Order, OrderLine, Package
from .transport import Transport, TransportStatusEvent
from .returns import Return, ReturnLine
from .audit import FulfillmentEvent, DocumentSequence

__all__ = [
    'Product', 'Warehouse', 'Partner',
    'Batch', 'BatchMovement', 'AllocationRecord',
    'Order', 'OrderLine', 'Package',
    'Transport', 'TransportStatusEvent',
    'Return', 'ReturnLine',
    'FulfillmentEvent', 'DocumentSequence',
]
