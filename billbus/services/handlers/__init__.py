from billbus.services.handlers.base import BillHandler, HandlerContext
from billbus.services.handlers.forwarding import ForwardingBillHandler
from billbus.services.handlers.generic import GenericBillHandler

__all__ = ["BillHandler", "ForwardingBillHandler", "GenericBillHandler", "HandlerContext"]
