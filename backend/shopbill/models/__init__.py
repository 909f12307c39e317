from .tenancy import Shop
from .catalog import Product
from .inventory import StockMovement
from .documents import DocumentSequence
from .invoices import Invoice, InvoiceLine, InvoiceEditAudit
from .drafts import HeldCart

__all__ = [
    'Shop',
    'Product',
    'StockMovement',
    'DocumentSequence',
    'Invoice', 'InvoiceLine', 'InvoiceEditAudit',
    'HeldCart',
]
