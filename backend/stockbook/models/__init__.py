from .catalog import Product, Customer
from .inventory import StockLedgerEntry
from .invoices import Invoice, InvoiceItem, InvoiceSequence, InvoiceOperation

__all__ = [
    'Product', 'Customer',
    'StockLedgerEntry',
    'Invoice', 'InvoiceItem', 'InvoiceSequence', 'InvoiceOperation',
]
