from .catalog import Branch, Supplier, Product, Customer, User
from .inventory import StockEntry, InventoryLogEntry
from .purchases import Purchase, PurchaseItem
from .sales import Sale, SaleItem, SaleReturn
from .loyalty import LoyaltyAccount, LoyaltyTransaction

__all__ = [
    'Branch', 'Supplier', 'Product', 'Customer', 'User',
    'StockEntry', 'InventoryLogEntry',
    'Purchase', 'PurchaseItem',
    'Sale', 'SaleItem', 'SaleReturn',
    'LoyaltyAccount', 'LoyaltyTransaction',
]
