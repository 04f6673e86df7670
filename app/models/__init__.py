"""Models package - exports all SQLAlchemy models."""
# Catalog
from app.models.client import Client
from app.models.supplier import Supplier
from app.models.product import Product
from app.models.product_stock import ProductStock
from app.models.supplier_invoice import SupplierInvoice

# Purchasing
from app.models.purchase import Purchase, PurchaseStatus, DebtType
from app.models.purchase_item import PurchaseItem
from app.models.supplier_delivery_note import SupplierDeliveryNote, DeliveryNoteStatus
from app.models.supplier_delivery_note_item import SupplierDeliveryNoteItem

# Sales and logistics
from app.models.order import Order, OrderStatus, OrderRemitoStatus
from app.models.order_item import OrderItem
from app.models.remito import Remito, RemitoType, RemitoStatus
from app.models.remito_item import RemitoItem, RemitoItemStatus
from app.models.trazabilidad import Trazabilidad, TrazabilidadStage

__all__ = [
    # Catalog
    'Client', 'Supplier', 'Product', 'ProductStock', 'SupplierInvoice',
    # Purchasing
    'Purchase', 'PurchaseStatus', 'DebtType', 'PurchaseItem',
    'SupplierDeliveryNote', 'DeliveryNoteStatus', 'SupplierDeliveryNoteItem',
    # Sales and logistics
    'Order', 'OrderStatus', 'OrderRemitoStatus', 'OrderItem',
    'Remito', 'RemitoType', 'RemitoStatus', 'RemitoItem', 'RemitoItemStatus',
    'Trazabilidad', 'TrazabilidadStage',
]
