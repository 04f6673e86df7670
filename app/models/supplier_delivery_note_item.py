"""Supplier Delivery Note Item model."""
from sqlalchemy import Column, BigInteger, String, Text, Numeric, Boolean, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from app.database import Base, IdType


class SupplierDeliveryNoteItem(Base):
    """Quantity received in one delivery note, optionally matched to a purchase item."""
    
    __tablename__ = 'supplier_delivery_note_item'
    __table_args__ = (
        CheckConstraint('quantity > 0', name='ck_delivery_note_item_quantity_positive'),
    )
    
    id = Column(IdType, primary_key=True, autoincrement=True)
    delivery_note_id = Column(
        BigInteger,
        ForeignKey('supplier_delivery_note.id', ondelete='CASCADE'),
        nullable=False,
        index=True
    )
    product_id = Column(BigInteger, ForeignKey('product.id'), nullable=True)
    material_code = Column(String(50), nullable=True)
    # Reference only: deleting the note never touches the purchase item
    purchase_item_id = Column(BigInteger, ForeignKey('purchase_item.id'), nullable=True, index=True)
    invoice_item_id = Column(BigInteger, nullable=True)
    quantity = Column(Numeric(12, 3), nullable=False)
    quality_check = Column(Boolean, nullable=False, default=False)
    quality_notes = Column(Text, nullable=True)
    
    # Relationships
    delivery_note = relationship('SupplierDeliveryNote', back_populates='items')
    purchase_item = relationship('PurchaseItem')
    product = relationship('Product')
    
    def __repr__(self):
        return f"<SupplierDeliveryNoteItem(id={self.id}, note_id={self.delivery_note_id}, quantity={self.quantity})>"
