"""Supplier Delivery Note model."""
from sqlalchemy import Column, BigInteger, String, Text, Date, DateTime, Boolean, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base, IdType
import enum


class DeliveryNoteStatus(enum.Enum):
    """Delivery note status enum. Derived from the items except CANCELLED."""
    PENDING = "pending"
    PARTIAL = "partial"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


class SupplierDeliveryNote(Base):
    """Remito de proveedor: goods received against a purchase."""
    
    __tablename__ = 'supplier_delivery_note'
    
    id = Column(IdType, primary_key=True, autoincrement=True)
    delivery_note_number = Column(String(50), nullable=False, unique=True)
    supplier_id = Column(BigInteger, ForeignKey('supplier.id'), nullable=False)
    purchase_id = Column(BigInteger, ForeignKey('purchase.id'), nullable=True, index=True)
    invoice_id = Column(BigInteger, ForeignKey('supplier_invoice.id'), nullable=True)
    delivery_date = Column(Date, nullable=False)
    received_date = Column(DateTime(timezone=True), nullable=True)
    status = Column(
        Enum(
            DeliveryNoteStatus,
            name='delivery_note_status',
            values_callable=lambda e: [m.value for m in e]
        ),
        nullable=False,
        default=DeliveryNoteStatus.PENDING
    )
    matches_invoice = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)
    received_by = Column(BigInteger, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
    
    # Relationships
    supplier = relationship('Supplier')
    purchase = relationship('Purchase')
    invoice = relationship('SupplierInvoice', foreign_keys=[invoice_id])
    items = relationship(
        'SupplierDeliveryNoteItem',
        back_populates='delivery_note',
        cascade='all, delete-orphan',
        order_by='SupplierDeliveryNoteItem.id'
    )
    
    def __repr__(self):
        return f"<SupplierDeliveryNote(id={self.id}, number='{self.delivery_note_number}', status={self.status.value})>"
