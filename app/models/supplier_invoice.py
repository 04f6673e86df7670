"""Supplier Invoice model."""
from sqlalchemy import Column, BigInteger, String, Date, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base, IdType


class SupplierInvoice(Base):
    """Supplier invoice (factura de proveedor)."""
    
    __tablename__ = 'supplier_invoice'
    
    id = Column(IdType, primary_key=True, autoincrement=True)
    invoice_number = Column(String(50), nullable=False)
    supplier_id = Column(BigInteger, ForeignKey('supplier.id'), nullable=False)
    purchase_id = Column(BigInteger, ForeignKey('purchase.id'), nullable=True)
    delivery_note_id = Column(BigInteger, ForeignKey('supplier_delivery_note.id', use_alter=True, name='fk_supplier_invoice_delivery_note'), nullable=True)
    invoice_date = Column(Date, nullable=True)
    total_amount = Column(Numeric(14, 2), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    
    # Relationships
    supplier = relationship('Supplier', back_populates='invoices')
    purchase = relationship('Purchase', back_populates='invoices')
    
    def __repr__(self):
        return f"<SupplierInvoice(id={self.id}, invoice_number='{self.invoice_number}')>"
