"""Supplier model."""
from sqlalchemy import Column, String, Text, DateTime, Boolean
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base, IdType


class Supplier(Base):
    """Supplier (proveedor)."""
    
    __tablename__ = 'supplier'
    
    id = Column(IdType, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    tax_id = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    email = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    
    # Relationships
    purchases = relationship('Purchase', back_populates='supplier')
    invoices = relationship('SupplierInvoice', back_populates='supplier')
    
    def __repr__(self):
        return f"<Supplier(id={self.id}, name='{self.name}')>"
