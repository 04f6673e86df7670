"""Purchase Item model."""
from sqlalchemy import Column, BigInteger, String, Numeric, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from app.database import Base, IdType


class PurchaseItem(Base):
    """Line item of a purchase order."""
    
    __tablename__ = 'purchase_item'
    __table_args__ = (
        CheckConstraint('quantity > 0', name='ck_purchase_item_quantity_positive'),
        CheckConstraint(
            'received_quantity >= 0 AND received_quantity <= quantity',
            name='ck_purchase_item_received_range'
        ),
    )
    
    id = Column(IdType, primary_key=True, autoincrement=True)
    purchase_id = Column(BigInteger, ForeignKey('purchase.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id = Column(BigInteger, ForeignKey('product.id'), nullable=True)
    material_code = Column(String(50), nullable=True)
    quantity = Column(Numeric(12, 3), nullable=False)
    # Written only by delivery note reconciliation
    received_quantity = Column(Numeric(12, 3), nullable=False, default=0)
    unit_price = Column(Numeric(14, 2), nullable=False, default=0)
    unit_cost = Column(Numeric(14, 2), nullable=True)
    total_price = Column(Numeric(14, 2), nullable=False, default=0)
    
    # Relationships
    purchase = relationship('Purchase', back_populates='items')
    product = relationship('Product')
    
    @property
    def pending_quantity(self):
        from app.services.quantity_ledger import pending_quantity
        return pending_quantity(self.quantity, self.received_quantity)
    
    def __repr__(self):
        return f"<PurchaseItem(id={self.id}, purchase_id={self.purchase_id}, quantity={self.quantity}, received={self.received_quantity})>"
