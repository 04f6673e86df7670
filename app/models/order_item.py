"""Order Item model."""
from sqlalchemy import Column, BigInteger, String, Numeric, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from app.database import Base, IdType


class OrderItem(Base):
    """Order Item (línea de pedido)."""
    
    __tablename__ = 'order_item'
    
    id = Column(IdType, primary_key=True, autoincrement=True)
    order_id = Column(BigInteger, ForeignKey('orders.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id = Column(BigInteger, ForeignKey('product.id'), nullable=False)
    quantity = Column(Numeric(12, 3), nullable=False)
    unit_price = Column(Numeric(14, 2), nullable=False)
    total_price = Column(Numeric(14, 2), nullable=False)
    batch_number = Column(String(50), nullable=True)
    stock_reserved = Column(Boolean, nullable=False, default=False)
    
    # Relationships
    order = relationship('Order', back_populates='items')
    product = relationship('Product')
    
    def __repr__(self):
        return f"<OrderItem(id={self.id}, product_id={self.product_id}, quantity={self.quantity})>"
