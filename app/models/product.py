"""Product model."""
from sqlalchemy import Column, String, Boolean, Numeric, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base, IdType


class Product(Base):
    """Product model."""
    
    __tablename__ = 'product'
    
    id = Column(IdType, primary_key=True, autoincrement=True)
    code = Column(String(50), nullable=True, unique=True)
    name = Column(String, nullable=False)
    unit = Column(String(20), nullable=False, default='un')
    price = Column(Numeric(14, 2), nullable=False, default=0)
    cost = Column(Numeric(14, 2), nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    
    # Cascade delete-orphan: Al eliminar el producto, se elimina automáticamente su stock
    stock = relationship('ProductStock', uselist=False, back_populates='product', cascade="all, delete-orphan")
    
    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}', code='{self.code}')>"
    
    @property
    def on_hand_qty(self):
        """Get on hand quantity from stock."""
        if self.stock:
            return self.stock.on_hand_qty
        return 0
