"""Remito Item model."""
from sqlalchemy import Column, BigInteger, String, Text, Date, Numeric, Enum, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from app.database import Base, IdType
import enum


class RemitoItemStatus(enum.Enum):
    """Remito item status enum."""
    PREPARADO = "preparado"
    PARCIAL = "parcial"
    COMPLETO = "completo"
    DEVUELTO = "devuelto"


class RemitoItem(Base):
    """Product line of an outbound remito."""
    
    __tablename__ = 'remito_item'
    __table_args__ = (
        CheckConstraint(
            'delivered_quantity + returned_quantity <= prepared_quantity AND prepared_quantity <= quantity',
            name='ck_remito_item_quantities'
        ),
    )
    
    id = Column(IdType, primary_key=True, autoincrement=True)
    remito_id = Column(BigInteger, ForeignKey('remito.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id = Column(BigInteger, ForeignKey('product.id'), nullable=False)
    quantity = Column(Numeric(12, 3), nullable=False)
    unit_price = Column(Numeric(14, 2), nullable=False, default=0)
    total_price = Column(Numeric(14, 2), nullable=False, default=0)
    status = Column(
        Enum(RemitoItemStatus, name='remito_item_status', values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=RemitoItemStatus.PREPARADO
    )
    prepared_quantity = Column(Numeric(12, 3), nullable=False, default=0)
    delivered_quantity = Column(Numeric(12, 3), nullable=False, default=0)
    returned_quantity = Column(Numeric(12, 3), nullable=False, default=0)
    batch_number = Column(String(50), nullable=True)
    serial_numbers = Column(Text, nullable=True)
    expiration_date = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)
    
    # Relationships
    remito = relationship('Remito', back_populates='items')
    product = relationship('Product')
    
    def __repr__(self):
        return f"<RemitoItem(id={self.id}, remito_id={self.remito_id}, product_id={self.product_id}, quantity={self.quantity})>"
