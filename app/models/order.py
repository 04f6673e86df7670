"""Sales Order model."""
from sqlalchemy import Column, BigInteger, String, Text, Date, Numeric, DateTime, Boolean, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base, IdType
import enum


class OrderStatus(enum.Enum):
    """Order status enum."""
    PENDIENTE_PREPARACION = "pendiente_preparacion"
    APROBADO = "aprobado"
    EN_PROCESO = "en_proceso"
    LISTO_DESPACHO = "listo_despacho"
    COMPLETADO = "completado"
    CANCELADO = "cancelado"


class OrderRemitoStatus(enum.Enum):
    """Progress of the outbound remito linked to the order."""
    SIN_REMITO = "sin_remito"
    REMITO_GENERADO = "remito_generado"
    REMITO_DESPACHADO = "remito_despachado"
    REMITO_ENTREGADO = "remito_entregado"


class Order(Base):
    """Client order (pedido)."""
    
    __tablename__ = 'orders'
    
    id = Column(IdType, primary_key=True, autoincrement=True)
    order_number = Column(String(50), nullable=False, unique=True)
    # Id of the order in the external sales channel, deduplication key for imports
    external_order_id = Column(String(100), nullable=True, unique=True)
    client_id = Column(BigInteger, ForeignKey('client.id'), nullable=False)
    status = Column(
        Enum(OrderStatus, name='order_status', values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=OrderStatus.PENDIENTE_PREPARACION
    )
    remito_status = Column(
        Enum(OrderRemitoStatus, name='order_remito_status', values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=OrderRemitoStatus.SIN_REMITO
    )
    stock_reserved = Column(Boolean, nullable=False, default=False)
    total_amount = Column(Numeric(14, 2), nullable=False, default=0)
    order_date = Column(DateTime(timezone=True), nullable=True)
    delivery_date = Column(Date, nullable=True)
    delivery_address = Column(Text, nullable=True)
    delivery_city = Column(String(100), nullable=True)
    delivery_contact = Column(String(200), nullable=True)
    delivery_phone = Column(String(50), nullable=True)
    transport_company = Column(String(200), nullable=True)
    transport_cost = Column(Numeric(14, 2), nullable=False, default=0)
    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(BigInteger, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
    
    # Relationships
    client = relationship('Client', back_populates='orders')
    items = relationship(
        'OrderItem',
        back_populates='order',
        cascade='all, delete-orphan',
        order_by='OrderItem.id'
    )
    remitos = relationship('Remito', back_populates='order')
    
    def __repr__(self):
        return f"<Order(id={self.id}, order_number='{self.order_number}', status={self.status.value})>"
