"""Outbound Remito model."""
from sqlalchemy import Column, BigInteger, Integer, String, Text, Numeric, DateTime, Boolean, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base, IdType
import enum


class RemitoType(enum.Enum):
    """Remito type enum. Drives the number prefix."""
    ENTREGA_CLIENTE = "entrega_cliente"
    TRASLADO_INTERNO = "traslado_interno"
    DEVOLUCION = "devolucion"
    CONSIGNACION = "consignacion"


class RemitoStatus(enum.Enum):
    """Remito status enum."""
    GENERADO = "generado"
    PREPARANDO = "preparando"
    LISTO_DESPACHO = "listo_despacho"
    EN_TRANSITO = "en_transito"
    ENTREGADO = "entregado"
    DEVUELTO = "devuelto"
    CANCELADO = "cancelado"


class Remito(Base):
    """Delivery note issued to a client for an order."""
    
    __tablename__ = 'remito'
    
    id = Column(IdType, primary_key=True, autoincrement=True)
    remito_number = Column(String(20), nullable=False, unique=True)
    order_id = Column(BigInteger, ForeignKey('orders.id'), nullable=True, index=True)
    client_id = Column(BigInteger, ForeignKey('client.id'), nullable=False)
    remito_type = Column(
        Enum(RemitoType, name='remito_type', values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=RemitoType.ENTREGA_CLIENTE
    )
    status = Column(
        Enum(RemitoStatus, name='remito_status', values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=RemitoStatus.GENERADO
    )
    
    # Dates
    generation_date = Column(DateTime(timezone=True), nullable=False)
    preparation_date = Column(DateTime(timezone=True), nullable=True)
    dispatch_date = Column(DateTime(timezone=True), nullable=True)
    delivery_date = Column(DateTime(timezone=True), nullable=True)
    
    # Delivery / transport
    delivery_address = Column(Text, nullable=True)
    delivery_city = Column(String(100), nullable=True)
    delivery_contact = Column(String(200), nullable=True)
    delivery_phone = Column(String(50), nullable=True)
    transport_company = Column(String(200), nullable=True)
    tracking_number = Column(String(100), nullable=True)
    transport_cost = Column(Numeric(14, 2), nullable=False, default=0)
    
    # Totals
    total_products = Column(Integer, nullable=False, default=0)
    total_quantity = Column(Numeric(12, 3), nullable=False, default=0)
    total_value = Column(Numeric(14, 2), nullable=False, default=0)
    
    # Notes and delivery evidence
    notes = Column(Text, nullable=True)
    preparation_notes = Column(Text, nullable=True)
    delivery_notes = Column(Text, nullable=True)
    signature_data = Column(Text, nullable=True)
    delivery_photo = Column(Text, nullable=True)
    
    created_by = Column(BigInteger, nullable=True)
    delivered_by = Column(BigInteger, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
    
    # Relationships
    order = relationship('Order', back_populates='remitos')
    client = relationship('Client')
    items = relationship(
        'RemitoItem',
        back_populates='remito',
        cascade='all, delete-orphan',
        order_by='RemitoItem.id'
    )
    trazabilidad = relationship(
        'Trazabilidad',
        back_populates='remito',
        cascade='all, delete-orphan',
        order_by='[Trazabilidad.stage_start, Trazabilidad.id]'
    )
    
    def __repr__(self):
        return f"<Remito(id={self.id}, remito_number='{self.remito_number}', status={self.status.value})>"
