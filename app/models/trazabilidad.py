"""Trazabilidad (remito audit trail) model."""
from datetime import timezone

from sqlalchemy import Column, BigInteger, String, Text, Numeric, DateTime, Boolean, Enum, ForeignKey
from sqlalchemy.orm import relationship
from app.database import Base, IdType
import enum


class TrazabilidadStage(enum.Enum):
    """Logistics stage enum."""
    FABRICACION = "fabricacion"
    CONTROL_CALIDAD = "control_calidad"
    ALMACENAMIENTO = "almacenamiento"
    PREPARACION = "preparacion"
    DESPACHO = "despacho"
    TRANSITO = "transito"
    ENTREGA = "entrega"
    DEVUELTO = "devuelto"


def _naive_utc(value):
    # SQLite hands back naive datetimes; all stored values are UTC
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class Trazabilidad(Base):
    """
    One stage of one product inside a remito.
    
    Append-only: after insert only stage_end is written.
    """
    
    __tablename__ = 'trazabilidad'
    
    id = Column(IdType, primary_key=True, autoincrement=True)
    remito_id = Column(BigInteger, ForeignKey('remito.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id = Column(BigInteger, ForeignKey('product.id'), nullable=False)
    stage = Column(
        Enum(TrazabilidadStage, name='trazabilidad_stage', values_callable=lambda e: [m.value for m in e]),
        nullable=False
    )
    location = Column(String(200), nullable=True)
    location_details = Column(Text, nullable=True)
    responsible_person = Column(String(200), nullable=True)
    responsible_user_id = Column(BigInteger, nullable=True)
    stage_start = Column(DateTime(timezone=True), nullable=False)
    stage_end = Column(DateTime(timezone=True), nullable=True)
    temperature = Column(Numeric(5, 2), nullable=True)
    humidity = Column(Numeric(5, 2), nullable=True)
    quality_check = Column(Boolean, nullable=False, default=False)
    quality_notes = Column(Text, nullable=True)
    vehicle_plate = Column(String(20), nullable=True)
    driver_name = Column(String(200), nullable=True)
    driver_phone = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True)
    is_automatic = Column(Boolean, nullable=False, default=False)
    
    # Relationships
    remito = relationship('Remito', back_populates='trazabilidad')
    product = relationship('Product')
    
    @property
    def duration_minutes(self):
        """Whole minutes from stage_start to stage_end, None while the stage is open."""
        if self.stage_start is None or self.stage_end is None:
            return None
        start, end = _naive_utc(self.stage_start), _naive_utc(self.stage_end)
        return max(int((end - start).total_seconds() // 60), 0)

    def __repr__(self):
        return f"<Trazabilidad(id={self.id}, remito_id={self.remito_id}, stage={self.stage.value})>"
