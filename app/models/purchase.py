"""Purchase (supplier purchase order) model."""
from sqlalchemy import Column, BigInteger, String, Text, Date, Numeric, DateTime, Boolean, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base, IdType
import enum


class PurchaseStatus(enum.Enum):
    """Purchase status enum."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    RECEIVED = "received"
    CANCELLED = "cancelled"


class DebtType(enum.Enum):
    """Financial classification of the purchase."""
    COMPROMISO = "compromiso"
    DEUDA_DIRECTA = "deuda_directa"


def _values(enum_cls):
    return [member.value for member in enum_cls]


class Purchase(Base):
    """Purchase order issued to a supplier."""
    
    __tablename__ = 'purchase'
    
    id = Column(IdType, primary_key=True, autoincrement=True)
    purchase_number = Column(String(20), nullable=False, unique=True)
    supplier_id = Column(BigInteger, ForeignKey('supplier.id'), nullable=False)
    status = Column(
        Enum(PurchaseStatus, name='purchase_status', values_callable=_values),
        nullable=False,
        default=PurchaseStatus.PENDING
    )
    debt_type = Column(
        Enum(DebtType, name='purchase_debt_type', values_callable=_values),
        nullable=False,
        default=DebtType.COMPROMISO
    )
    total_amount = Column(Numeric(14, 2), nullable=False, default=0)
    commitment_amount = Column(Numeric(14, 2), nullable=False, default=0)
    debt_amount = Column(Numeric(14, 2), nullable=False, default=0)
    allows_partial_delivery = Column(Boolean, nullable=False, default=True)
    purchase_date = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)
    created_by = Column(BigInteger, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    received_date = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
    
    # Relationships
    supplier = relationship('Supplier', back_populates='purchases')
    items = relationship(
        'PurchaseItem',
        back_populates='purchase',
        cascade='all, delete-orphan',
        order_by='PurchaseItem.id'
    )
    invoices = relationship('SupplierInvoice', back_populates='purchase')
    
    def __repr__(self):
        return f"<Purchase(id={self.id}, purchase_number='{self.purchase_number}', status={self.status.value})>"
