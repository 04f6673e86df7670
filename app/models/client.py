"""Client model."""
from sqlalchemy import Column, String, Text, DateTime, Boolean
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base, IdType


class Client(Base):
    """Client (cliente)."""
    
    __tablename__ = 'client'
    
    id = Column(IdType, primary_key=True, autoincrement=True)
    code = Column(String(20), nullable=True, unique=True)
    name = Column(String(200), nullable=False)
    tax_id = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    address = Column(Text, nullable=True)
    city = Column(String(100), nullable=True)
    contact_person = Column(String(200), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    
    # Relationships
    orders = relationship('Order', back_populates='client')
    
    def __repr__(self):
        return f"<Client(id={self.id}, name='{self.name}')>"
