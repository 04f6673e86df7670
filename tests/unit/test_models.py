"""
Unit tests for SQLAlchemy models.
"""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal

from app.models import (
    Client, Product, ProductStock, Purchase, PurchaseItem, PurchaseStatus, DebtType,
    Order, OrderItem, OrderStatus, OrderRemitoStatus,
    Remito, RemitoItem, RemitoType, RemitoStatus, RemitoItemStatus
)


class TestClientModel:
    """Tests for Client model."""

    def test_create_client(self, session):
        client = Client(code='CLI900', name='Test Client')
        session.add(client)
        session.commit()

        assert client.id is not None
        assert client.is_active is True

    def test_client_code_unique(self, session, customer):
        session.add(Client(code=customer.code, name='Duplicate'))

        with pytest.raises(Exception):  # IntegrityError
            session.commit()
        session.rollback()


class TestProductStockModel:
    """Tests for Product / ProductStock."""

    def test_available_qty(self, session, product_a):
        stock = session.query(ProductStock).filter_by(product_id=product_a.id).one()
        stock.reserved_qty = Decimal('30')
        session.commit()

        assert stock.available_qty == Decimal('70')
        assert product_a.on_hand_qty == Decimal('100')

    def test_product_without_stock_row(self, session):
        product = Product(code='NOSTOCK', name='Sin stock', price=Decimal('1'))
        session.add(product)
        session.commit()

        assert product.on_hand_qty == 0


class TestPurchaseItemModel:
    """Tests for PurchaseItem."""

    def test_pending_quantity(self, session, supplier, product_a):
        purchase = Purchase(
            purchase_number='COMP269999',
            supplier_id=supplier.id,
            status=PurchaseStatus.PENDING,
            debt_type=DebtType.COMPROMISO,
            purchase_date=date(2026, 1, 1),
        )
        purchase.items = [PurchaseItem(
            product_id=product_a.id, quantity=Decimal('10'), received_quantity=Decimal('3'),
            unit_price=Decimal('1'), total_price=Decimal('10')
        )]
        session.add(purchase)
        session.commit()

        assert purchase.items[0].pending_quantity == Decimal('7')
        assert purchase.status == PurchaseStatus.PENDING


class TestOrderAndRemitoModels:
    """Enum storage and relationships of orders and remitos."""

    def test_order_defaults(self, session, customer, product_a):
        order = Order(order_number='ORD2699999', client_id=customer.id)
        order.items = [OrderItem(
            product_id=product_a.id, quantity=Decimal('2'), unit_price=Decimal('50'), total_price=Decimal('100')
        )]
        session.add(order)
        session.commit()

        assert order.status == OrderStatus.PENDIENTE_PREPARACION
        assert order.remito_status == OrderRemitoStatus.SIN_REMITO
        assert order.stock_reserved is False
        assert len(order.items) == 1

    def test_remito_item_quantity_constraint(self, session, customer, product_a):
        remito = Remito(
            remito_number='REM269999',
            client_id=customer.id,
            remito_type=RemitoType.ENTREGA_CLIENTE,
            status=RemitoStatus.GENERADO,
            generation_date=datetime.now(timezone.utc),
        )
        remito.items = [RemitoItem(
            product_id=product_a.id, quantity=Decimal('5'), prepared_quantity=Decimal('6'),
            status=RemitoItemStatus.PREPARADO
        )]
        session.add(remito)

        with pytest.raises(Exception):  # IntegrityError (check constraint)
            session.commit()
        session.rollback()
