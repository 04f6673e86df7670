import pytest
from decimal import Decimal

from app import create_app
from app.database import get_session, create_all, drop_all
from app.models import Client, Supplier, Product, ProductStock, SupplierInvoice


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing (in-memory SQLite)."""
    app = create_app('config.TestConfig')
    return app


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session(app):
    """Fresh schema and database session for each test."""
    ctx = app.app_context()
    ctx.push()
    create_all()
    session = get_session()
    yield session
    session.rollback()
    session.remove()
    drop_all()
    ctx.pop()


@pytest.fixture(scope='function')
def customer(session):
    """Create test client (cliente) with delivery data."""
    customer = Client(
        code='CLI001',
        name='Ferretería López',
        email='compras@lopez.test',
        phone='011-4444-5555',
        address='Av. Siempre Viva 742',
        city='Rosario',
        contact_person='Marta López',
        is_active=True
    )
    session.add(customer)
    session.commit()
    return customer


@pytest.fixture(scope='function')
def other_customer(session):
    customer = Client(code='CLI002', name='Distribuidora Norte', is_active=True)
    session.add(customer)
    session.commit()
    return customer


@pytest.fixture(scope='function')
def supplier(session):
    supplier = Supplier(name='Aceros del Sur', tax_id='30-11111111-1')
    session.add(supplier)
    session.commit()
    return supplier


@pytest.fixture(scope='function')
def other_supplier(session):
    supplier = Supplier(name='Pinturas Centro', tax_id='30-22222222-2')
    session.add(supplier)
    session.commit()
    return supplier


def _product(session, code, name, price, on_hand):
    product = Product(code=code, name=name, unit='un', price=Decimal(price), cost=Decimal('0'))
    session.add(product)
    session.flush()
    session.add(ProductStock(product_id=product.id, on_hand_qty=Decimal(on_hand), reserved_qty=Decimal('0')))
    session.commit()
    return product


@pytest.fixture(scope='function')
def product_a(session):
    """Product with 100 units on hand."""
    return _product(session, 'TOR-001', 'Tornillo 6mm', '50.00', '100')


@pytest.fixture(scope='function')
def product_b(session):
    """Product with 10 units on hand."""
    return _product(session, 'TAL-001', 'Taladro 500W', '150.00', '10')


@pytest.fixture(scope='function')
def invoice(session, supplier):
    invoice = SupplierInvoice(invoice_number='A-0001-00001234', supplier_id=supplier.id, total_amount=Decimal('5000'))
    session.add(invoice)
    session.commit()
    return invoice
