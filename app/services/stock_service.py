"""
Product / stock catalog used by the order and logistics workflows.

All functions take the caller's session and never commit: they run inside
the transaction of the workflow operation that calls them.
"""
import logging
from decimal import Decimal
from typing import Optional

from app.exceptions import NotFoundError, InsufficientStockError, ValidationError
from app.models import Product, ProductStock
from app.services.quantity_ledger import to_decimal, ZERO

logger = logging.getLogger(__name__)


def product_exists(session, product_id) -> bool:
    return session.query(Product.id).filter(Product.id == product_id).first() is not None


def get_product(session, product_id) -> Product:
    product = session.query(Product).filter(Product.id == product_id).first()
    if not product:
        raise NotFoundError(f'Producto con ID {product_id} no encontrado')
    return product


def _stock_row(session, product_id, lock: bool = False) -> Optional[ProductStock]:
    query = session.query(ProductStock).filter(ProductStock.product_id == product_id)
    if lock:
        query = query.with_for_update()
    return query.first()


def _locked_stock_row(session, product_id) -> ProductStock:
    """Lock the stock row, creating it at zero when the product has none."""
    stock = _stock_row(session, product_id, lock=True)
    if stock is None:
        get_product(session, product_id)
        stock = ProductStock(product_id=product_id, on_hand_qty=ZERO, reserved_qty=ZERO)
        session.add(stock)
        session.flush()
    return stock


def current_stock(session, product_id) -> Decimal:
    """On-hand quantity (0 when the product has no stock row)."""
    stock = _stock_row(session, product_id)
    return to_decimal(stock.on_hand_qty) if stock else ZERO


def available_stock(session, product_id) -> Decimal:
    """On-hand minus quantity already reserved for orders."""
    stock = _stock_row(session, product_id)
    if not stock:
        return ZERO
    return to_decimal(stock.on_hand_qty) - to_decimal(stock.reserved_qty)


def adjust_stock(session, product_id, delta=None, absolute=None) -> ProductStock:
    """
    Change on-hand stock by a delta or set it to an absolute value.

    Raises:
        ValidationError: If neither or both of delta/absolute are given
        InsufficientStockError: If the result would be negative
    """
    if (delta is None) == (absolute is None):
        raise ValidationError('Debe indicar delta o valor absoluto de stock (uno solo)')

    stock = _locked_stock_row(session, product_id)
    on_hand = to_decimal(stock.on_hand_qty)
    new_qty = on_hand + to_decimal(delta) if delta is not None else to_decimal(absolute)

    if new_qty < ZERO:
        product = get_product(session, product_id)
        required = -to_decimal(delta) if delta is not None else to_decimal(absolute)
        raise InsufficientStockError(product.name, required, on_hand)

    stock.on_hand_qty = new_qty
    logger.info(f"[STOCK] product={product_id} on_hand {on_hand} -> {new_qty}")
    return stock


def reserve(session, product_id, quantity) -> ProductStock:
    """Reserve quantity for an order. Fails if it exceeds available stock."""
    qty = to_decimal(quantity)
    stock = _locked_stock_row(session, product_id)
    available = to_decimal(stock.on_hand_qty) - to_decimal(stock.reserved_qty)
    if qty > available:
        product = get_product(session, product_id)
        raise InsufficientStockError(product.name, qty, available, payload={'product_id': product_id})
    stock.reserved_qty = to_decimal(stock.reserved_qty) + qty
    return stock


def release(session, product_id, quantity) -> ProductStock:
    """Release a reservation; never lets reserved go below zero."""
    stock = _locked_stock_row(session, product_id)
    remaining = to_decimal(stock.reserved_qty) - to_decimal(quantity)
    stock.reserved_qty = remaining if remaining > ZERO else ZERO
    return stock


def issue(session, product_id, quantity, reserved_quantity=None) -> ProductStock:
    """
    Physically remove stock (dispatch).

    ``reserved_quantity`` is the part of ``quantity`` covered by a
    reservation; it defaults to the whole quantity. Only that part is taken
    out of reserved_qty.
    """
    qty = to_decimal(quantity)
    from_reservation = qty if reserved_quantity is None else min(qty, to_decimal(reserved_quantity))
    stock = adjust_stock(session, product_id, delta=-qty)
    if from_reservation > ZERO:
        remaining = to_decimal(stock.reserved_qty) - from_reservation
        stock.reserved_qty = remaining if remaining > ZERO else ZERO
    return stock
