"""
Order service - client orders, status machine and stock reservation.

Orders imported from the external sales channel are deduplicated by
external order id (then by order number) so the import can be retried
safely.
"""
import logging
from datetime import datetime, timezone
from typing import Optional, Tuple

from flask import current_app, has_app_context

from app.database import transaction
from app.exceptions import NotFoundError, ValidationError, ConflictError, InvalidTransitionError, InsufficientStockError
from app.models import Client, Product, Order, OrderItem, OrderStatus, OrderRemitoStatus, Remito, RemitoStatus
from app.services import stock_service
from app.services.numbering import next_order_number
from app.services.quantity_ledger import aggregate_total, line_total, ZERO
from app.utils.parsing import (
    parse_positive, parse_non_negative, parse_int, parse_date, parse_datetime,
    parse_enum, parse_bool, clean_str
)

logger = logging.getLogger(__name__)

ORDER_TRANSITIONS = {
    OrderStatus.PENDIENTE_PREPARACION: {
        OrderStatus.LISTO_DESPACHO, OrderStatus.APROBADO, OrderStatus.EN_PROCESO, OrderStatus.CANCELADO
    },
    OrderStatus.APROBADO: {OrderStatus.LISTO_DESPACHO, OrderStatus.EN_PROCESO, OrderStatus.CANCELADO},
    OrderStatus.EN_PROCESO: {OrderStatus.LISTO_DESPACHO, OrderStatus.COMPLETADO, OrderStatus.CANCELADO},
    OrderStatus.LISTO_DESPACHO: {OrderStatus.COMPLETADO, OrderStatus.CANCELADO},
    OrderStatus.COMPLETADO: set(),
    OrderStatus.CANCELADO: set(),
}

INITIAL_STATUSES = (OrderStatus.PENDIENTE_PREPARACION, OrderStatus.APROBADO, OrderStatus.LISTO_DESPACHO)
AUTO_RESERVE_STATUSES = (OrderStatus.APROBADO, OrderStatus.LISTO_DESPACHO)

DELIVERY_FIELDS = (
    'delivery_address', 'delivery_city', 'delivery_contact', 'delivery_phone', 'transport_company', 'notes'
)


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ORDER_TRANSITIONS.get(current, set())


def _auto_reserve_enabled() -> bool:
    if not has_app_context():
        return True
    return bool(current_app.config.get('AUTO_RESERVE_STOCK_ON_APPROVAL', True))


def _now():
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

def get_order(session, order_id, lock: bool = False) -> Order:
    query = session.query(Order).filter(Order.id == order_id, Order.is_active.is_(True))
    if lock:
        query = query.with_for_update()
    order = query.first()
    if not order:
        raise NotFoundError(f'Pedido con ID {order_id} no encontrado')
    return order


def get_order_by_number(session, order_number) -> Order:
    order = session.query(Order).filter(Order.order_number == order_number, Order.is_active.is_(True)).first()
    if not order:
        raise NotFoundError(f'Pedido {order_number} no encontrado')
    return order


def get_order_by_external_id(session, external_order_id) -> Order:
    order = session.query(Order).filter(
        Order.external_order_id == str(external_order_id),
        Order.is_active.is_(True)
    ).first()
    if not order:
        raise NotFoundError(f'Pedido externo {external_order_id} no encontrado')
    return order


def list_orders(session, status=None, client_id=None, remito_status=None, stock_reserved=None):
    query = session.query(Order).filter(Order.is_active.is_(True))
    if status:
        query = query.filter(Order.status == parse_enum(OrderStatus, status, 'status'))
    if client_id:
        query = query.filter(Order.client_id == client_id)
    if remito_status:
        query = query.filter(Order.remito_status == parse_enum(OrderRemitoStatus, remito_status, 'remito_status'))
    if stock_reserved is not None:
        query = query.filter(Order.stock_reserved.is_(parse_bool(stock_reserved, 'stock_reserved')))
    return query.order_by(Order.id.desc()).all()


def orders_ready_for_remito(session, eligible_statuses=None):
    """Active orders with stock reserved, no remito yet and an eligible status."""
    if eligible_statuses is None:
        eligible_statuses = remito_eligible_statuses()
    return session.query(Order).filter(
        Order.is_active.is_(True),
        Order.stock_reserved.is_(True),
        Order.remito_status == OrderRemitoStatus.SIN_REMITO,
        Order.status.in_(eligible_statuses)
    ).order_by(Order.id).all()


def remito_eligible_statuses():
    raw = ('aprobado', 'listo_despacho')
    if has_app_context():
        raw = current_app.config.get('REMITO_ELIGIBLE_ORDER_STATUSES', raw)
    return [parse_enum(OrderStatus, value, 'REMITO_ELIGIBLE_ORDER_STATUSES') for value in raw]


def _find_existing(session, external_order_id, external_order_number) -> Optional[Order]:
    """Deduplication lookup over every order, soft-deleted ones included."""
    if external_order_id is not None:
        return session.query(Order).filter(Order.external_order_id == str(external_order_id)).first()
    if external_order_number:
        return session.query(Order).filter(Order.order_number == external_order_number).first()
    return None


# ---------------------------------------------------------------------------
# Stock reservation
# ---------------------------------------------------------------------------

def _reserve_items(session, order: Order) -> None:
    """
    Reserve stock for every line, all-or-nothing.

    Availability is checked for the whole order (quantities aggregated per
    product) before any row is touched.
    """
    required = {}
    for item in order.items:
        required[item.product_id] = required.get(item.product_id, ZERO) + item.quantity

    shortages = []
    for product_id, qty in required.items():
        available = stock_service.available_stock(session, product_id)
        if qty > available:
            shortages.append({
                'product_id': product_id,
                'required': str(qty),
                'available': str(available),
            })

    if shortages:
        first = shortages[0]
        product = stock_service.get_product(session, first['product_id'])
        raise InsufficientStockError(
            product.name, required[first['product_id']],
            stock_service.available_stock(session, first['product_id']),
            payload={'items': shortages}
        )

    for product_id, qty in required.items():
        stock_service.reserve(session, product_id, qty)

    order.stock_reserved = True
    for item in order.items:
        item.stock_reserved = True
    logger.info(f"[ORDERS] Stock reserved for {order.order_number}")


def _release_items(session, order: Order) -> None:
    for item in order.items:
        stock_service.release(session, item.product_id, item.quantity)
    logger.info(f"[ORDERS] Stock released for {order.order_number}")


def reserve_stock(session, order_id) -> Order:
    """
    Reserve stock for an order.

    Raises:
        ConflictError: Already reserved or order closed
        InsufficientStockError: Some product lacks availability (nothing is reserved)
    """
    from app.services.notification_service import notify

    with transaction(session, 'reserva de stock'):
        order = get_order(session, order_id, lock=True)
        if order.stock_reserved:
            raise ConflictError(f'El pedido {order.order_number} ya tiene stock reservado')
        if order.status in (OrderStatus.COMPLETADO, OrderStatus.CANCELADO):
            raise ConflictError(f'No se puede reservar stock de un pedido {order.status.value}')
        _reserve_items(session, order)

    notify('order.stock_reserved', {'order_id': order.id, 'order_number': order.order_number})
    return order


# ---------------------------------------------------------------------------
# Create / update / delete
# ---------------------------------------------------------------------------

def _check_no_live_remito(session, order: Order) -> None:
    """A cancelled order cannot keep a remito that may still ship its stock."""
    remito = session.query(Remito).filter(
        Remito.order_id == order.id,
        Remito.is_active.is_(True),
        Remito.status != RemitoStatus.CANCELADO
    ).first()
    if remito is None:
        return
    if remito.status in (RemitoStatus.EN_TRANSITO, RemitoStatus.ENTREGADO, RemitoStatus.DEVUELTO):
        raise ConflictError(
            f'El pedido {order.order_number} ya fue despachado y no puede cancelarse',
            payload={'remito_id': remito.id}
        )
    raise ConflictError(
        f'El pedido {order.order_number} tiene el remito {remito.remito_number} activo; cancele el remito primero',
        payload={'remito_id': remito.id}
    )


def _build_items(session, items: list):
    if not items:
        raise ValidationError('El pedido debe tener al menos un ítem')
    built = []
    for index, data in enumerate(items):
        label = f'items[{index}]'
        product_id = parse_int(data.get('product_id'), f'{label}.product_id')
        product = session.query(Product).filter(Product.id == product_id).first()
        if not product:
            raise NotFoundError(f'Producto con ID {product_id} no encontrado')
        quantity = parse_positive(data.get('quantity'), f'{label}.quantity')
        unit_price = parse_non_negative(data.get('unit_price'), f'{label}.unit_price', default=product.price)
        built.append(OrderItem(
            product_id=product.id,
            quantity=quantity,
            unit_price=unit_price,
            total_price=line_total(quantity, unit_price),
            batch_number=clean_str(data.get('batch_number')),
            stock_reserved=False,
        ))
    return built


def _recompute_total(order: Order) -> None:
    order.total_amount = aggregate_total(
        ((item.quantity, item.unit_price) for item in order.items),
        order.transport_cost or ZERO
    )


def create_order(
    session,
    client_id,
    items: list,
    external_order_id=None,
    external_order_number: Optional[str] = None,
    status='pendiente_preparacion',
    transport_cost=0,
    actor_id: Optional[int] = None,
    **details
) -> Tuple[Order, bool]:
    """
    Create an order, or return the existing one for a repeated import.

    Args:
        details: delivery_date, order_date and the DELIVERY_FIELDS

    Returns:
        (order, created) - created is False when an existing order was returned
    """
    from app.services.notification_service import notify

    external_order_number = clean_str(external_order_number)
    existing = _find_existing(session, external_order_id, external_order_number)
    if existing is not None:
        logger.info(f"[ORDERS] Duplicate import ignored, returning {existing.order_number}")
        return existing, False

    unknown = set(details) - set(DELIVERY_FIELDS) - {'delivery_date', 'order_date'}
    if unknown:
        raise ValidationError(f'Campos desconocidos: {", ".join(sorted(unknown))}')

    try:
        with transaction(session, 'creación de pedido'):
            client = session.query(Client).filter(Client.id == parse_int(client_id, 'client_id')).first()
            if not client:
                raise NotFoundError(f'Cliente con ID {client_id} no encontrado')

            initial = parse_enum(OrderStatus, status or OrderStatus.PENDIENTE_PREPARACION, 'status')
            if initial not in INITIAL_STATUSES:
                raise ValidationError(
                    f'Estado inicial inválido: {initial.value}',
                    payload={'allowed': [s.value for s in INITIAL_STATUSES]}
                )

            order = Order(
                order_number=external_order_number or next_order_number(session),
                external_order_id=str(external_order_id) if external_order_id is not None else None,
                client_id=client.id,
                status=initial,
                remito_status=OrderRemitoStatus.SIN_REMITO,
                stock_reserved=False,
                transport_cost=parse_non_negative(transport_cost, 'transport_cost', default=0),
                order_date=parse_datetime(details.get('order_date'), 'order_date') or _now(),
                delivery_date=parse_date(details.get('delivery_date'), 'delivery_date'),
                is_active=True,
                created_by=actor_id,
            )
            for field in DELIVERY_FIELDS:
                setattr(order, field, clean_str(details.get(field)))

            order.items = _build_items(session, items)
            _recompute_total(order)
            session.add(order)
            session.flush()

            if _auto_reserve_enabled() and initial in AUTO_RESERVE_STATUSES:
                _reserve_items(session, order)

            logger.info(
                f"[ORDERS] Created {order.order_number} client={client.id} "
                f"external={order.external_order_id} total={order.total_amount}"
            )
    except ConflictError:
        # Concurrent import of the same external order won the race
        existing = _find_existing(session, external_order_id, external_order_number)
        if existing is not None:
            return existing, False
        raise

    notify('order.created', {
        'order_id': order.id,
        'order_number': order.order_number,
        'client_id': order.client_id,
        'status': order.status.value,
        'total_amount': str(order.total_amount),
    })
    return order, True


def update_order(session, order_id, fields: dict, actor_id: Optional[int] = None) -> Order:
    """
    Partial update. A status change must follow ORDER_TRANSITIONS; reaching
    aprobado / listo_despacho reserves stock when auto-reserve is enabled.
    """
    from app.services.notification_service import notify

    allowed = set(DELIVERY_FIELDS) | {'status', 'delivery_date', 'transport_cost', 'client_id'}
    unknown = set(fields) - allowed
    if unknown:
        raise ValidationError(f'Campos no actualizables: {", ".join(sorted(unknown))}')
    for key in ('status', 'transport_cost', 'client_id'):
        if key in fields and fields[key] is None:
            raise ValidationError(f'El campo {key} no puede ser nulo', payload={'field': key})

    previous_status = None
    with transaction(session, 'actualización de pedido'):
        order = get_order(session, order_id, lock=True)

        new_status = None
        if 'status' in fields:
            new_status = parse_enum(OrderStatus, fields['status'], 'status')
            if new_status == order.status:
                new_status = None
            elif not can_transition(order.status, new_status):
                raise InvalidTransitionError('pedido', order.status.value, new_status.value)

        if new_status == OrderStatus.CANCELADO:
            _check_no_live_remito(session, order)

        if 'client_id' in fields:
            client_id = parse_int(fields['client_id'], 'client_id')
            if not session.query(Client.id).filter(Client.id == client_id).first():
                raise NotFoundError(f'Cliente con ID {client_id} no encontrado')
            order.client_id = client_id

        for field in DELIVERY_FIELDS:
            if field in fields:
                setattr(order, field, clean_str(fields[field]))

        if 'delivery_date' in fields:
            order.delivery_date = parse_date(fields['delivery_date'], 'delivery_date')

        if 'transport_cost' in fields:
            order.transport_cost = parse_non_negative(fields['transport_cost'], 'transport_cost')
            _recompute_total(order)

        if new_status is not None:
            previous_status = order.status
            order.status = new_status
            logger.info(f"[ORDERS] {order.order_number} status {previous_status.value} -> {new_status.value}")

            if (new_status in AUTO_RESERVE_STATUSES and not order.stock_reserved
                    and _auto_reserve_enabled()):
                _reserve_items(session, order)

            if new_status == OrderStatus.CANCELADO and order.stock_reserved:
                _release_items(session, order)

        session.flush()

    if previous_status is not None:
        notify('order.status_changed', {
            'order_id': order.id,
            'order_number': order.order_number,
            'previous_status': previous_status.value,
            'status': order.status.value,
            'actor_id': actor_id,
        })
    return order


def set_remito_status(session, order: Order, remito_status: OrderRemitoStatus) -> None:
    """Used by the logistics workflow inside its own transaction."""
    if order is not None and order.remito_status != remito_status:
        logger.info(f"[ORDERS] {order.order_number} remito_status {order.remito_status.value} -> {remito_status.value}")
        order.remito_status = remito_status


def delete_order(session, order_id) -> None:
    """Soft delete. Only orders still pendiente_preparacion can be removed."""
    with transaction(session, 'eliminación de pedido'):
        order = get_order(session, order_id, lock=True)
        if order.status != OrderStatus.PENDIENTE_PREPARACION:
            raise ConflictError(
                f'Solo se pueden eliminar pedidos en estado pendiente_preparacion '
                f'(estado actual: {order.status.value})'
            )
        if order.stock_reserved:
            _release_items(session, order)
        order.is_active = False
        logger.info(f"[ORDERS] Deleted {order.order_number}")
