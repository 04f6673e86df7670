"""
Logistics service - outbound remitos, their status machine and trazabilidad.

Each status change appends one automatic trazabilidad entry per product
(closing the entries still open), applies the stock effect of the move and
keeps the order's remito_status in sync:

    en_transito   issue stock, consume and release          remito_despachado
                  the order's reservation
    entregado     items delivered                            remito_entregado
    devuelto      returned stock goes back on hand
    cancelado     nothing issued yet                        sin_remito
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from flask import current_app, has_app_context

from app.database import transaction
from app.exceptions import NotFoundError, ValidationError, ConflictError, InvalidTransitionError, InsufficientStockError
from app.models import (
    Client, Product, Order, OrderRemitoStatus,
    Remito, RemitoItem, RemitoType, RemitoStatus, RemitoItemStatus,
    Trazabilidad, TrazabilidadStage
)
from app.services import stock_service
from app.services.numbering import next_remito_number
from app.services.order_service import get_order, remito_eligible_statuses, set_remito_status
from app.services.quantity_ledger import aggregate_total, line_total, total_quantity, to_decimal, ZERO
from app.utils.parsing import (
    parse_positive, parse_non_negative, parse_int, parse_date, parse_datetime,
    parse_decimal, parse_enum, parse_bool, clean_str
)

logger = logging.getLogger(__name__)

REMITO_TRANSITIONS = {
    RemitoStatus.GENERADO: {RemitoStatus.PREPARANDO, RemitoStatus.CANCELADO},
    RemitoStatus.PREPARANDO: {RemitoStatus.LISTO_DESPACHO, RemitoStatus.CANCELADO},
    RemitoStatus.LISTO_DESPACHO: {RemitoStatus.EN_TRANSITO, RemitoStatus.CANCELADO},
    RemitoStatus.EN_TRANSITO: {RemitoStatus.ENTREGADO, RemitoStatus.DEVUELTO},
    RemitoStatus.ENTREGADO: {RemitoStatus.DEVUELTO},
    RemitoStatus.DEVUELTO: set(),
    RemitoStatus.CANCELADO: set(),
}

STAGE_FOR_STATUS = {
    RemitoStatus.PREPARANDO: TrazabilidadStage.PREPARACION,
    RemitoStatus.LISTO_DESPACHO: TrazabilidadStage.DESPACHO,
    RemitoStatus.EN_TRANSITO: TrazabilidadStage.TRANSITO,
    RemitoStatus.ENTREGADO: TrazabilidadStage.ENTREGA,
    RemitoStatus.DEVUELTO: TrazabilidadStage.DEVUELTO,
    RemitoStatus.CANCELADO: TrazabilidadStage.ALMACENAMIENTO,
}

ORDER_REMITO_STATUS = {
    RemitoStatus.EN_TRANSITO: OrderRemitoStatus.REMITO_DESPACHADO,
    RemitoStatus.ENTREGADO: OrderRemitoStatus.REMITO_ENTREGADO,
    RemitoStatus.CANCELADO: OrderRemitoStatus.SIN_REMITO,
}

REMITO_FIELDS = (
    'delivery_address', 'delivery_city', 'delivery_contact', 'delivery_phone',
    'transport_company', 'tracking_number', 'notes', 'preparation_notes',
    'delivery_notes', 'signature_data', 'delivery_photo'
)

# Optional keys describing the stage entry written on a status change
STAGE_DETAIL_FIELDS = ('location', 'responsible_person', 'vehicle_plate', 'driver_name', 'driver_phone')

TRAZABILIDAD_FIELDS = (
    'location', 'location_details', 'responsible_person', 'quality_notes',
    'vehicle_plate', 'driver_name', 'driver_phone', 'notes'
)


def can_transition(current: RemitoStatus, target: RemitoStatus) -> bool:
    return target in REMITO_TRANSITIONS.get(current, set())


def _now():
    return datetime.now(timezone.utc)


def _config(key, default):
    if not has_app_context():
        return default
    return current_app.config.get(key, default)


def _comparable(start: datetime, end: datetime):
    # SQLite hands back naive datetimes; both sides are UTC
    if start.tzinfo is None and end.tzinfo is not None:
        end = end.astimezone(timezone.utc).replace(tzinfo=None)
    elif start.tzinfo is not None and end.tzinfo is None:
        start = start.astimezone(timezone.utc).replace(tzinfo=None)
    return start, end


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

def get_remito(session, remito_id, lock: bool = False) -> Remito:
    query = session.query(Remito).filter(Remito.id == remito_id, Remito.is_active.is_(True))
    if lock:
        query = query.with_for_update()
    remito = query.first()
    if not remito:
        raise NotFoundError(f'Remito con ID {remito_id} no encontrado')
    return remito


def list_remitos(session, status=None, order_id=None, client_id=None, remito_type=None):
    query = session.query(Remito).filter(Remito.is_active.is_(True))
    if status:
        query = query.filter(Remito.status == parse_enum(RemitoStatus, status, 'status'))
    if order_id:
        query = query.filter(Remito.order_id == order_id)
    if client_id:
        query = query.filter(Remito.client_id == client_id)
    if remito_type:
        query = query.filter(Remito.remito_type == parse_enum(RemitoType, remito_type, 'remito_type'))
    return query.order_by(Remito.id.desc()).all()


def get_trazabilidad(session, remito_id):
    get_remito(session, remito_id)
    return session.query(Trazabilidad).filter(
        Trazabilidad.remito_id == remito_id
    ).order_by(Trazabilidad.stage_start.asc(), Trazabilidad.id.asc()).all()


def get_tracking(session, remito_id) -> dict:
    """
    Tracking view of a remito.

    estimated_delivery is generation_date plus REMITO_ESTIMATED_DELIVERY_DAYS
    (3 by default); there is no carrier lookup.
    """
    remito = get_remito(session, remito_id)
    history = get_trazabilidad(session, remito_id)
    days = _config('REMITO_ESTIMATED_DELIVERY_DAYS', 3)
    return {
        'remito': remito,
        'trazabilidad': history,
        'current_status': remito.status,
        'estimated_delivery': remito.generation_date + timedelta(days=days),
        'last_update': history[-1].stage_start if history else remito.generation_date,
    }


def _active_remito_for_order(session, order_id) -> Optional[Remito]:
    return session.query(Remito).filter(
        Remito.order_id == order_id,
        Remito.is_active.is_(True),
        Remito.status != RemitoStatus.CANCELADO
    ).first()


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

def _check_order_ready(session, order: Order) -> None:
    """Order must be eligible, have stock reserved and no live remito."""
    existing = _active_remito_for_order(session, order.id)
    if existing is not None:
        raise ConflictError(
            f'El pedido {order.order_number} ya tiene el remito {existing.remito_number}',
            payload={'remito_id': existing.id}
        )
    eligible = remito_eligible_statuses()
    if order.status not in eligible:
        raise ConflictError(
            f'El pedido {order.order_number} está en estado {order.status.value} y no admite remito',
            payload={'allowed': [s.value for s in eligible]}
        )
    if not order.stock_reserved:
        raise ValidationError(
            f'El pedido {order.order_number} no tiene el stock reservado',
            payload={'order_id': order.id}
        )


def _order_quantities(order: Order):
    """Ordered and reserved quantity per product of the order."""
    ordered, reserved = {}, {}
    for line in order.items:
        qty = to_decimal(line.quantity)
        ordered[line.product_id] = ordered.get(line.product_id, ZERO) + qty
        if order.stock_reserved and line.stock_reserved:
            reserved[line.product_id] = reserved.get(line.product_id, ZERO) + qty
    return ordered, reserved


def _build_items(session, items: list, order: Order):
    """
    Build remito items for ``order``.

    Every product must be a line of the order and its total cannot exceed the
    ordered quantity. The part not covered by the order's own reservation is
    checked against available stock.
    """
    if not items:
        raise ValidationError('El remito debe tener al menos un ítem')

    order_prices = {}
    for line in order.items:
        order_prices.setdefault(line.product_id, line.unit_price)
    ordered, reserved = _order_quantities(order)

    built = []
    required = {}
    for index, data in enumerate(items):
        label = f'items[{index}]'
        product_id = parse_int(data.get('product_id'), f'{label}.product_id')
        product = session.query(Product).filter(Product.id == product_id).first()
        if not product:
            raise NotFoundError(f'Producto con ID {product_id} no encontrado')
        quantity = parse_positive(data.get('quantity'), f'{label}.quantity')
        default_price = order_prices.get(product_id, product.price)
        unit_price = parse_non_negative(data.get('unit_price'), f'{label}.unit_price', default=default_price)
        required[product_id] = required.get(product_id, ZERO) + quantity
        built.append(RemitoItem(
            product_id=product_id,
            quantity=quantity,
            unit_price=unit_price,
            total_price=line_total(quantity, unit_price),
            status=RemitoItemStatus.PREPARADO,
            prepared_quantity=ZERO,
            delivered_quantity=ZERO,
            returned_quantity=ZERO,
            batch_number=clean_str(data.get('batch_number')),
            serial_numbers=clean_str(data.get('serial_numbers')),
            expiration_date=parse_date(data.get('expiration_date'), f'{label}.expiration_date'),
            notes=clean_str(data.get('notes')),
        ))

    for product_id, qty in required.items():
        if product_id not in ordered:
            raise ValidationError(
                f'El producto {product_id} no forma parte del pedido {order.order_number}',
                payload={'product_id': product_id}
            )
        if qty > ordered[product_id]:
            raise ValidationError(
                f'La cantidad del producto {product_id} ({qty}) supera la del pedido ({ordered[product_id]})',
                payload={'product_id': product_id, 'ordered': str(ordered[product_id])}
            )

        on_hand = stock_service.current_stock(session, product_id)
        if qty > on_hand:
            product = stock_service.get_product(session, product_id)
            raise InsufficientStockError(product.name, qty, on_hand, payload={'product_id': product_id})

        unreserved = qty - min(qty, reserved.get(product_id, ZERO))
        if unreserved > ZERO:
            available = stock_service.available_stock(session, product_id)
            if unreserved > available:
                product = stock_service.get_product(session, product_id)
                raise InsufficientStockError(product.name, unreserved, available, payload={'product_id': product_id})

    return built


def _recompute_totals(remito: Remito) -> None:
    remito.total_products = len(remito.items)
    remito.total_quantity = total_quantity(item.quantity for item in remito.items)
    remito.total_value = aggregate_total((item.quantity, item.unit_price) for item in remito.items)


def _append_stage(session, remito: Remito, stage: TrazabilidadStage, actor_id=None, notes=None, **details):
    """Close the open entries of the remito and open one entry per item at ``stage``."""
    now = _now()
    open_entries = session.query(Trazabilidad).filter(
        Trazabilidad.remito_id == remito.id,
        Trazabilidad.stage_end.is_(None)
    ).all()
    for entry in open_entries:
        entry.stage_end = now

    location = details.pop('location', None) or _config('DEFAULT_WAREHOUSE_LOCATION', 'Depósito Principal')
    for item in remito.items:
        session.add(Trazabilidad(
            remito_id=remito.id,
            product_id=item.product_id,
            stage=stage,
            location=location,
            responsible_user_id=actor_id,
            stage_start=now,
            quality_check=False,
            notes=notes,
            is_automatic=True,
            **details
        ))


def _stage_details(fields: dict) -> dict:
    return {key: clean_str(fields[key]) for key in STAGE_DETAIL_FIELDS if fields.get(key) is not None}


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------

def _insert_remito(session, order: Order, client: Client, items, remito_type, actor_id, notes, defaults: dict):
    remito = Remito(
        remito_number=next_remito_number(session, remito_type),
        order_id=order.id,
        client_id=client.id,
        remito_type=remito_type,
        status=RemitoStatus.GENERADO,
        generation_date=_now(),
        transport_cost=defaults.pop('transport_cost', None) or ZERO,
        notes=notes,
        created_by=actor_id,
        is_active=True,
    )
    for field, value in defaults.items():
        setattr(remito, field, value)
    remito.items = items
    _recompute_totals(remito)
    session.add(remito)
    session.flush()

    _append_stage(
        session, remito, TrazabilidadStage.PREPARACION, actor_id=actor_id,
        notes='Remito generado automáticamente'
    )
    set_remito_status(session, order, OrderRemitoStatus.REMITO_GENERADO)
    session.flush()
    return remito


def create_remito(
    session,
    order_id,
    client_id,
    items: list,
    remito_type='entrega_cliente',
    actor_id: Optional[int] = None,
    **details
) -> Remito:
    """
    Create a remito for an order with explicit items.

    Raises:
        NotFoundError: Order, client or product absent
        ConflictError: Order not eligible or already has a remito
        ValidationError: Stock not reserved, client mismatch, bad items
        InsufficientStockError: Item quantity above stock on hand
    """
    from app.services.notification_service import notify

    unknown = set(details) - set(REMITO_FIELDS) - {'transport_cost'}
    if unknown:
        raise ValidationError(f'Campos desconocidos: {", ".join(sorted(unknown))}')

    with transaction(session, 'creación de remito'):
        order = get_order(session, parse_int(order_id, 'order_id'), lock=True)
        _check_order_ready(session, order)

        client = session.query(Client).filter(Client.id == parse_int(client_id, 'client_id')).first()
        if not client:
            raise NotFoundError(f'Cliente con ID {client_id} no encontrado')
        if client.id != order.client_id:
            raise ValidationError(
                f'El cliente {client.id} no corresponde al pedido {order.order_number}',
                payload={'order_client_id': order.client_id}
            )

        remito_type = parse_enum(RemitoType, remito_type or RemitoType.ENTREGA_CLIENTE, 'remito_type')
        built = _build_items(session, items, order)

        defaults = {field: clean_str(details.get(field)) for field in REMITO_FIELDS if field in details}
        if details.get('transport_cost') is not None:
            defaults['transport_cost'] = parse_non_negative(details['transport_cost'], 'transport_cost')
        notes = defaults.pop('notes', None)

        remito = _insert_remito(session, order, client, built, remito_type, actor_id, notes, defaults)
        logger.info(f"[LOGISTICS] Created {remito.remito_number} for order {order.order_number}")

    notify('remito.created', {
        'remito_id': remito.id,
        'remito_number': remito.remito_number,
        'order_id': remito.order_id,
        'status': remito.status.value,
    })
    return remito


def generate_remito_from_order(session, order_id, actor_id: Optional[int] = None) -> Remito:
    """
    Automatic generation used by external orchestration.

    Items, prices and delivery data are copied from the order; delivery data
    falls back to the client's when the order has none.
    """
    from app.services.notification_service import notify

    with transaction(session, 'generación de remito desde pedido'):
        order = get_order(session, parse_int(order_id, 'order_id'), lock=True)
        _check_order_ready(session, order)

        client = session.query(Client).filter(Client.id == order.client_id).first()
        if not client:
            raise NotFoundError(f'Cliente con ID {order.client_id} no encontrado')

        items = [
            {
                'product_id': line.product_id,
                'quantity': line.quantity,
                'unit_price': line.unit_price,
                'batch_number': line.batch_number,
            }
            for line in order.items
        ]
        built = _build_items(session, items, order)

        defaults = {
            'delivery_address': order.delivery_address or client.address,
            'delivery_city': order.delivery_city or client.city,
            'delivery_contact': order.delivery_contact or client.contact_person or client.name,
            'delivery_phone': order.delivery_phone or client.phone,
            'transport_company': order.transport_company,
            'transport_cost': order.transport_cost,
        }
        notes = f'Remito generado automáticamente desde pedido {order.order_number}'

        remito = _insert_remito(
            session, order, client, built, RemitoType.ENTREGA_CLIENTE, actor_id, notes, defaults
        )
        logger.info(f"[LOGISTICS] Auto-generated {remito.remito_number} for order {order.order_number}")

    notify('remito.auto_generated', {
        'remito_id': remito.id,
        'remito_number': remito.remito_number,
        'order_id': remito.order_id,
        'order_number': order.order_number,
        'status': remito.status.value,
    })
    return remito


# ---------------------------------------------------------------------------
# Status changes
# ---------------------------------------------------------------------------

def _issue_stock(session, remito: Remito, order: Optional[Order]) -> None:
    """
    Issue the prepared quantities on dispatch.

    Only the order's own reservation is consumed. Whatever the order still
    holds afterwards is released, since the order gets no other remito.
    """
    reserved = _order_quantities(order)[1] if order is not None else {}
    shipped = {}
    for item in remito.items:
        shipped[item.product_id] = shipped.get(item.product_id, ZERO) + to_decimal(item.prepared_quantity)

    for product_id in set(shipped) | set(reserved):
        qty = shipped.get(product_id, ZERO)
        held = reserved.get(product_id, ZERO)
        from_reservation = min(qty, held)
        if qty > ZERO:
            stock_service.issue(session, product_id, qty, reserved_quantity=from_reservation)
        if held > from_reservation:
            stock_service.release(session, product_id, held - from_reservation)


def _apply_status_effects(session, remito: Remito, new_status: RemitoStatus, actor_id) -> None:
    now = _now()
    order = session.query(Order).filter(Order.id == remito.order_id).first() if remito.order_id else None

    if new_status == RemitoStatus.PREPARANDO:
        remito.preparation_date = now

    elif new_status == RemitoStatus.LISTO_DESPACHO:
        for item in remito.items:
            item.prepared_quantity = item.quantity
            item.status = RemitoItemStatus.PREPARADO

    elif new_status == RemitoStatus.EN_TRANSITO:
        remito.dispatch_date = now
        _issue_stock(session, remito, order)

    elif new_status == RemitoStatus.ENTREGADO:
        remito.delivery_date = now
        if remito.delivered_by is None:
            remito.delivered_by = actor_id
        for item in remito.items:
            item.delivered_quantity = to_decimal(item.prepared_quantity) - to_decimal(item.returned_quantity)
            item.status = RemitoItemStatus.COMPLETO

    elif new_status == RemitoStatus.DEVUELTO:
        for item in remito.items:
            returned = to_decimal(item.prepared_quantity or item.quantity)
            item.prepared_quantity = returned
            item.delivered_quantity = ZERO
            item.returned_quantity = returned
            item.status = RemitoItemStatus.DEVUELTO
            stock_service.adjust_stock(session, item.product_id, delta=returned)

    if new_status in ORDER_REMITO_STATUS:
        set_remito_status(session, order, ORDER_REMITO_STATUS[new_status])


def update_remito(session, remito_id, fields: dict, actor_id: Optional[int] = None) -> Remito:
    """
    Partial update of a remito.

    A status change is validated against REMITO_TRANSITIONS, appends the
    trazabilidad stage and applies the stock / order side effects. Optional
    STAGE_DETAIL_FIELDS describe the new stage entry.
    """
    from app.services.notification_service import notify

    allowed = set(REMITO_FIELDS) | set(STAGE_DETAIL_FIELDS) | {'status', 'transport_cost', 'delivered_by'}
    unknown = set(fields) - allowed
    if unknown:
        raise ValidationError(f'Campos no actualizables: {", ".join(sorted(unknown))}')
    if 'status' in fields and fields['status'] is None:
        raise ValidationError('El campo status no puede ser nulo', payload={'field': 'status'})

    previous_status = None
    with transaction(session, 'actualización de remito'):
        remito = get_remito(session, remito_id, lock=True)

        new_status = None
        if 'status' in fields:
            new_status = parse_enum(RemitoStatus, fields['status'], 'status')
            if new_status == remito.status:
                new_status = None
            elif not can_transition(remito.status, new_status):
                raise InvalidTransitionError('remito', remito.status.value, new_status.value)

        for field in REMITO_FIELDS:
            if field in fields:
                setattr(remito, field, clean_str(fields[field]))
        if 'transport_cost' in fields:
            remito.transport_cost = parse_non_negative(fields['transport_cost'], 'transport_cost', default=0)
        if 'delivered_by' in fields:
            remito.delivered_by = parse_int(fields['delivered_by'], 'delivered_by', allow_none=True)

        if new_status is not None:
            previous_status = remito.status
            _apply_status_effects(session, remito, new_status, actor_id)
            remito.status = new_status
            _append_stage(
                session, remito, STAGE_FOR_STATUS[new_status], actor_id=actor_id,
                notes=f'Cambio de estado: {previous_status.value} -> {new_status.value}',
                **_stage_details(fields)
            )
            logger.info(f"[LOGISTICS] {remito.remito_number} status {previous_status.value} -> {new_status.value}")

        session.flush()

    if previous_status is not None:
        notify('remito.status_changed', {
            'remito_id': remito.id,
            'remito_number': remito.remito_number,
            'order_id': remito.order_id,
            'previous_status': previous_status.value,
            'status': remito.status.value,
            'actor_id': actor_id,
        })
    return remito


def dispatch_remito(session, remito_id, tracking_number=None, transport_company=None,
                    actor_id: Optional[int] = None, **stage_details) -> Remito:
    fields = {'status': RemitoStatus.EN_TRANSITO.value}
    if tracking_number is not None:
        fields['tracking_number'] = tracking_number
    if transport_company is not None:
        fields['transport_company'] = transport_company
    fields.update(stage_details)
    return update_remito(session, remito_id, fields, actor_id=actor_id)


def deliver_remito(session, remito_id, signature_data=None, delivery_photo=None, delivery_notes=None,
                   actor_id: Optional[int] = None) -> Remito:
    fields = {'status': RemitoStatus.ENTREGADO.value}
    if signature_data is not None:
        fields['signature_data'] = signature_data
    if delivery_photo is not None:
        fields['delivery_photo'] = delivery_photo
    if delivery_notes is not None:
        fields['delivery_notes'] = delivery_notes
    if actor_id is not None:
        fields['delivered_by'] = actor_id
    return update_remito(session, remito_id, fields, actor_id=actor_id)


def delete_remito(session, remito_id) -> None:
    """Soft delete, only while the remito is still generado."""
    with transaction(session, 'eliminación de remito'):
        remito = get_remito(session, remito_id, lock=True)
        if remito.status != RemitoStatus.GENERADO:
            raise ConflictError(
                f'Solo se pueden eliminar remitos en estado generado (estado actual: {remito.status.value})'
            )
        remito.is_active = False
        if remito.order_id:
            order = session.query(Order).filter(Order.id == remito.order_id).first()
            set_remito_status(session, order, OrderRemitoStatus.SIN_REMITO)
        logger.info(f"[LOGISTICS] Deleted {remito.remito_number}")


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------

def _derive_item_status(item: RemitoItem) -> RemitoItemStatus:
    delivered = to_decimal(item.delivered_quantity)
    returned = to_decimal(item.returned_quantity)
    if returned > ZERO and delivered == ZERO:
        return RemitoItemStatus.DEVUELTO
    if delivered >= to_decimal(item.quantity):
        return RemitoItemStatus.COMPLETO
    if delivered > ZERO or returned > ZERO:
        return RemitoItemStatus.PARCIAL
    return RemitoItemStatus.PREPARADO


def update_remito_item(session, remito_id, item_id, fields: dict) -> RemitoItem:
    """Adjust prepared / delivered / returned quantities and item metadata."""
    quantity_fields = ('prepared_quantity', 'delivered_quantity', 'returned_quantity')
    allowed = set(quantity_fields) | {'batch_number', 'serial_numbers', 'expiration_date', 'notes'}
    unknown = set(fields) - allowed
    if unknown:
        raise ValidationError(f'Campos no actualizables: {", ".join(sorted(unknown))}')

    with transaction(session, 'actualización de ítem de remito'):
        remito = get_remito(session, remito_id, lock=True)
        if remito.status in (RemitoStatus.CANCELADO, RemitoStatus.DEVUELTO):
            raise ConflictError(f'El remito {remito.remito_number} está {remito.status.value}')
        item = session.query(RemitoItem).filter(
            RemitoItem.id == item_id, RemitoItem.remito_id == remito.id
        ).first()
        if not item:
            raise NotFoundError(f'Ítem {item_id} no encontrado en el remito {remito.remito_number}')

        values = {
            key: parse_non_negative(fields[key], key) if key in fields else to_decimal(getattr(item, key))
            for key in quantity_fields
        }
        if values['prepared_quantity'] > to_decimal(item.quantity):
            raise ValidationError(
                f'La cantidad preparada ({values["prepared_quantity"]}) supera la del remito ({item.quantity})',
                payload={'field': 'prepared_quantity'}
            )
        if values['delivered_quantity'] + values['returned_quantity'] > values['prepared_quantity']:
            raise ValidationError(
                'La suma de entregado y devuelto no puede superar lo preparado',
                payload={'field': 'delivered_quantity'}
            )

        for key, value in values.items():
            setattr(item, key, value)
        if 'batch_number' in fields:
            item.batch_number = clean_str(fields['batch_number'])
        if 'serial_numbers' in fields:
            item.serial_numbers = clean_str(fields['serial_numbers'])
        if 'expiration_date' in fields:
            item.expiration_date = parse_date(fields['expiration_date'], 'expiration_date')
        if 'notes' in fields:
            item.notes = clean_str(fields['notes'])
        item.status = _derive_item_status(item)
        session.flush()
    return item


# ---------------------------------------------------------------------------
# Manual trazabilidad
# ---------------------------------------------------------------------------

def create_trazabilidad_entry(session, remito_id, data: dict, actor_id: Optional[int] = None) -> Trazabilidad:
    """Record a manual stage (quality control, storage, ...) for one product of the remito."""
    from app.services.notification_service import notify

    with transaction(session, 'registro de trazabilidad'):
        remito = get_remito(session, remito_id)
        product_id = parse_int(data.get('product_id'), 'product_id')
        if product_id not in {item.product_id for item in remito.items}:
            raise ValidationError(
                f'El producto {product_id} no forma parte del remito {remito.remito_number}',
                payload={'product_id': product_id}
            )
        if data.get('stage') is None:
            raise ValidationError('El campo stage es requerido', payload={'field': 'stage'})

        entry = Trazabilidad(
            remito_id=remito.id,
            product_id=product_id,
            stage=parse_enum(TrazabilidadStage, data.get('stage'), 'stage'),
            responsible_user_id=parse_int(data.get('responsible_user_id'), 'responsible_user_id', allow_none=True)
            or actor_id,
            stage_start=parse_datetime(data.get('stage_start'), 'stage_start') or _now(),
            temperature=parse_decimal(data.get('temperature'), 'temperature', allow_none=True),
            humidity=parse_decimal(data.get('humidity'), 'humidity', allow_none=True),
            quality_check=parse_bool(data.get('quality_check', False), 'quality_check'),
            is_automatic=False,
            **{field: clean_str(data.get(field)) for field in TRAZABILIDAD_FIELDS}
        )
        session.add(entry)
        session.flush()
        logger.info(f"[LOGISTICS] Trazabilidad {entry.stage.value} for {remito.remito_number} product={product_id}")

    notify('trazabilidad.created', {
        'remito_id': remito.id,
        'remito_number': remito.remito_number,
        'product_id': entry.product_id,
        'stage': entry.stage.value,
    })
    return entry


def close_trazabilidad_stage(session, entry_id, stage_end=None) -> Trazabilidad:
    with transaction(session, 'cierre de etapa'):
        entry = session.query(Trazabilidad).filter(Trazabilidad.id == entry_id).with_for_update().first()
        if not entry:
            raise NotFoundError(f'Registro de trazabilidad {entry_id} no encontrado')
        if entry.stage_end is not None:
            raise ConflictError(f'La etapa {entry.stage.value} ya está cerrada')
        end = parse_datetime(stage_end, 'stage_end') or _now()
        start, end_cmp = _comparable(entry.stage_start, end)
        if end_cmp < start:
            raise ValidationError('El fin de etapa no puede ser anterior a su inicio', payload={'field': 'stage_end'})
        entry.stage_end = end
    return entry
