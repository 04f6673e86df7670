"""
Supplier delivery note service (reconciler).

A delivery note records goods received from a supplier, optionally against
a purchase. Every mutation runs the same two steps inside its transaction:

1. Propagate: each purchase item's received_quantity is recomputed as the
   sum of the quantities of all linked items of non-cancelled notes
   (never incremented, so edits and deletes cannot double count).
2. Recompute the status of the mutated note from the purchase-wide
   cumulative receipt: complete when every line is fully received,
   partial when there is some progress, pending otherwise.

A note's status is never writable by callers except to cancel it.
"""
import logging
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import func

from app.database import transaction
from app.exceptions import NotFoundError, ValidationError, ConflictError
from app.models import (
    Supplier, Product, Purchase, PurchaseItem, PurchaseStatus,
    SupplierDeliveryNote, SupplierDeliveryNoteItem, DeliveryNoteStatus, SupplierInvoice
)
from app.services.numbering import next_delivery_note_number
from app.services.quantity_ledger import pending_quantity, to_decimal, ZERO
from app.utils.parsing import parse_positive, parse_int, parse_date, parse_bool, parse_enum, clean_str

logger = logging.getLogger(__name__)


def _now():
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

def get_delivery_note(session, note_id) -> SupplierDeliveryNote:
    note = session.query(SupplierDeliveryNote).filter(SupplierDeliveryNote.id == note_id).first()
    if not note:
        raise NotFoundError(f'Remito de proveedor con ID {note_id} no encontrado')
    return note


def list_delivery_notes(session, supplier_id=None, purchase_id=None, status=None):
    query = session.query(SupplierDeliveryNote)
    if supplier_id:
        query = query.filter(SupplierDeliveryNote.supplier_id == supplier_id)
    if purchase_id:
        query = query.filter(SupplierDeliveryNote.purchase_id == purchase_id)
    if status:
        query = query.filter(SupplierDeliveryNote.status == parse_enum(DeliveryNoteStatus, status, 'status'))
    return query.order_by(SupplierDeliveryNote.delivery_date.desc(), SupplierDeliveryNote.id.desc()).all()


def _get_supplier(session, supplier_id) -> Supplier:
    supplier = session.query(Supplier).filter(Supplier.id == supplier_id).first()
    if not supplier:
        raise NotFoundError(f'Proveedor con ID {supplier_id} no encontrado')
    return supplier


def _get_purchase_for_supplier(session, purchase_id, supplier_id) -> Purchase:
    purchase = session.query(Purchase).filter(Purchase.id == purchase_id).first()
    if not purchase:
        raise NotFoundError(f'Compra con ID {purchase_id} no encontrada')
    if purchase.supplier_id != supplier_id:
        raise ValidationError(
            f'La compra {purchase.purchase_number} pertenece a otro proveedor',
            payload={'purchase_supplier_id': purchase.supplier_id, 'supplier_id': supplier_id}
        )
    if purchase.status == PurchaseStatus.CANCELLED:
        raise ConflictError(f'La compra {purchase.purchase_number} está cancelada')
    return purchase


def _get_invoice(session, invoice_id) -> SupplierInvoice:
    invoice = session.query(SupplierInvoice).filter(SupplierInvoice.id == invoice_id).first()
    if not invoice:
        raise NotFoundError(f'Factura con ID {invoice_id} no encontrada')
    return invoice


def _check_invoice_matches(invoice: SupplierInvoice, supplier_id, purchase_id) -> None:
    if invoice.supplier_id != supplier_id:
        raise ValidationError(
            'El proveedor del remito no coincide con el proveedor de la factura',
            payload={'invoice_supplier_id': invoice.supplier_id, 'supplier_id': supplier_id}
        )
    if purchase_id and invoice.purchase_id and invoice.purchase_id != purchase_id:
        raise ValidationError(
            'El remito y la factura pertenecen a órdenes de compra diferentes',
            payload={'invoice_purchase_id': invoice.purchase_id, 'purchase_id': purchase_id}
        )


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------

def _locked_purchase_items(session, purchase_id):
    return session.query(PurchaseItem).filter(
        PurchaseItem.purchase_id == purchase_id
    ).order_by(PurchaseItem.id).with_for_update().all()


def _received_by_item(session, purchase_id) -> dict:
    """{purchase_item_id: cumulative quantity} over the purchase's non-cancelled notes."""
    rows = session.query(
        SupplierDeliveryNoteItem.purchase_item_id,
        func.coalesce(func.sum(SupplierDeliveryNoteItem.quantity), 0)
    ).join(
        SupplierDeliveryNote, SupplierDeliveryNote.id == SupplierDeliveryNoteItem.delivery_note_id
    ).filter(
        SupplierDeliveryNote.purchase_id == purchase_id,
        SupplierDeliveryNote.status != DeliveryNoteStatus.CANCELLED,
        SupplierDeliveryNoteItem.purchase_item_id.isnot(None)
    ).group_by(SupplierDeliveryNoteItem.purchase_item_id).all()
    return {item_id: to_decimal(total) for item_id, total in rows}


def _derive_status(purchase_items, received: dict) -> DeliveryNoteStatus:
    if not purchase_items:
        return DeliveryNoteStatus.PENDING
    totals = [received.get(item.id, ZERO) for item in purchase_items]
    if all(total >= to_decimal(item.quantity) for item, total in zip(purchase_items, totals)):
        return DeliveryNoteStatus.COMPLETE
    if any(total > ZERO for total in totals):
        return DeliveryNoteStatus.PARTIAL
    return DeliveryNoteStatus.PENDING


def _propagate_to_purchase(session, purchase_id):
    """
    Recompute received_quantity of every line of the purchase from the notes.

    Returns (purchase_items, received) for status derivation.
    """
    session.flush()
    items = _locked_purchase_items(session, purchase_id)
    received = _received_by_item(session, purchase_id)

    for item in items:
        total = received.get(item.id, ZERO)
        if total > to_decimal(item.quantity):
            raise ValidationError(
                f'La cantidad recibida ({total}) supera la pedida ({item.quantity}) para el ítem {item.id}',
                payload={'purchase_item_id': item.id}
            )
        item.received_quantity = total

    purchase = session.query(Purchase).filter(Purchase.id == purchase_id).first()
    fully_received = bool(items) and all(received.get(i.id, ZERO) >= to_decimal(i.quantity) for i in items)
    if fully_received and purchase.status in (PurchaseStatus.PENDING, PurchaseStatus.CONFIRMED):
        purchase.status = PurchaseStatus.RECEIVED
        purchase.received_date = _now()
        logger.info(f"[DELIVERY_NOTES] Purchase {purchase.purchase_number} fully received")
    elif not fully_received and purchase.status == PurchaseStatus.RECEIVED:
        purchase.status = PurchaseStatus.CONFIRMED
        purchase.received_date = None
        logger.info(f"[DELIVERY_NOTES] Purchase {purchase.purchase_number} back to confirmed")

    return items, received


def _reconcile(session, note: SupplierDeliveryNote) -> None:
    """Propagate received quantities and refresh the status of ``note``."""
    if note.purchase_id is None:
        if note.status != DeliveryNoteStatus.CANCELLED:
            note.status = DeliveryNoteStatus.PENDING
        session.flush()
        return

    items, received = _propagate_to_purchase(session, note.purchase_id)
    if note.status != DeliveryNoteStatus.CANCELLED:
        note.status = _derive_status(items, received)
    session.flush()


def reconcile_delivery_note(session, note_id) -> SupplierDeliveryNote:
    """Re-run reconciliation for one note. Idempotent."""
    with transaction(session, 'conciliación de remito'):
        note = get_delivery_note(session, note_id)
        _reconcile(session, note)
    return note


# ---------------------------------------------------------------------------
# Item validation
# ---------------------------------------------------------------------------

def _parse_item(session, data: dict, index: int, purchase: Optional[Purchase]) -> dict:
    label = f'items[{index}]'
    quantity = parse_positive(data.get('quantity'), f'{label}.quantity')
    purchase_item_id = parse_int(data.get('purchase_item_id'), f'{label}.purchase_item_id', allow_none=True)
    product_id = parse_int(data.get('product_id'), f'{label}.product_id', allow_none=True)
    material_code = clean_str(data.get('material_code'))

    purchase_item = None
    if purchase_item_id is not None:
        if purchase is None:
            raise ValidationError(
                f'{label}: purchase_item_id requiere que el remito esté asociado a una compra',
                payload={'purchase_item_id': purchase_item_id}
            )
        purchase_item = session.query(PurchaseItem).filter(PurchaseItem.id == purchase_item_id).first()
        if not purchase_item:
            raise NotFoundError(f'Ítem de compra con ID {purchase_item_id} no encontrado')
        if purchase_item.purchase_id != purchase.id:
            raise ValidationError(
                f'{label}: el ítem de compra {purchase_item_id} no pertenece a la compra {purchase.purchase_number}',
                payload={'purchase_item_id': purchase_item_id}
            )
        if product_id is None:
            product_id = purchase_item.product_id
        if material_code is None:
            material_code = purchase_item.material_code

    if product_id is not None and not session.query(Product.id).filter(Product.id == product_id).first():
        raise NotFoundError(f'Producto con ID {product_id} no encontrado')

    return {
        'purchase_item_id': purchase_item_id,
        'product_id': product_id,
        'material_code': material_code,
        'quantity': quantity,
        'invoice_item_id': parse_int(data.get('invoice_item_id'), f'{label}.invoice_item_id', allow_none=True),
        'quality_check': parse_bool(data.get('quality_check', False), f'{label}.quality_check'),
        'quality_notes': clean_str(data.get('quality_notes')),
    }


def _check_against_pending(session, purchase: Purchase, incoming: dict, released: Optional[dict] = None,
                           require_full: Optional[bool] = None) -> None:
    """
    Validate new quantities per purchase item against what is still pending.

    Args:
        incoming: {purchase_item_id: quantity being added}
        released: {purchase_item_id: quantity currently counted that this change replaces}
        require_full: reject when a touched line would stay partially received
            (defaults to "purchase does not allow partial delivery")

    Raises:
        ValidationError: listing every offending item
    """
    if require_full is None:
        require_full = not purchase.allows_partial_delivery
    released = released or {}

    items = {item.id: item for item in _locked_purchase_items(session, purchase.id)}
    received = _received_by_item(session, purchase.id)

    exceeding = []
    incomplete = []
    for item_id, qty in incoming.items():
        item = items[item_id]
        already = received.get(item_id, ZERO) - released.get(item_id, ZERO)
        pending = pending_quantity(item.quantity, already)
        if qty > pending:
            exceeding.append({
                'purchase_item_id': item_id,
                'requested': str(qty),
                'pending': str(pending),
            })
        elif require_full and qty < pending:
            incomplete.append({
                'purchase_item_id': item_id,
                'requested': str(qty),
                'pending': str(pending),
            })

    if exceeding:
        raise ValidationError(
            'Las cantidades superan lo pendiente de recibir en la compra',
            payload={'items': exceeding}
        )
    if incomplete:
        raise ValidationError(
            f'La compra {purchase.purchase_number} no admite entregas parciales: '
            'cada ítem debe recibirse completo',
            payload={'items': incomplete}
        )


def _group_by_purchase_item(parsed_items) -> dict:
    grouped = {}
    for data in parsed_items:
        if data['purchase_item_id'] is not None:
            grouped[data['purchase_item_id']] = grouped.get(data['purchase_item_id'], ZERO) + data['quantity']
    return grouped


def _check_note_covers_purchase(session, purchase: Purchase, incoming: dict) -> None:
    """Full-delivery purchases: one note must settle every line still pending."""
    items = _locked_purchase_items(session, purchase.id)
    received = _received_by_item(session, purchase.id)
    missing = []
    for item in items:
        pending = pending_quantity(item.quantity, received.get(item.id, ZERO))
        if pending > ZERO and incoming.get(item.id, ZERO) < pending:
            missing.append({
                'purchase_item_id': item.id,
                'requested': str(incoming.get(item.id, ZERO)),
                'pending': str(pending),
            })
    if missing:
        raise ValidationError(
            f'La compra {purchase.purchase_number} no admite entregas parciales: '
            'el remito debe completar todos los ítems pendientes',
            payload={'items': missing}
        )


def _editable_note(session, note_id) -> SupplierDeliveryNote:
    note = session.query(SupplierDeliveryNote).filter(
        SupplierDeliveryNote.id == note_id
    ).with_for_update().first()
    if not note:
        raise NotFoundError(f'Remito de proveedor con ID {note_id} no encontrado')
    if note.status == DeliveryNoteStatus.CANCELLED:
        raise ConflictError(f'El remito {note.delivery_note_number} está cancelado')
    return note


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

def create_delivery_note(
    session,
    supplier_id,
    items: list,
    purchase_id=None,
    invoice_id=None,
    delivery_note_number: Optional[str] = None,
    delivery_date: Optional[date] = None,
    notes: Optional[str] = None,
    actor_id: Optional[int] = None,
) -> SupplierDeliveryNote:
    """
    Register a supplier delivery note in one transaction.

    Steps:
    1. Validate supplier, purchase and invoice references
    2. Check quantities against pending (full coverage when partial delivery is off)
    3. Insert note and items
    4. Propagate received quantities to purchase items
    5. Recompute note status

    Raises:
        NotFoundError, ValidationError, ConflictError
    """
    from app.services.notification_service import notify

    with transaction(session, 'creación de remito de proveedor'):
        supplier = _get_supplier(session, parse_int(supplier_id, 'supplier_id'))

        purchase = None
        if purchase_id is not None:
            purchase = _get_purchase_for_supplier(session, parse_int(purchase_id, 'purchase_id'), supplier.id)

        invoice = None
        if invoice_id is not None:
            invoice = _get_invoice(session, parse_int(invoice_id, 'invoice_id'))
            _check_invoice_matches(invoice, supplier.id, purchase.id if purchase else None)
            if invoice.delivery_note_id is not None:
                raise ConflictError(f'La factura {invoice.invoice_number} ya está vinculada a otro remito')

        if not items:
            raise ValidationError('Debe agregar al menos un ítem al remito')

        parsed = [_parse_item(session, data, i, purchase) for i, data in enumerate(items)]

        if purchase is not None:
            incoming = _group_by_purchase_item(parsed)
            _check_against_pending(session, purchase, incoming, require_full=False)
            if not purchase.allows_partial_delivery:
                _check_note_covers_purchase(session, purchase, incoming)

        number = clean_str(delivery_note_number) or next_delivery_note_number(session)
        if session.query(SupplierDeliveryNote.id).filter(
            SupplierDeliveryNote.delivery_note_number == number
        ).first():
            raise ConflictError(f'Ya existe un remito con número {number}')

        note = SupplierDeliveryNote(
            delivery_note_number=number,
            supplier_id=supplier.id,
            purchase_id=purchase.id if purchase else None,
            invoice_id=invoice.id if invoice else None,
            delivery_date=parse_date(delivery_date, 'delivery_date') or date.today(),
            received_date=_now(),
            status=DeliveryNoteStatus.PENDING,
            matches_invoice=invoice is not None,
            notes=clean_str(notes),
            received_by=actor_id,
        )
        note.items = [SupplierDeliveryNoteItem(**data) for data in parsed]
        session.add(note)
        session.flush()

        if invoice is not None:
            invoice.delivery_note_id = note.id

        _reconcile(session, note)

        logger.info(
            f"[DELIVERY_NOTES] Created {note.delivery_note_number} supplier={supplier.id} "
            f"purchase={note.purchase_id} items={len(parsed)} status={note.status.value}"
        )

    notify('delivery_note.created', {
        'delivery_note_id': note.id,
        'delivery_note_number': note.delivery_note_number,
        'purchase_id': note.purchase_id,
        'status': note.status.value,
    })
    return note


def add_delivery_note_item(session, note_id, data: dict) -> SupplierDeliveryNoteItem:
    with transaction(session, 'alta de ítem de remito'):
        note = _editable_note(session, note_id)
        purchase = note.purchase
        parsed = _parse_item(session, data, len(note.items), purchase)
        if purchase is not None:
            _check_against_pending(session, purchase, _group_by_purchase_item([parsed]))
        item = SupplierDeliveryNoteItem(**parsed)
        note.items.append(item)
        _reconcile(session, note)
    return item


def update_delivery_note_item(session, note_id, item_id, fields: dict) -> SupplierDeliveryNoteItem:
    """Update quantity, link or quality data of one item and reconcile."""
    with transaction(session, 'actualización de ítem de remito'):
        note = _editable_note(session, note_id)
        item = session.query(SupplierDeliveryNoteItem).filter(
            SupplierDeliveryNoteItem.id == item_id,
            SupplierDeliveryNoteItem.delivery_note_id == note.id
        ).first()
        if not item:
            raise NotFoundError(f'Ítem {item_id} no encontrado en el remito {note.delivery_note_number}')

        merged = {
            'purchase_item_id': item.purchase_item_id,
            'product_id': item.product_id,
            'material_code': item.material_code,
            'quantity': item.quantity,
            'invoice_item_id': item.invoice_item_id,
            'quality_check': item.quality_check,
            'quality_notes': item.quality_notes,
        }
        merged.update(fields)
        parsed = _parse_item(session, merged, 0, note.purchase)

        if note.purchase is not None and parsed['purchase_item_id'] is not None:
            released = {item.purchase_item_id: to_decimal(item.quantity)} if item.purchase_item_id else {}
            _check_against_pending(
                session, note.purchase,
                {parsed['purchase_item_id']: parsed['quantity']},
                released=released
            )

        for key, value in parsed.items():
            setattr(item, key, value)
        _reconcile(session, note)
    return item


def delete_delivery_note_item(session, note_id, item_id) -> SupplierDeliveryNote:
    with transaction(session, 'eliminación de ítem de remito'):
        note = _editable_note(session, note_id)
        item = session.query(SupplierDeliveryNoteItem).filter(
            SupplierDeliveryNoteItem.id == item_id,
            SupplierDeliveryNoteItem.delivery_note_id == note.id
        ).first()
        if not item:
            raise NotFoundError(f'Ítem {item_id} no encontrado en el remito {note.delivery_note_number}')
        note.items.remove(item)
        _reconcile(session, note)
    return note


def update_delivery_note(session, note_id, fields: dict) -> SupplierDeliveryNote:
    """
    Update header fields. The only writable status is ``cancelled``; every
    other status is derived from the items.
    """
    allowed = {'delivery_note_number', 'delivery_date', 'notes', 'purchase_id', 'status'}
    unknown = set(fields) - allowed
    if unknown:
        raise ValidationError(f'Campos no actualizables: {", ".join(sorted(unknown))}')

    with transaction(session, 'actualización de remito de proveedor'):
        note = session.query(SupplierDeliveryNote).filter(
            SupplierDeliveryNote.id == note_id
        ).with_for_update().first()
        if not note:
            raise NotFoundError(f'Remito de proveedor con ID {note_id} no encontrado')

        if 'status' in fields:
            status = parse_enum(DeliveryNoteStatus, fields['status'], 'status')
            if status != DeliveryNoteStatus.CANCELLED:
                raise ValidationError(
                    'El estado del remito se calcula a partir de sus ítems; solo puede cancelarse',
                    payload={'field': 'status'}
                )

        if note.status == DeliveryNoteStatus.CANCELLED and set(fields) - {'notes', 'status'}:
            raise ConflictError(f'El remito {note.delivery_note_number} está cancelado')

        if 'delivery_note_number' in fields:
            number = clean_str(fields['delivery_note_number'])
            if not number:
                raise ValidationError('El número de remito no puede estar vacío', payload={'field': 'delivery_note_number'})
            if number != note.delivery_note_number and session.query(SupplierDeliveryNote.id).filter(
                SupplierDeliveryNote.delivery_note_number == number
            ).first():
                raise ConflictError(f'Ya existe un remito con número {number}')
            note.delivery_note_number = number

        if 'delivery_date' in fields:
            note.delivery_date = parse_date(fields['delivery_date'], 'delivery_date', allow_none=False)

        if 'notes' in fields:
            note.notes = clean_str(fields['notes'])

        previous_purchase_id = note.purchase_id
        if 'purchase_id' in fields:
            new_purchase_id = parse_int(fields['purchase_id'], 'purchase_id', allow_none=True)
            if new_purchase_id != note.purchase_id:
                if any(item.purchase_item_id for item in note.items):
                    raise ConflictError('No se puede cambiar la compra de un remito con ítems vinculados')
                if new_purchase_id is not None:
                    purchase = _get_purchase_for_supplier(session, new_purchase_id, note.supplier_id)
                    if note.invoice is not None:
                        _check_invoice_matches(note.invoice, note.supplier_id, purchase.id)
                note.purchase_id = new_purchase_id

        if fields.get('status') is not None and note.status != DeliveryNoteStatus.CANCELLED:
            note.status = DeliveryNoteStatus.CANCELLED
            logger.info(f"[DELIVERY_NOTES] Cancelled {note.delivery_note_number}")

        session.flush()
        if previous_purchase_id and previous_purchase_id != note.purchase_id:
            _propagate_to_purchase(session, previous_purchase_id)
        _reconcile(session, note)
    return note


def delete_delivery_note(session, note_id) -> None:
    """Delete a note and its items, then recompute the purchase receipts."""
    with transaction(session, 'eliminación de remito de proveedor'):
        note = session.query(SupplierDeliveryNote).filter(
            SupplierDeliveryNote.id == note_id
        ).with_for_update().first()
        if not note:
            raise NotFoundError(f'Remito de proveedor con ID {note_id} no encontrado')

        linked_invoices = session.query(func.count(SupplierInvoice.id)).filter(
            SupplierInvoice.delivery_note_id == note.id
        ).scalar() or 0
        if note.invoice_id is not None or linked_invoices:
            raise ConflictError(
                f'No se puede eliminar el remito {note.delivery_note_number}: tiene una factura vinculada',
                payload={'invoice_id': note.invoice_id}
            )

        purchase_id = note.purchase_id
        number = note.delivery_note_number
        session.delete(note)
        session.flush()
        if purchase_id is not None:
            _propagate_to_purchase(session, purchase_id)
        logger.info(f"[DELIVERY_NOTES] Deleted {number}")


def link_invoice(session, note_id, invoice_id) -> SupplierDeliveryNote:
    """Associate an invoice with the note; supplier and purchase must match."""
    with transaction(session, 'vinculación de factura'):
        note = get_delivery_note(session, note_id)
        invoice = _get_invoice(session, invoice_id)
        _check_invoice_matches(invoice, note.supplier_id, note.purchase_id)
        if invoice.delivery_note_id is not None and invoice.delivery_note_id != note.id:
            raise ConflictError(f'La factura {invoice.invoice_number} ya está vinculada a otro remito')

        note.invoice_id = invoice.id
        note.matches_invoice = True
        invoice.delivery_note_id = note.id
        session.flush()
        logger.info(f"[DELIVERY_NOTES] Linked invoice {invoice.invoice_number} to {note.delivery_note_number}")
    return note
