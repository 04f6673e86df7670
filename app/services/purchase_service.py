"""
Purchase service - supplier purchase orders and their line items.

Totals always come from the quantity ledger. received_quantity on purchase
items is owned by the delivery note reconciler and is never written here.
"""
import logging
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import func

from app.database import transaction
from app.exceptions import NotFoundError, ValidationError, ConflictError, InvalidTransitionError
from app.models import (
    Supplier, Product, Purchase, PurchaseItem, PurchaseStatus, DebtType,
    SupplierDeliveryNote, SupplierDeliveryNoteItem, SupplierInvoice
)
from app.services.numbering import next_purchase_number
from app.services.quantity_ledger import aggregate_total, line_total, quantize_money, ZERO
from app.utils.parsing import (
    parse_positive, parse_non_negative, parse_int, parse_date, parse_enum,
    parse_bool, parse_decimal, clean_str
)

logger = logging.getLogger(__name__)

PURCHASE_TRANSITIONS = {
    PurchaseStatus.PENDING: {PurchaseStatus.CONFIRMED, PurchaseStatus.RECEIVED, PurchaseStatus.CANCELLED},
    PurchaseStatus.CONFIRMED: {PurchaseStatus.RECEIVED, PurchaseStatus.CANCELLED},
    PurchaseStatus.RECEIVED: {PurchaseStatus.CONFIRMED},
    PurchaseStatus.CANCELLED: set(),
}

# Header fields accepted by update_purchase; value is True when the column is nullable
UPDATABLE_FIELDS = {
    'supplier_id': False,
    'status': False,
    'debt_type': False,
    'allows_partial_delivery': False,
    'purchase_date': True,
    'notes': True,
    'commitment_amount': False,
    'debt_amount': False,
}


def _now():
    return datetime.now(timezone.utc)


def get_purchase(session, purchase_id) -> Purchase:
    purchase = session.query(Purchase).filter(Purchase.id == purchase_id).first()
    if not purchase:
        raise NotFoundError(f'Compra con ID {purchase_id} no encontrada')
    return purchase


def list_purchases(session, status=None, supplier_id=None):
    query = session.query(Purchase)
    if status:
        query = query.filter(Purchase.status == parse_enum(PurchaseStatus, status, 'status'))
    if supplier_id:
        query = query.filter(Purchase.supplier_id == supplier_id)
    return query.order_by(Purchase.id.desc()).all()


def _get_supplier(session, supplier_id) -> Supplier:
    supplier = session.query(Supplier).filter(Supplier.id == supplier_id).first()
    if not supplier:
        raise NotFoundError(f'Proveedor con ID {supplier_id} no encontrado')
    return supplier


def _build_item(session, data: dict, index: int) -> PurchaseItem:
    label = f'items[{index}]'
    product_id = parse_int(data.get('product_id'), f'{label}.product_id', allow_none=True)
    if product_id is not None:
        if not session.query(Product.id).filter(Product.id == product_id).first():
            raise NotFoundError(f'Producto con ID {product_id} no encontrado')

    material_code = clean_str(data.get('material_code'))
    if product_id is None and material_code is None:
        raise ValidationError(f'{label}: debe indicar product_id o material_code')

    quantity = parse_positive(data.get('quantity'), f'{label}.quantity')
    unit_price = parse_non_negative(data.get('unit_price'), f'{label}.unit_price')
    unit_cost = data.get('unit_cost')

    return PurchaseItem(
        product_id=product_id,
        material_code=material_code,
        quantity=quantity,
        received_quantity=ZERO,
        unit_price=unit_price,
        unit_cost=parse_non_negative(unit_cost, f'{label}.unit_cost') if unit_cost is not None else None,
        total_price=line_total(quantity, unit_price),
    )


def _apply_debt_split(purchase: Purchase) -> None:
    total = quantize_money(purchase.total_amount)
    if purchase.debt_type == DebtType.DEUDA_DIRECTA:
        purchase.debt_amount = total
        purchase.commitment_amount = ZERO
    else:
        purchase.commitment_amount = total
        purchase.debt_amount = ZERO


def _recompute_totals(purchase: Purchase) -> None:
    """Recalculate line totals, purchase total and the debt/commitment split."""
    for item in purchase.items:
        item.total_price = line_total(item.quantity, item.unit_price)
    purchase.total_amount = aggregate_total((item.quantity, item.unit_price) for item in purchase.items)
    _apply_debt_split(purchase)


def _has_references(session, purchase_id) -> dict:
    notes = session.query(func.count(SupplierDeliveryNote.id)).filter(
        SupplierDeliveryNote.purchase_id == purchase_id
    ).scalar() or 0
    invoices = session.query(func.count(SupplierInvoice.id)).filter(
        SupplierInvoice.purchase_id == purchase_id
    ).scalar() or 0
    return {'delivery_notes': notes, 'invoices': invoices}


def create_purchase(
    session,
    supplier_id,
    items: list,
    debt_type='compromiso',
    allows_partial_delivery: bool = True,
    purchase_date: Optional[date] = None,
    notes: Optional[str] = None,
    actor_id: Optional[int] = None,
) -> Purchase:
    """
    Create a purchase order with its line items.

    Steps:
    1. Validate supplier and items
    2. Generate COMPYYNNNN number
    3. Compute totals and debt split
    4. Commit

    Raises:
        NotFoundError: Supplier or product absent
        ValidationError: Invalid items or debt type
    """
    with transaction(session, 'creación de compra'):
        supplier = _get_supplier(session, parse_int(supplier_id, 'supplier_id'))

        if not items:
            raise ValidationError('Debe agregar al menos un ítem a la compra')

        built = [_build_item(session, data, i) for i, data in enumerate(items)]

        purchase = Purchase(
            purchase_number=next_purchase_number(session),
            supplier_id=supplier.id,
            status=PurchaseStatus.PENDING,
            debt_type=parse_enum(DebtType, debt_type or DebtType.COMPROMISO, 'debt_type'),
            allows_partial_delivery=parse_bool(allows_partial_delivery, 'allows_partial_delivery'),
            purchase_date=parse_date(purchase_date, 'purchase_date') or date.today(),
            notes=clean_str(notes),
            created_by=actor_id,
        )
        purchase.items = built
        _recompute_totals(purchase)

        session.add(purchase)
        session.flush()

        logger.info(
            f"[PURCHASES] Created {purchase.purchase_number} supplier={supplier.id} "
            f"items={len(built)} total={purchase.total_amount}"
        )

    return purchase


def update_purchase(session, purchase_id, fields: dict, actor_id: Optional[int] = None) -> Purchase:
    """
    Partial update of a purchase header.

    Keys absent from ``fields`` are untouched; an explicit None clears a
    nullable field and is rejected for the rest.
    """
    unknown = set(fields) - set(UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError(f'Campos no actualizables: {", ".join(sorted(unknown))}')

    for key, nullable in UPDATABLE_FIELDS.items():
        if key in fields and fields[key] is None and not nullable:
            raise ValidationError(f'El campo {key} no puede ser nulo', payload={'field': key})

    with transaction(session, 'actualización de compra'):
        purchase = session.query(Purchase).filter(Purchase.id == purchase_id).with_for_update().first()
        if not purchase:
            raise NotFoundError(f'Compra con ID {purchase_id} no encontrada')

        if 'supplier_id' in fields:
            new_supplier = _get_supplier(session, parse_int(fields['supplier_id'], 'supplier_id'))
            if new_supplier.id != purchase.supplier_id:
                refs = _has_references(session, purchase.id)
                if refs['delivery_notes'] or refs['invoices']:
                    raise ConflictError(
                        'No se puede cambiar el proveedor de una compra con remitos o facturas asociados',
                        payload=refs
                    )
                purchase.supplier_id = new_supplier.id

        if 'allows_partial_delivery' in fields:
            purchase.allows_partial_delivery = parse_bool(fields['allows_partial_delivery'], 'allows_partial_delivery')

        if 'purchase_date' in fields:
            purchase.purchase_date = parse_date(fields['purchase_date'], 'purchase_date')

        if 'notes' in fields:
            purchase.notes = clean_str(fields['notes'])

        if 'status' in fields:
            new_status = parse_enum(PurchaseStatus, fields['status'], 'status')
            if new_status != purchase.status:
                if new_status not in PURCHASE_TRANSITIONS.get(purchase.status, set()):
                    raise InvalidTransitionError('compra', purchase.status.value, new_status.value)
                if new_status == PurchaseStatus.CONFIRMED and purchase.confirmed_at is None:
                    purchase.confirmed_at = _now()
                if new_status == PurchaseStatus.RECEIVED and purchase.received_date is None:
                    purchase.received_date = _now()
                logger.info(f"[PURCHASES] {purchase.purchase_number} status {purchase.status.value} -> {new_status.value}")
                purchase.status = new_status

        if 'debt_type' in fields:
            purchase.debt_type = parse_enum(DebtType, fields['debt_type'], 'debt_type')
            _apply_debt_split(purchase)

        if 'commitment_amount' in fields or 'debt_amount' in fields:
            commitment = quantize_money(parse_non_negative(
                fields.get('commitment_amount', purchase.commitment_amount), 'commitment_amount'))
            debt = quantize_money(parse_non_negative(
                fields.get('debt_amount', purchase.debt_amount), 'debt_amount'))
            total = quantize_money(purchase.total_amount)
            if commitment + debt != total:
                raise ValidationError(
                    f'La suma de deuda ({debt}) y compromiso ({commitment}) debe ser igual al total ({total})',
                    payload={'total_amount': str(total)}
                )
            purchase.commitment_amount = commitment
            purchase.debt_amount = debt

        session.flush()

    return purchase


def delete_purchase(session, purchase_id) -> None:
    """Delete a purchase and its items. Refused while notes or invoices reference it."""
    with transaction(session, 'eliminación de compra'):
        purchase = get_purchase(session, purchase_id)
        refs = _has_references(session, purchase.id)
        if refs['delivery_notes'] or refs['invoices']:
            raise ConflictError(
                f'No se puede eliminar la compra {purchase.purchase_number}: '
                f'tiene {refs["delivery_notes"]} remito(s) y {refs["invoices"]} factura(s) asociados',
                payload=refs
            )
        number = purchase.purchase_number
        session.delete(purchase)
        logger.info(f"[PURCHASES] Deleted {number}")


# ---------------------------------------------------------------------------
# Line items
# ---------------------------------------------------------------------------

def _get_item(session, purchase_id, item_id) -> PurchaseItem:
    item = session.query(PurchaseItem).filter(
        PurchaseItem.id == item_id,
        PurchaseItem.purchase_id == purchase_id
    ).with_for_update().first()
    if not item:
        raise NotFoundError(f'Ítem {item_id} no encontrado en la compra {purchase_id}')
    return item


def add_purchase_item(session, purchase_id, data: dict) -> PurchaseItem:
    with transaction(session, 'alta de ítem de compra'):
        purchase = get_purchase(session, purchase_id)
        if purchase.status in (PurchaseStatus.CANCELLED, PurchaseStatus.RECEIVED):
            raise ConflictError(f'No se pueden agregar ítems a una compra en estado {purchase.status.value}')
        item = _build_item(session, data, len(purchase.items))
        purchase.items.append(item)
        _recompute_totals(purchase)
        session.flush()
    return item


def update_purchase_item(session, purchase_id, item_id, fields: dict) -> PurchaseItem:
    """Update quantity / price / product of a line. received_quantity is read-only."""
    if 'received_quantity' in fields:
        raise ValidationError('received_quantity se calcula a partir de los remitos y no puede modificarse')

    with transaction(session, 'actualización de ítem de compra'):
        purchase = get_purchase(session, purchase_id)
        item = _get_item(session, purchase.id, item_id)

        if 'product_id' in fields:
            product_id = parse_int(fields['product_id'], 'product_id', allow_none=True)
            if product_id is not None and not session.query(Product.id).filter(Product.id == product_id).first():
                raise NotFoundError(f'Producto con ID {product_id} no encontrado')
            item.product_id = product_id
        if 'material_code' in fields:
            item.material_code = clean_str(fields['material_code'])
        if 'quantity' in fields:
            quantity = parse_positive(fields['quantity'], 'quantity')
            if quantity < item.received_quantity:
                raise ValidationError(
                    f'La cantidad ({quantity}) no puede ser menor a la ya recibida ({item.received_quantity})',
                    payload={'received_quantity': str(item.received_quantity)}
                )
            item.quantity = quantity
        if 'unit_price' in fields:
            item.unit_price = parse_non_negative(fields['unit_price'], 'unit_price')
        if 'unit_cost' in fields:
            item.unit_cost = parse_decimal(fields['unit_cost'], 'unit_cost', allow_none=True)

        _recompute_totals(purchase)
        session.flush()
    return item


def delete_purchase_item(session, purchase_id, item_id) -> None:
    with transaction(session, 'eliminación de ítem de compra'):
        purchase = get_purchase(session, purchase_id)
        item = _get_item(session, purchase.id, item_id)
        linked = session.query(func.count(SupplierDeliveryNoteItem.id)).filter(
            SupplierDeliveryNoteItem.purchase_item_id == item.id
        ).scalar() or 0
        if linked:
            raise ConflictError(
                f'El ítem {item.id} tiene {linked} ítem(s) de remito asociados y no puede eliminarse',
                payload={'delivery_note_items': linked}
            )
        purchase.items.remove(item)
        _recompute_totals(purchase)
        session.flush()
