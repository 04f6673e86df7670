"""
Document numbering (purchases, orders, remitos, supplier delivery notes).

Formats are consumed by invoicing and by the external sales channel, so
they must not change:

    Purchase              COMP + YY + 4 digits     COMP260001
    Order                 ORD  + YY + 5 digits     ORD2600001
    Remito                REM/TRA/DEV/CON + YY + 4 REM260001
    Supplier delivery     RE-  + YYYY + 4 digits   RE-20260001

Sequences restart every calendar year. The next value is max(existing)+1
so gaps left by deletions are never reused out of order.
"""
import re
from datetime import date
from typing import Optional

from app.models import Purchase, Order, Remito, SupplierDeliveryNote, RemitoType

PURCHASE_PREFIX = 'COMP'
ORDER_PREFIX = 'ORD'
DELIVERY_NOTE_PREFIX = 'RE-'

REMITO_PREFIXES = {
    RemitoType.ENTREGA_CLIENTE: 'REM',
    RemitoType.TRASLADO_INTERNO: 'TRA',
    RemitoType.DEVOLUCION: 'DEV',
    RemitoType.CONSIGNACION: 'CON',
}


def _next_in_sequence(session, column, stem: str, width: int) -> str:
    pattern = re.compile(rf'^{re.escape(stem)}(\d{{{width}}})$')
    highest = 0
    rows = session.query(column).filter(column.like(f'{stem}%')).all()
    for (value,) in rows:
        match = pattern.match(value or '')
        if match:
            highest = max(highest, int(match.group(1)))
    return f'{stem}{str(highest + 1).zfill(width)}'


def _year(today: Optional[date]) -> int:
    return (today or date.today()).year


def next_purchase_number(session, today: Optional[date] = None) -> str:
    stem = f'{PURCHASE_PREFIX}{_year(today) % 100:02d}'
    return _next_in_sequence(session, Purchase.purchase_number, stem, 4)


def next_order_number(session, today: Optional[date] = None) -> str:
    stem = f'{ORDER_PREFIX}{_year(today) % 100:02d}'
    return _next_in_sequence(session, Order.order_number, stem, 5)


def next_remito_number(session, remito_type: RemitoType, today: Optional[date] = None) -> str:
    prefix = REMITO_PREFIXES.get(remito_type, 'CON')
    stem = f'{prefix}{_year(today) % 100:02d}'
    return _next_in_sequence(session, Remito.remito_number, stem, 4)


def next_delivery_note_number(session, today: Optional[date] = None) -> str:
    stem = f'{DELIVERY_NOTE_PREFIX}{_year(today)}'
    return _next_in_sequence(session, SupplierDeliveryNote.delivery_note_number, stem, 4)
