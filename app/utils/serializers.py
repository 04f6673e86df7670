"""JSON serialization of models for the API blueprints."""
import enum
from datetime import date, datetime
from decimal import Decimal


def _value(value):
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def columns_dict(obj, exclude=()):
    """Every mapped column of ``obj`` with JSON-friendly values."""
    return {
        column.key: _value(getattr(obj, column.key))
        for column in obj.__table__.columns
        if column.key not in exclude
    }


def purchase_item_to_dict(item):
    data = columns_dict(item)
    data['pending_quantity'] = _value(item.pending_quantity)
    return data


def purchase_to_dict(purchase, include_items=True):
    data = columns_dict(purchase)
    if include_items:
        data['items'] = [purchase_item_to_dict(item) for item in purchase.items]
    return data


def delivery_note_to_dict(note, include_items=True):
    data = columns_dict(note)
    if include_items:
        data['items'] = [columns_dict(item) for item in note.items]
    return data


def order_to_dict(order, include_items=True):
    data = columns_dict(order)
    if include_items:
        data['items'] = [columns_dict(item) for item in order.items]
    return data


def trazabilidad_to_dict(entry):
    data = columns_dict(entry)
    data['duration_minutes'] = entry.duration_minutes
    return data


def remito_to_dict(remito, include_items=True):
    data = columns_dict(remito)
    if include_items:
        data['items'] = [columns_dict(item) for item in remito.items]
    return data


def tracking_to_dict(tracking):
    return {
        'remito': remito_to_dict(tracking['remito']),
        'trazabilidad': [trazabilidad_to_dict(entry) for entry in tracking['trazabilidad']],
        'current_status': _value(tracking['current_status']),
        'estimated_delivery': _value(tracking['estimated_delivery']),
        'last_update': _value(tracking['last_update']),
    }
