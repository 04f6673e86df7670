"""Input coercion helpers shared by services and blueprints."""
from datetime import date, datetime
from decimal import Decimal

from app.exceptions import ValidationError
from app.services.quantity_ledger import to_decimal, ZERO


def parse_decimal(value, field, allow_none=False) -> Decimal:
    if value is None or value == '':
        if allow_none:
            return None
        raise ValidationError(f'El campo {field} es requerido', payload={'field': field})
    try:
        return to_decimal(value, field)
    except ValueError:
        raise ValidationError(f'Valor numérico inválido para {field}: {value!r}', payload={'field': field})


def parse_positive(value, field) -> Decimal:
    """Decimal strictly greater than zero."""
    number = parse_decimal(value, field)
    if number <= ZERO:
        raise ValidationError(f'{field} debe ser mayor a 0', payload={'field': field})
    return number


def parse_non_negative(value, field, default=None) -> Decimal:
    if value is None and default is not None:
        return to_decimal(default)
    number = parse_decimal(value, field)
    if number < ZERO:
        raise ValidationError(f'{field} no puede ser negativo', payload={'field': field})
    return number


def parse_int(value, field, allow_none=False):
    if value is None or value == '':
        if allow_none:
            return None
        raise ValidationError(f'El campo {field} es requerido', payload={'field': field})
    if isinstance(value, bool):
        raise ValidationError(f'ID inválido para {field}: {value!r}', payload={'field': field})
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'ID inválido para {field}: {value!r}', payload={'field': field})


def parse_date(value, field, allow_none=True):
    """Accept date, datetime or ISO string (YYYY-MM-DD or full ISO timestamp)."""
    if value is None or value == '':
        if allow_none:
            return None
        raise ValidationError(f'El campo {field} es requerido', payload={'field': field})
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(f'Fecha inválida para {field}: {value!r}', payload={'field': field})


def parse_datetime(value, field, allow_none=True):
    if value is None or value == '':
        if allow_none:
            return None
        raise ValidationError(f'El campo {field} es requerido', payload={'field': field})
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        return datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        raise ValidationError(f'Fecha/hora inválida para {field}: {value!r}', payload={'field': field})


def parse_enum(enum_cls, value, field):
    """Map a raw value (or member) onto enum_cls, raising ValidationError."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ', '.join(m.value for m in enum_cls)
        raise ValidationError(
            f'Valor inválido para {field}: {value!r}. Valores permitidos: {allowed}',
            payload={'field': field}
        )


def parse_bool(value, field):
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ('true', '1', 'yes', 'si', 'sí'):
        return True
    if isinstance(value, str) and value.lower() in ('false', '0', 'no'):
        return False
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise ValidationError(f'Valor booleano inválido para {field}: {value!r}', payload={'field': field})


def clean_str(value):
    """Strip strings; empty becomes None."""
    if value is None:
        return None
    value = str(value).strip()
    return value or None
