"""Request / response helpers for the JSON blueprints."""
from flask import request, jsonify, g

from app.exceptions import ValidationError


def json_body() -> dict:
    """Parsed JSON object body; anything else is a ValidationError."""
    data = request.get_json(silent=True)
    if data is None:
        if request.data:
            raise ValidationError('El cuerpo de la petición no es JSON válido')
        return {}
    if not isinstance(data, dict):
        raise ValidationError('El cuerpo de la petición debe ser un objeto JSON')
    return data


def success(data=None, message='OK', status=200):
    return jsonify({'status': 'success', 'message': message, 'data': data}), status


def current_actor():
    return g.get('actor_id')
