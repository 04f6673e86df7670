"""Purchases blueprint - supplier purchase orders (JSON API)."""
from flask import Blueprint, request
from app.database import get_session
from app.services import purchase_service
from app.utils.http import json_body, success, current_actor
from app.utils.serializers import purchase_to_dict, purchase_item_to_dict

purchases_bp = Blueprint('purchases', __name__, url_prefix='/api/purchases')


@purchases_bp.route('', methods=['GET'])
def list_purchases():
    """List purchases, optionally filtered by status and supplier."""
    session = get_session()
    purchases = purchase_service.list_purchases(
        session,
        status=request.args.get('status'),
        supplier_id=request.args.get('supplier_id', type=int)
    )
    return success([purchase_to_dict(p, include_items=False) for p in purchases])


@purchases_bp.route('', methods=['POST'])
def create_purchase():
    session = get_session()
    data = json_body()
    purchase = purchase_service.create_purchase(
        session,
        supplier_id=data.get('supplier_id'),
        items=data.get('items') or [],
        debt_type=data.get('debt_type') or 'compromiso',
        allows_partial_delivery=data.get('allows_partial_delivery', True),
        purchase_date=data.get('purchase_date'),
        notes=data.get('notes'),
        actor_id=current_actor()
    )
    return success(purchase_to_dict(purchase), 'Compra creada exitosamente', 201)


@purchases_bp.route('/<int:purchase_id>', methods=['GET'])
def get_purchase(purchase_id):
    purchase = purchase_service.get_purchase(get_session(), purchase_id)
    return success(purchase_to_dict(purchase))


@purchases_bp.route('/<int:purchase_id>', methods=['PATCH', 'PUT'])
def update_purchase(purchase_id):
    purchase = purchase_service.update_purchase(get_session(), purchase_id, json_body(), actor_id=current_actor())
    return success(purchase_to_dict(purchase), 'Compra actualizada exitosamente')


@purchases_bp.route('/<int:purchase_id>', methods=['DELETE'])
def delete_purchase(purchase_id):
    purchase_service.delete_purchase(get_session(), purchase_id)
    return success({'id': purchase_id}, 'Compra eliminada exitosamente')


@purchases_bp.route('/<int:purchase_id>/items', methods=['POST'])
def add_item(purchase_id):
    item = purchase_service.add_purchase_item(get_session(), purchase_id, json_body())
    return success(purchase_item_to_dict(item), 'Ítem agregado', 201)


@purchases_bp.route('/<int:purchase_id>/items/<int:item_id>', methods=['PATCH', 'PUT'])
def update_item(purchase_id, item_id):
    item = purchase_service.update_purchase_item(get_session(), purchase_id, item_id, json_body())
    return success(purchase_item_to_dict(item), 'Ítem actualizado')


@purchases_bp.route('/<int:purchase_id>/items/<int:item_id>', methods=['DELETE'])
def delete_item(purchase_id, item_id):
    purchase_service.delete_purchase_item(get_session(), purchase_id, item_id)
    return success({'id': item_id}, 'Ítem eliminado')
