"""Orders blueprint (JSON API)."""
from flask import Blueprint, request
from app.database import get_session
from app.services import order_service
from app.utils.http import json_body, success, current_actor
from app.utils.serializers import order_to_dict

orders_bp = Blueprint('orders', __name__, url_prefix='/api/orders')


@orders_bp.route('', methods=['GET'])
def list_orders():
    orders = order_service.list_orders(
        get_session(),
        status=request.args.get('status'),
        client_id=request.args.get('client_id', type=int),
        remito_status=request.args.get('remito_status'),
        stock_reserved=request.args.get('stock_reserved')
    )
    return success([order_to_dict(o, include_items=False) for o in orders])


@orders_bp.route('/ready-for-remito', methods=['GET'])
def ready_for_remito():
    orders = order_service.orders_ready_for_remito(get_session())
    return success([order_to_dict(o) for o in orders])


@orders_bp.route('', methods=['POST'])
def create_order():
    """
    Create an order.

    Returns 201 for a new order and 200 when the external order already
    existed (safe retry from the sales channel).
    """
    data = dict(json_body())
    client_id = data.pop('client_id', None)
    items = data.pop('items', None) or []
    order, created = order_service.create_order(
        get_session(),
        client_id=client_id,
        items=items,
        external_order_id=data.pop('external_order_id', None),
        external_order_number=data.pop('external_order_number', None),
        status=data.pop('status', None) or 'pendiente_preparacion',
        transport_cost=data.pop('transport_cost', 0),
        actor_id=current_actor(),
        **data
    )
    if created:
        return success(order_to_dict(order), 'Pedido creado exitosamente', 201)
    return success(order_to_dict(order), 'El pedido ya existía', 200)


@orders_bp.route('/<int:order_id>', methods=['GET'])
def get_order(order_id):
    return success(order_to_dict(order_service.get_order(get_session(), order_id)))


@orders_bp.route('/<int:order_id>', methods=['PATCH', 'PUT'])
def update_order(order_id):
    order = order_service.update_order(get_session(), order_id, json_body(), actor_id=current_actor())
    return success(order_to_dict(order), 'Pedido actualizado exitosamente')


@orders_bp.route('/<int:order_id>', methods=['DELETE'])
def delete_order(order_id):
    order_service.delete_order(get_session(), order_id)
    return success({'id': order_id}, 'Pedido eliminado exitosamente')


@orders_bp.route('/<int:order_id>/reserve-stock', methods=['POST'])
def reserve_stock(order_id):
    order = order_service.reserve_stock(get_session(), order_id)
    return success(order_to_dict(order), 'Stock reservado exitosamente')
