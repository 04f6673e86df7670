"""Logistics blueprint - outbound remitos and trazabilidad (JSON API)."""
from flask import Blueprint, request
from app.database import get_session
from app.services import logistics_service
from app.utils.http import json_body, success, current_actor
from app.utils.serializers import remito_to_dict, trazabilidad_to_dict, tracking_to_dict, columns_dict

logistics_bp = Blueprint('logistics', __name__, url_prefix='/api/logistics')


@logistics_bp.route('/remitos', methods=['GET'])
def list_remitos():
    remitos = logistics_service.list_remitos(
        get_session(),
        status=request.args.get('status'),
        order_id=request.args.get('order_id', type=int),
        client_id=request.args.get('client_id', type=int),
        remito_type=request.args.get('remito_type')
    )
    return success([remito_to_dict(r, include_items=False) for r in remitos])


@logistics_bp.route('/remitos', methods=['POST'])
def create_remito():
    data = dict(json_body())
    remito = logistics_service.create_remito(
        get_session(),
        order_id=data.pop('order_id', None),
        client_id=data.pop('client_id', None),
        items=data.pop('items', None) or [],
        remito_type=data.pop('remito_type', None) or 'entrega_cliente',
        actor_id=current_actor(),
        **data
    )
    return success(remito_to_dict(remito), 'Remito creado exitosamente', 201)


@logistics_bp.route('/orders/<int:order_id>/remito', methods=['POST'])
def generate_from_order(order_id):
    """Generate the remito of an order automatically."""
    remito = logistics_service.generate_remito_from_order(get_session(), order_id, actor_id=current_actor())
    return success(remito_to_dict(remito), 'Remito generado exitosamente', 201)


@logistics_bp.route('/remitos/<int:remito_id>', methods=['GET'])
def get_remito(remito_id):
    return success(remito_to_dict(logistics_service.get_remito(get_session(), remito_id)))


@logistics_bp.route('/remitos/<int:remito_id>', methods=['PATCH', 'PUT'])
def update_remito(remito_id):
    remito = logistics_service.update_remito(get_session(), remito_id, json_body(), actor_id=current_actor())
    return success(remito_to_dict(remito), 'Remito actualizado exitosamente')


@logistics_bp.route('/remitos/<int:remito_id>', methods=['DELETE'])
def delete_remito(remito_id):
    logistics_service.delete_remito(get_session(), remito_id)
    return success({'id': remito_id}, 'Remito eliminado exitosamente')


@logistics_bp.route('/remitos/<int:remito_id>/dispatch', methods=['PUT', 'POST'])
def dispatch_remito(remito_id):
    data = json_body()
    remito = logistics_service.dispatch_remito(
        get_session(), remito_id,
        tracking_number=data.get('tracking_number'),
        transport_company=data.get('transport_company'),
        actor_id=current_actor()
    )
    return success(remito_to_dict(remito), 'Remito despachado')


@logistics_bp.route('/remitos/<int:remito_id>/deliver', methods=['PUT', 'POST'])
def deliver_remito(remito_id):
    data = json_body()
    remito = logistics_service.deliver_remito(
        get_session(), remito_id,
        signature_data=data.get('signature_data'),
        delivery_photo=data.get('delivery_photo'),
        delivery_notes=data.get('delivery_notes'),
        actor_id=current_actor()
    )
    return success(remito_to_dict(remito), 'Remito entregado')


@logistics_bp.route('/remitos/<int:remito_id>/items/<int:item_id>', methods=['PATCH', 'PUT'])
def update_remito_item(remito_id, item_id):
    item = logistics_service.update_remito_item(get_session(), remito_id, item_id, json_body())
    return success(columns_dict(item), 'Ítem actualizado')


@logistics_bp.route('/remitos/<int:remito_id>/trazabilidad', methods=['GET'])
def get_trazabilidad(remito_id):
    history = logistics_service.get_trazabilidad(get_session(), remito_id)
    return success([trazabilidad_to_dict(entry) for entry in history])


@logistics_bp.route('/remitos/<int:remito_id>/trazabilidad', methods=['POST'])
def create_trazabilidad(remito_id):
    entry = logistics_service.create_trazabilidad_entry(
        get_session(), remito_id, json_body(), actor_id=current_actor()
    )
    return success(trazabilidad_to_dict(entry), 'Trazabilidad registrada', 201)


@logistics_bp.route('/trazabilidad/<int:entry_id>/close', methods=['PUT', 'POST'])
def close_stage(entry_id):
    data = json_body()
    entry = logistics_service.close_trazabilidad_stage(get_session(), entry_id, data.get('stage_end'))
    return success(trazabilidad_to_dict(entry), 'Etapa cerrada')


@logistics_bp.route('/remitos/<int:remito_id>/tracking', methods=['GET'])
def tracking(remito_id):
    return success(tracking_to_dict(logistics_service.get_tracking(get_session(), remito_id)))
