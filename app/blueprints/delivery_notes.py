"""Supplier delivery notes blueprint (JSON API)."""
from flask import Blueprint, request
from app.database import get_session
from app.services import delivery_note_service
from app.utils.http import json_body, success, current_actor
from app.utils.serializers import delivery_note_to_dict, columns_dict

delivery_notes_bp = Blueprint('delivery_notes', __name__, url_prefix='/api/delivery-notes')


@delivery_notes_bp.route('', methods=['GET'])
def list_delivery_notes():
    notes = delivery_note_service.list_delivery_notes(
        get_session(),
        supplier_id=request.args.get('supplier_id', type=int),
        purchase_id=request.args.get('purchase_id', type=int),
        status=request.args.get('status')
    )
    return success([delivery_note_to_dict(n, include_items=False) for n in notes])


@delivery_notes_bp.route('', methods=['POST'])
def create_delivery_note():
    """Register goods received from a supplier."""
    data = json_body()
    note = delivery_note_service.create_delivery_note(
        get_session(),
        supplier_id=data.get('supplier_id'),
        items=data.get('items') or [],
        purchase_id=data.get('purchase_id'),
        invoice_id=data.get('invoice_id'),
        delivery_note_number=data.get('delivery_note_number'),
        delivery_date=data.get('delivery_date'),
        notes=data.get('notes'),
        actor_id=current_actor()
    )
    return success(delivery_note_to_dict(note), 'Remito registrado exitosamente', 201)


@delivery_notes_bp.route('/<int:note_id>', methods=['GET'])
def get_delivery_note(note_id):
    note = delivery_note_service.get_delivery_note(get_session(), note_id)
    return success(delivery_note_to_dict(note))


@delivery_notes_bp.route('/<int:note_id>', methods=['PATCH', 'PUT'])
def update_delivery_note(note_id):
    note = delivery_note_service.update_delivery_note(get_session(), note_id, json_body())
    return success(delivery_note_to_dict(note), 'Remito actualizado exitosamente')


@delivery_notes_bp.route('/<int:note_id>', methods=['DELETE'])
def delete_delivery_note(note_id):
    delivery_note_service.delete_delivery_note(get_session(), note_id)
    return success({'id': note_id}, 'Remito eliminado exitosamente')


@delivery_notes_bp.route('/<int:note_id>/items', methods=['POST'])
def add_item(note_id):
    item = delivery_note_service.add_delivery_note_item(get_session(), note_id, json_body())
    return success(columns_dict(item), 'Ítem agregado', 201)


@delivery_notes_bp.route('/<int:note_id>/items/<int:item_id>', methods=['PATCH', 'PUT'])
def update_item(note_id, item_id):
    item = delivery_note_service.update_delivery_note_item(get_session(), note_id, item_id, json_body())
    return success(columns_dict(item), 'Ítem actualizado')


@delivery_notes_bp.route('/<int:note_id>/items/<int:item_id>', methods=['DELETE'])
def delete_item(note_id, item_id):
    note = delivery_note_service.delete_delivery_note_item(get_session(), note_id, item_id)
    return success(delivery_note_to_dict(note), 'Ítem eliminado')


@delivery_notes_bp.route('/<int:note_id>/invoice', methods=['POST'])
def link_invoice(note_id):
    data = json_body()
    note = delivery_note_service.link_invoice(get_session(), note_id, data.get('invoice_id'))
    return success(delivery_note_to_dict(note), 'Factura vinculada al remito')
