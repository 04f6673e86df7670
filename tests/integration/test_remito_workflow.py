"""
Integration tests for outbound remitos: generation from orders, status
machine, stock side effects and trazabilidad.
"""
from datetime import timedelta
from decimal import Decimal

import pytest

from app.exceptions import (
    NotFoundError, ValidationError, ConflictError, InvalidTransitionError, InsufficientStockError
)
from app.models import (
    OrderRemitoStatus, ProductStock, Remito, RemitoStatus, RemitoItemStatus, Trazabilidad, TrazabilidadStage
)
from app.services import order_service, logistics_service, stock_service


@pytest.fixture
def approved_order(session, customer, product_a, product_b):
    """Approved order (stock reserved): 2 x product_a, 1 x product_b, transport 20."""
    order, _ = order_service.create_order(
        session, customer.id,
        [{'product_id': product_a.id, 'quantity': 2}, {'product_id': product_b.id, 'quantity': 1}],
        status='aprobado', transport_cost='20'
    )
    return order


def _stock(session, product_id):
    return session.query(ProductStock).filter(ProductStock.product_id == product_id).one()


def _advance(session, remito_id, *statuses):
    remito = None
    for status in statuses:
        remito = logistics_service.update_remito(session, remito_id, {'status': status})
    return remito


class TestGenerateFromOrder:

    def test_generate(self, session, approved_order, customer):
        order_id, order_number = approved_order.id, approved_order.order_number
        remito = logistics_service.generate_remito_from_order(session, order_id)

        assert remito.remito_number.startswith('REM')
        assert remito.status == RemitoStatus.GENERADO
        assert remito.total_products == 2
        assert remito.total_quantity == Decimal('3')
        assert remito.total_value == Decimal('250.00')
        assert remito.transport_cost == Decimal('20.00')
        assert remito.delivery_address == 'Av. Siempre Viva 742'
        assert remito.delivery_contact == 'Marta López'
        assert remito.notes == f'Remito generado automáticamente desde pedido {order_number}'
        assert order_service.get_order(session, order_id).remito_status == OrderRemitoStatus.REMITO_GENERADO

    def test_initial_trazabilidad(self, session, approved_order):
        remito = logistics_service.generate_remito_from_order(session, approved_order.id)
        entries = logistics_service.get_trazabilidad(session, remito.id)

        assert len(entries) == 2
        assert {e.stage for e in entries} == {TrazabilidadStage.PREPARACION}
        assert all(e.is_automatic for e in entries)
        assert all(e.location == 'Depósito Principal' for e in entries)
        assert all(e.stage_end is None for e in entries)

    def test_generate_twice(self, session, approved_order):
        order_id = approved_order.id
        logistics_service.generate_remito_from_order(session, order_id)

        with pytest.raises(ConflictError):
            logistics_service.generate_remito_from_order(session, order_id)
        assert session.query(Remito).count() == 1

    def test_order_not_eligible(self, session, customer, product_a):
        order, _ = order_service.create_order(session, customer.id, [{'product_id': product_a.id, 'quantity': 1}])
        with pytest.raises(ConflictError):
            logistics_service.generate_remito_from_order(session, order.id)

    def test_stock_not_reserved(self, app, session, customer, product_a, monkeypatch):
        monkeypatch.setitem(app.config, 'AUTO_RESERVE_STOCK_ON_APPROVAL', False)
        order, _ = order_service.create_order(
            session, customer.id, [{'product_id': product_a.id, 'quantity': 1}], status='aprobado'
        )
        with pytest.raises(ValidationError):
            logistics_service.generate_remito_from_order(session, order.id)

    def test_unknown_order(self, session):
        with pytest.raises(NotFoundError):
            logistics_service.generate_remito_from_order(session, 9999)


class TestCreateRemito:

    def test_create_with_items(self, session, approved_order, customer, product_a):
        remito = logistics_service.create_remito(
            session, approved_order.id, customer.id,
            [{'product_id': product_a.id, 'quantity': 2}],
            remito_type='consignacion', tracking_number='TRK-1'
        )
        assert remito.remito_number.startswith('CON')
        assert remito.items[0].unit_price == Decimal('50.00')
        assert remito.tracking_number == 'TRK-1'

    def test_client_mismatch(self, session, approved_order, other_customer, product_a):
        with pytest.raises(ValidationError):
            logistics_service.create_remito(
                session, approved_order.id, other_customer.id, [{'product_id': product_a.id, 'quantity': 1}]
            )

    def test_quantity_above_stock(self, session, approved_order, customer, product_a):
        order_id, client_id, product_id = approved_order.id, customer.id, product_a.id
        stock_service.adjust_stock(session, product_id, absolute=1)
        session.commit()

        with pytest.raises(InsufficientStockError):
            logistics_service.create_remito(session, order_id, client_id, [{'product_id': product_id, 'quantity': 2}])
        assert session.query(Remito).count() == 0

    def test_quantity_above_order_line(self, session, approved_order, customer, product_a):
        with pytest.raises(ValidationError):
            logistics_service.create_remito(
                session, approved_order.id, customer.id,
                [{'product_id': product_a.id, 'quantity': 1}, {'product_id': product_a.id, 'quantity': 2}]
            )
        assert session.query(Remito).count() == 0

    def test_product_outside_order(self, session, customer, product_a, product_b):
        order, _ = order_service.create_order(
            session, customer.id, [{'product_id': product_a.id, 'quantity': 1}], status='aprobado'
        )
        other, _ = order_service.create_order(
            session, customer.id, [{'product_id': product_b.id, 'quantity': 10}], status='aprobado'
        )
        order_id, other_id, client_id = order.id, other.id, customer.id

        with pytest.raises(ValidationError):
            logistics_service.create_remito(session, order_id, client_id, [{'product_id': product_b.id, 'quantity': 10}])

        assert session.query(Remito).count() == 0
        assert _stock(session, product_b.id).reserved_qty == Decimal('10')
        assert order_service.get_order(session, other_id).stock_reserved is True

    def test_second_remito_for_order(self, session, approved_order, customer, product_a):
        order_id, client_id = approved_order.id, customer.id
        logistics_service.generate_remito_from_order(session, order_id)
        with pytest.raises(ConflictError):
            logistics_service.create_remito(session, order_id, client_id, [{'product_id': product_a.id, 'quantity': 1}])


class TestRemitoStatus:

    def test_full_lifecycle(self, session, approved_order, product_a, product_b):
        order_id = approved_order.id
        remito = logistics_service.generate_remito_from_order(session, order_id)
        remito_id = remito.id

        remito = _advance(session, remito_id, 'preparando', 'listo_despacho')
        assert remito.preparation_date is not None
        assert all(item.prepared_quantity == item.quantity for item in remito.items)

        remito = logistics_service.dispatch_remito(
            session, remito_id, tracking_number='TRK-9', driver_name='Juan Pérez', vehicle_plate='AB123CD'
        )
        assert remito.status == RemitoStatus.EN_TRANSITO
        assert remito.dispatch_date is not None
        assert _stock(session, product_a.id).on_hand_qty == Decimal('98')
        assert _stock(session, product_a.id).reserved_qty == Decimal('0')
        assert _stock(session, product_b.id).on_hand_qty == Decimal('9')
        assert order_service.get_order(session, order_id).remito_status == OrderRemitoStatus.REMITO_DESPACHADO

        remito = logistics_service.deliver_remito(session, remito_id, signature_data='firma', actor_id=7)
        assert remito.status == RemitoStatus.ENTREGADO
        assert remito.delivered_by == 7
        assert all(item.delivered_quantity == item.quantity for item in remito.items)
        assert all(item.status == RemitoItemStatus.COMPLETO for item in remito.items)
        assert order_service.get_order(session, order_id).remito_status == OrderRemitoStatus.REMITO_ENTREGADO

    def test_trazabilidad_per_stage(self, session, approved_order):
        remito = logistics_service.generate_remito_from_order(session, approved_order.id)
        remito_id = remito.id
        _advance(session, remito_id, 'preparando', 'listo_despacho', 'en_transito')

        entries = logistics_service.get_trazabilidad(session, remito_id)
        assert len(entries) == 8
        assert [e.stage for e in entries[-2:]] == [TrazabilidadStage.TRANSITO] * 2
        assert all(e.stage_end is not None for e in entries[:-2])
        assert all(e.duration_minutes is not None for e in entries[:-2])
        assert all(e.stage_end is None for e in entries[-2:])

    def test_dispatch_details_on_stage(self, session, approved_order):
        remito = logistics_service.generate_remito_from_order(session, approved_order.id)
        remito_id = remito.id
        _advance(session, remito_id, 'preparando', 'listo_despacho')
        logistics_service.dispatch_remito(session, remito_id, driver_name='Juan Pérez', location='Ruta 9')

        last = logistics_service.get_trazabilidad(session, remito_id)[-1]
        assert last.driver_name == 'Juan Pérez'
        assert last.location == 'Ruta 9'

    def test_invalid_transition(self, session, approved_order, product_a):
        remito = logistics_service.generate_remito_from_order(session, approved_order.id)
        remito_id = remito.id

        with pytest.raises(InvalidTransitionError):
            logistics_service.update_remito(session, remito_id, {'status': 'en_transito'})

        assert logistics_service.get_remito(session, remito_id).status == RemitoStatus.GENERADO
        assert _stock(session, product_a.id).on_hand_qty == Decimal('100')
        assert len(logistics_service.get_trazabilidad(session, remito_id)) == 2

    def test_return_puts_stock_back(self, session, approved_order, product_a):
        remito = logistics_service.generate_remito_from_order(session, approved_order.id)
        remito_id = remito.id
        remito = _advance(session, remito_id, 'preparando', 'listo_despacho', 'en_transito', 'devuelto')

        assert _stock(session, product_a.id).on_hand_qty == Decimal('100')
        assert all(item.returned_quantity == item.quantity for item in remito.items)
        assert all(item.status == RemitoItemStatus.DEVUELTO for item in remito.items)

    def test_cancel_allows_new_remito(self, session, approved_order):
        order_id = approved_order.id
        remito = logistics_service.generate_remito_from_order(session, order_id)
        logistics_service.update_remito(session, remito.id, {'status': 'cancelado'})

        assert order_service.get_order(session, order_id).remito_status == OrderRemitoStatus.SIN_REMITO
        again = logistics_service.generate_remito_from_order(session, order_id)
        assert again.id != remito.id

    def test_dispatch_consumes_only_own_reservation(self, session, approved_order, customer, product_a, product_b):
        other, _ = order_service.create_order(
            session, customer.id, [{'product_id': product_b.id, 'quantity': 5}], status='aprobado'
        )
        order_id, client_id = approved_order.id, customer.id
        assert _stock(session, product_b.id).reserved_qty == Decimal('6')

        remito = logistics_service.create_remito(session, order_id, client_id, [{'product_id': product_a.id, 'quantity': 1}])
        _advance(session, remito.id, 'preparando', 'listo_despacho', 'en_transito')

        # One unit of product_a shipped; the rest of the order's reservation is released
        assert _stock(session, product_a.id).on_hand_qty == Decimal('99')
        assert _stock(session, product_a.id).reserved_qty == Decimal('0')
        # The other order keeps its 5 units of product_b
        assert _stock(session, product_b.id).on_hand_qty == Decimal('10')
        assert _stock(session, product_b.id).reserved_qty == Decimal('5')

    def test_lowered_preparation_releases_leftover(self, session, approved_order, customer, product_a):
        order_service.create_order(
            session, customer.id, [{'product_id': product_a.id, 'quantity': 3}], status='aprobado'
        )
        remito = logistics_service.generate_remito_from_order(session, approved_order.id)
        remito_id = remito.id
        remito = _advance(session, remito_id, 'preparando', 'listo_despacho')
        item_id = next(item.id for item in remito.items if item.product_id == product_a.id)

        logistics_service.update_remito_item(session, remito_id, item_id, {'prepared_quantity': 1})
        logistics_service.dispatch_remito(session, remito_id)

        assert _stock(session, product_a.id).on_hand_qty == Decimal('99')
        assert _stock(session, product_a.id).reserved_qty == Decimal('3')

    def test_order_cancel_refused_with_live_remito(self, session, approved_order, product_a):
        order_id = approved_order.id
        remito = logistics_service.generate_remito_from_order(session, order_id)
        remito_id = remito.id
        _advance(session, remito_id, 'preparando')

        with pytest.raises(ConflictError):
            order_service.update_order(session, order_id, {'status': 'cancelado'})
        assert order_service.get_order(session, order_id).status.value == 'aprobado'
        assert _stock(session, product_a.id).reserved_qty == Decimal('2')

        logistics_service.update_remito(session, remito_id, {'status': 'cancelado'})
        order = order_service.update_order(session, order_id, {'status': 'cancelado'})
        assert order.status.value == 'cancelado'
        assert _stock(session, product_a.id).reserved_qty == Decimal('0')
        assert _stock(session, product_a.id).on_hand_qty == Decimal('100')

    def test_order_cannot_be_cancelled_after_dispatch(self, session, approved_order):
        order_id = approved_order.id
        remito = logistics_service.generate_remito_from_order(session, order_id)
        _advance(session, remito.id, 'preparando', 'listo_despacho', 'en_transito')

        with pytest.raises(ConflictError):
            order_service.update_order(session, order_id, {'status': 'cancelado'})


class TestTrackingAndDelete:

    def test_estimated_delivery(self, session, approved_order):
        remito = logistics_service.generate_remito_from_order(session, approved_order.id)
        tracking = logistics_service.get_tracking(session, remito.id)

        assert tracking['current_status'] == RemitoStatus.GENERADO
        assert tracking['estimated_delivery'] - tracking['remito'].generation_date == timedelta(days=3)
        assert len(tracking['trazabilidad']) == 2
        assert tracking['last_update'] == tracking['trazabilidad'][-1].stage_start

    def test_delete_generated(self, session, approved_order):
        order_id = approved_order.id
        remito = logistics_service.generate_remito_from_order(session, order_id)
        remito_id = remito.id
        logistics_service.delete_remito(session, remito_id)

        with pytest.raises(NotFoundError):
            logistics_service.get_remito(session, remito_id)
        assert order_service.get_order(session, order_id).remito_status == OrderRemitoStatus.SIN_REMITO

    def test_delete_after_preparation(self, session, approved_order):
        remito = logistics_service.generate_remito_from_order(session, approved_order.id)
        remito_id = remito.id
        _advance(session, remito_id, 'preparando')

        with pytest.raises(ConflictError):
            logistics_service.delete_remito(session, remito_id)


class TestRemitoItems:

    def test_partial_delivery(self, session, approved_order):
        remito = logistics_service.generate_remito_from_order(session, approved_order.id)
        remito_id = remito.id
        remito = _advance(session, remito_id, 'preparando', 'listo_despacho')
        item_id = remito.items[0].id

        item = logistics_service.update_remito_item(
            session, remito_id, item_id, {'delivered_quantity': 1, 'returned_quantity': 1}
        )
        assert item.status == RemitoItemStatus.PARCIAL

    def test_quantities_above_prepared(self, session, approved_order):
        remito = logistics_service.generate_remito_from_order(session, approved_order.id)
        remito_id = remito.id
        remito = _advance(session, remito_id, 'preparando', 'listo_despacho')
        item_id = remito.items[0].id

        with pytest.raises(ValidationError):
            logistics_service.update_remito_item(
                session, remito_id, item_id, {'delivered_quantity': 2, 'returned_quantity': 1}
            )
        with pytest.raises(ValidationError):
            logistics_service.update_remito_item(session, remito_id, item_id, {'prepared_quantity': 5})


class TestManualTrazabilidad:

    def test_create_and_close(self, session, approved_order, product_a):
        remito = logistics_service.generate_remito_from_order(session, approved_order.id)
        entry = logistics_service.create_trazabilidad_entry(session, remito.id, {
            'product_id': product_a.id,
            'stage': 'control_calidad',
            'quality_check': True,
            'temperature': '4.5',
            'responsible_person': 'Ana',
        }, actor_id=3)
        entry_id = entry.id

        assert entry.is_automatic is False
        assert entry.responsible_user_id == 3

        entry = logistics_service.close_trazabilidad_stage(session, entry_id)
        assert entry.stage_end is not None
        assert entry.duration_minutes == 0
        with pytest.raises(ConflictError):
            logistics_service.close_trazabilidad_stage(session, entry_id)

    def test_duration_from_stage_bounds(self, session, approved_order, product_a):
        remito = logistics_service.generate_remito_from_order(session, approved_order.id)
        entry = logistics_service.create_trazabilidad_entry(session, remito.id, {
            'product_id': product_a.id,
            'stage': 'almacenamiento',
            'stage_start': '2026-03-01T10:00:00+00:00',
        })
        entry = logistics_service.close_trazabilidad_stage(session, entry.id, stage_end='2026-03-01T11:30:00+00:00')

        assert entry.duration_minutes == 90
        assert 'duration_minutes' not in Trazabilidad.__table__.columns

    def test_product_not_in_remito(self, session, approved_order, customer):
        remito = logistics_service.create_remito(
            session, approved_order.id, customer.id, [{'product_id': approved_order.items[0].product_id, 'quantity': 1}]
        )
        other_product = approved_order.items[1].product_id
        with pytest.raises(ValidationError):
            logistics_service.create_trazabilidad_entry(
                session, remito.id, {'product_id': other_product, 'stage': 'almacenamiento'}
            )

    def test_stage_required(self, session, approved_order, product_a):
        remito = logistics_service.generate_remito_from_order(session, approved_order.id)
        with pytest.raises(ValidationError):
            logistics_service.create_trazabilidad_entry(session, remito.id, {'product_id': product_a.id})

    def test_close_before_start(self, session, approved_order):
        remito = logistics_service.generate_remito_from_order(session, approved_order.id)
        entry_id = logistics_service.get_trazabilidad(session, remito.id)[0].id
        with pytest.raises(ValidationError):
            logistics_service.close_trazabilidad_stage(session, entry_id, stage_end='2000-01-01T00:00:00')


class TestGenerateRemitosCommand:

    def test_generates_for_ready_orders(self, app, session, approved_order):
        order_id = approved_order.id
        result = app.test_cli_runner().invoke(args=['generate-remitos'])

        assert result.exit_code == 0
        assert 'Remitos generados: 1/1' in result.output
        assert order_service.get_order(session, order_id).remito_status == OrderRemitoStatus.REMITO_GENERADO

    def test_dry_run(self, app, session, approved_order):
        order_number = approved_order.order_number
        result = app.test_cli_runner().invoke(args=['generate-remitos', '--dry-run'])

        assert order_number in result.output
        assert session.query(Remito).count() == 0

    def test_nothing_ready(self, app, session):
        result = app.test_cli_runner().invoke(args=['generate-remitos'])
        assert 'No hay pedidos listos' in result.output
