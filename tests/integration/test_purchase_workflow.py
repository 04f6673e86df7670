"""
Integration tests for the purchase workflow.
"""
from decimal import Decimal

import pytest

from app.exceptions import NotFoundError, ValidationError, ConflictError, InvalidTransitionError
from app.models import PurchaseStatus, DebtType
from app.services import purchase_service, delivery_note_service


def _items(product_a, product_b):
    return [
        {'product_id': product_a.id, 'quantity': 2, 'unit_price': '50'},
        {'product_id': product_b.id, 'quantity': 1, 'unit_price': '150'},
    ]


class TestCreatePurchase:

    def test_totals_and_commitment(self, session, supplier, product_a, product_b):
        purchase = purchase_service.create_purchase(session, supplier.id, _items(product_a, product_b))

        assert purchase.purchase_number.startswith('COMP')
        assert purchase.status == PurchaseStatus.PENDING
        assert purchase.total_amount == Decimal('250.00')
        assert purchase.commitment_amount == Decimal('250.00')
        assert purchase.debt_amount == Decimal('0')
        assert [item.total_price for item in purchase.items] == [Decimal('100.00'), Decimal('150.00')]
        assert all(item.received_quantity == 0 for item in purchase.items)

    def test_direct_debt(self, session, supplier, product_a, product_b):
        purchase = purchase_service.create_purchase(
            session, supplier.id, _items(product_a, product_b), debt_type='deuda_directa'
        )
        assert purchase.debt_type == DebtType.DEUDA_DIRECTA
        assert purchase.debt_amount == Decimal('250.00')
        assert purchase.commitment_amount == Decimal('0')

    def test_material_code_line(self, session, supplier):
        purchase = purchase_service.create_purchase(
            session, supplier.id, [{'material_code': 'MAT-77', 'quantity': '1.5', 'unit_price': '10'}]
        )
        assert purchase.items[0].product_id is None
        assert purchase.total_amount == Decimal('15.00')

    def test_consecutive_numbers(self, session, supplier, product_a):
        first = purchase_service.create_purchase(session, supplier.id, [{'product_id': product_a.id, 'quantity': 1, 'unit_price': 1}])
        second = purchase_service.create_purchase(session, supplier.id, [{'product_id': product_a.id, 'quantity': 1, 'unit_price': 1}])
        assert int(second.purchase_number[-4:]) == int(first.purchase_number[-4:]) + 1

    def test_unknown_supplier(self, session, product_a):
        with pytest.raises(NotFoundError):
            purchase_service.create_purchase(session, 9999, [{'product_id': product_a.id, 'quantity': 1, 'unit_price': 1}])

    @pytest.mark.parametrize('item', [
        {'quantity': 1, 'unit_price': 1},
        {'material_code': 'X', 'quantity': 0, 'unit_price': 1},
        {'material_code': 'X', 'quantity': 1, 'unit_price': -1},
    ])
    def test_invalid_items(self, session, supplier, item):
        with pytest.raises(ValidationError):
            purchase_service.create_purchase(session, supplier.id, [item])

    def test_empty_items(self, session, supplier):
        with pytest.raises(ValidationError):
            purchase_service.create_purchase(session, supplier.id, [])


class TestUpdatePurchase:

    def test_confirm_stamps_date(self, session, supplier, product_a, product_b):
        purchase = purchase_service.create_purchase(session, supplier.id, _items(product_a, product_b))
        purchase = purchase_service.update_purchase(session, purchase.id, {'status': 'confirmed'})

        assert purchase.status == PurchaseStatus.CONFIRMED
        assert purchase.confirmed_at is not None

    def test_cancelled_purchase_cannot_reopen(self, session, supplier, product_a, product_b):
        purchase = purchase_service.create_purchase(session, supplier.id, _items(product_a, product_b))
        purchase_id = purchase.id
        purchase_service.update_purchase(session, purchase_id, {'status': 'cancelled'})

        with pytest.raises(InvalidTransitionError):
            purchase_service.update_purchase(session, purchase_id, {'status': 'confirmed'})
        assert purchase_service.get_purchase(session, purchase_id).status == PurchaseStatus.CANCELLED

    def test_confirmed_cannot_go_back_to_pending(self, session, supplier, product_a, product_b):
        purchase = purchase_service.create_purchase(session, supplier.id, _items(product_a, product_b))
        purchase_id = purchase.id
        purchase_service.update_purchase(session, purchase_id, {'status': 'confirmed'})

        with pytest.raises(InvalidTransitionError):
            purchase_service.update_purchase(session, purchase_id, {'status': 'pending', 'notes': 'volver'})
        purchase = purchase_service.get_purchase(session, purchase_id)
        assert purchase.status == PurchaseStatus.CONFIRMED
        assert purchase.notes is None

    def test_absent_keys_untouched(self, session, supplier, product_a, product_b):
        purchase = purchase_service.create_purchase(
            session, supplier.id, _items(product_a, product_b), notes='urgente'
        )
        purchase = purchase_service.update_purchase(session, purchase.id, {'allows_partial_delivery': False})

        assert purchase.notes == 'urgente'
        assert purchase.allows_partial_delivery is False

    def test_explicit_none_clears_nullable(self, session, supplier, product_a, product_b):
        purchase = purchase_service.create_purchase(
            session, supplier.id, _items(product_a, product_b), notes='urgente'
        )
        purchase = purchase_service.update_purchase(session, purchase.id, {'notes': None})
        assert purchase.notes is None

    def test_none_for_required_field(self, session, supplier, product_a, product_b):
        purchase = purchase_service.create_purchase(session, supplier.id, _items(product_a, product_b))
        with pytest.raises(ValidationError):
            purchase_service.update_purchase(session, purchase.id, {'status': None})

    def test_unknown_field(self, session, supplier, product_a, product_b):
        purchase = purchase_service.create_purchase(session, supplier.id, _items(product_a, product_b))
        with pytest.raises(ValidationError):
            purchase_service.update_purchase(session, purchase.id, {'total_amount': 1})

    def test_split_must_match_total(self, session, supplier, product_a, product_b):
        purchase = purchase_service.create_purchase(session, supplier.id, _items(product_a, product_b))
        purchase_id = purchase.id

        with pytest.raises(ValidationError):
            purchase_service.update_purchase(session, purchase_id, {'commitment_amount': '100', 'debt_amount': '100'})

        purchase = purchase_service.update_purchase(
            session, purchase_id, {'commitment_amount': '100', 'debt_amount': '150'}
        )
        assert purchase.commitment_amount == Decimal('100.00')
        assert purchase.debt_amount == Decimal('150.00')

    def test_change_debt_type_moves_amount(self, session, supplier, product_a, product_b):
        purchase = purchase_service.create_purchase(session, supplier.id, _items(product_a, product_b))
        purchase = purchase_service.update_purchase(session, purchase.id, {'debt_type': 'deuda_directa'})
        assert purchase.debt_amount == Decimal('250.00')
        assert purchase.commitment_amount == Decimal('0')

    def test_supplier_locked_once_received(self, session, supplier, other_supplier, product_a, product_b):
        purchase = purchase_service.create_purchase(session, supplier.id, _items(product_a, product_b))
        item_id = purchase.items[0].id
        purchase_id = purchase.id
        delivery_note_service.create_delivery_note(
            session, supplier.id, [{'purchase_item_id': item_id, 'quantity': 1}], purchase_id=purchase_id
        )

        with pytest.raises(ConflictError):
            purchase_service.update_purchase(session, purchase_id, {'supplier_id': other_supplier.id})


class TestDeletePurchase:

    def test_delete(self, session, supplier, product_a, product_b):
        purchase = purchase_service.create_purchase(session, supplier.id, _items(product_a, product_b))
        purchase_id = purchase.id
        purchase_service.delete_purchase(session, purchase_id)

        with pytest.raises(NotFoundError):
            purchase_service.get_purchase(session, purchase_id)

    def test_delete_with_delivery_note(self, session, supplier, product_a, product_b):
        purchase = purchase_service.create_purchase(session, supplier.id, _items(product_a, product_b))
        purchase_id = purchase.id
        delivery_note_service.create_delivery_note(
            session, supplier.id, [{'purchase_item_id': purchase.items[0].id, 'quantity': 2}], purchase_id=purchase_id
        )

        with pytest.raises(ConflictError):
            purchase_service.delete_purchase(session, purchase_id)
        assert purchase_service.get_purchase(session, purchase_id) is not None


class TestPurchaseItems:

    def test_add_item_recomputes_total(self, session, supplier, product_a, product_b):
        purchase = purchase_service.create_purchase(session, supplier.id, _items(product_a, product_b))
        purchase_service.add_purchase_item(
            session, purchase.id, {'product_id': product_a.id, 'quantity': 3, 'unit_price': '10'}
        )
        purchase = purchase_service.get_purchase(session, purchase.id)

        assert len(purchase.items) == 3
        assert purchase.total_amount == Decimal('280.00')
        assert purchase.commitment_amount == Decimal('280.00')

    def test_update_item_quantity(self, session, supplier, product_a, product_b):
        purchase = purchase_service.create_purchase(session, supplier.id, _items(product_a, product_b))
        item = purchase_service.update_purchase_item(session, purchase.id, purchase.items[0].id, {'quantity': 4})

        assert item.total_price == Decimal('200.00')
        assert purchase_service.get_purchase(session, purchase.id).total_amount == Decimal('350.00')

    def test_received_quantity_is_read_only(self, session, supplier, product_a, product_b):
        purchase = purchase_service.create_purchase(session, supplier.id, _items(product_a, product_b))
        with pytest.raises(ValidationError):
            purchase_service.update_purchase_item(
                session, purchase.id, purchase.items[0].id, {'received_quantity': 1}
            )

    def test_quantity_below_received(self, session, supplier, product_a, product_b):
        purchase = purchase_service.create_purchase(
            session, supplier.id, [{'product_id': product_a.id, 'quantity': 10, 'unit_price': 1}]
        )
        purchase_id, item_id = purchase.id, purchase.items[0].id
        delivery_note_service.create_delivery_note(
            session, supplier.id, [{'purchase_item_id': item_id, 'quantity': 6}], purchase_id=purchase_id
        )

        with pytest.raises(ValidationError):
            purchase_service.update_purchase_item(session, purchase_id, item_id, {'quantity': 5})

    def test_delete_item_with_receipts(self, session, supplier, product_a, product_b):
        purchase = purchase_service.create_purchase(session, supplier.id, _items(product_a, product_b))
        purchase_id, item_id = purchase.id, purchase.items[0].id
        delivery_note_service.create_delivery_note(
            session, supplier.id, [{'purchase_item_id': item_id, 'quantity': 1}], purchase_id=purchase_id
        )

        with pytest.raises(ConflictError):
            purchase_service.delete_purchase_item(session, purchase_id, item_id)

    def test_delete_item(self, session, supplier, product_a, product_b):
        purchase = purchase_service.create_purchase(session, supplier.id, _items(product_a, product_b))
        purchase_service.delete_purchase_item(session, purchase.id, purchase.items[1].id)
        purchase = purchase_service.get_purchase(session, purchase.id)

        assert len(purchase.items) == 1
        assert purchase.total_amount == Decimal('100.00')

    def test_no_items_on_cancelled_purchase(self, session, supplier, product_a, product_b):
        purchase = purchase_service.create_purchase(session, supplier.id, _items(product_a, product_b))
        purchase_service.update_purchase(session, purchase.id, {'status': 'cancelled'})

        with pytest.raises(ConflictError):
            purchase_service.add_purchase_item(
                session, purchase.id, {'product_id': product_a.id, 'quantity': 1, 'unit_price': 1}
            )
