"""
Unit tests for the error taxonomy.
"""
from decimal import Decimal

from app.exceptions import (
    ErpError, NotFoundError, ValidationError, InsufficientStockError,
    InvalidTransitionError, ConflictError, StorageError
)


class TestErrorKinds:
    """Each error carries its kind and HTTP status."""

    def test_status_codes(self):
        assert ErpError().status_code == 500
        assert NotFoundError().status_code == 404
        assert ValidationError('x').status_code == 400
        assert ConflictError('x').status_code == 409
        assert StorageError().status_code == 500

    def test_to_dict_merges_payload(self):
        error = ConflictError('Ya existe', payload={'remito_id': 7})
        assert error.to_dict() == {
            'status': 'error',
            'error': 'conflict',
            'message': 'Ya existe',
            'remito_id': 7,
        }

    def test_invalid_transition_payload(self):
        error = InvalidTransitionError('pedido', 'completado', 'aprobado')
        data = error.to_dict()
        assert error.status_code == 409
        assert data['error'] == 'invalid_transition'
        assert data['current_status'] == 'completado'
        assert data['requested_status'] == 'aprobado'

    def test_insufficient_stock_message(self):
        error = InsufficientStockError('Tornillo', Decimal('12'), Decimal('2.5'))
        assert isinstance(error, ValidationError)
        assert error.status_code == 409
        assert error.message == 'Stock insuficiente para Tornillo: se requieren 12, disponible 2.5'

    def test_storage_error_keeps_original(self):
        original = RuntimeError('disk full')
        error = StorageError(original=original)
        assert error.original is original
        assert error.to_dict()['error'] == 'storage_error'
