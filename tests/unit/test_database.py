"""
Unit tests for the transaction helper: commit, rollback and error mapping.
"""
import pytest
from sqlalchemy.exc import OperationalError

from app.database import transaction
from app.exceptions import ConflictError, StorageError, ValidationError
from app.models import Client


def _clients(session, code):
    return session.query(Client).filter(Client.code == code).count()


class TestTransaction:

    def test_commits_on_success(self, session):
        with transaction(session, 'alta de cliente'):
            session.add(Client(code='CLI100', name='Comercial Sur', is_active=True))

        assert _clients(session, 'CLI100') == 1

    def test_storage_failure_rolls_back(self, session):
        with pytest.raises(StorageError) as excinfo:
            with transaction(session, 'alta de cliente'):
                session.add(Client(code='CLI101', name='Comercial Sur', is_active=True))
                session.flush()
                raise OperationalError('INSERT INTO client', {}, Exception('server closed the connection'))

        assert isinstance(excinfo.value.original, OperationalError)
        assert excinfo.value.status_code == 500
        assert _clients(session, 'CLI101') == 0

    def test_integrity_error_becomes_conflict(self, session, customer):
        with pytest.raises(ConflictError):
            with transaction(session, 'alta de cliente'):
                session.add(Client(code='CLI102', name='Primero', is_active=True))
                session.flush()
                session.add(Client(code='CLI001', name='Duplicado', is_active=True))
                session.flush()

        assert _clients(session, 'CLI102') == 0
        assert _clients(session, 'CLI001') == 1

    def test_business_error_propagates_unchanged(self, session):
        with pytest.raises(ValidationError):
            with transaction(session, 'alta de cliente'):
                session.add(Client(code='CLI103', name='Comercial Sur', is_active=True))
                session.flush()
                raise ValidationError('Dato inválido')

        assert _clients(session, 'CLI103') == 0
