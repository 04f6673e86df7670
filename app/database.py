"""Database configuration and initialization."""
import logging
from contextlib import contextmanager

from sqlalchemy import create_engine, BigInteger, Integer
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from app.exceptions import ErpError, ConflictError, StorageError

logger = logging.getLogger(__name__)

# Create SQLAlchemy base
Base = declarative_base()

# Primary key type: BIGINT on server databases, INTEGER on SQLite so rowid autoincrement works
IdType = BigInteger().with_variant(Integer, 'sqlite')

# Global session and engine
engine = None
db_session = None


def _engine_options(app, database_uri):
    options = {
        'echo': app.config.get('SQLALCHEMY_ECHO', False),
        'pool_pre_ping': True,  # Enable connection health checks
    }
    if database_uri.startswith('sqlite'):
        # Share a single connection so in-memory databases survive across sessions
        options['connect_args'] = {'check_same_thread': False}
        options['poolclass'] = StaticPool
    else:
        options['pool_size'] = app.config.get('DB_POOL_SIZE', 10)
        options['max_overflow'] = app.config.get('DB_MAX_OVERFLOW', 20)
    return options


def init_db(app):
    """Initialize database connection."""
    global engine, db_session

    database_uri = app.config['SQLALCHEMY_DATABASE_URI']
    engine = create_engine(database_uri, **_engine_options(app, database_uri))

    db_session = scoped_session(
        sessionmaker(autocommit=False, autoflush=False, bind=engine)
    )

    Base.query = db_session.query_property()

    # Register teardown
    @app.teardown_appcontext
    def shutdown_session(exception=None):
        """Close database session and rollback on error."""
        if exception:
            db_session.rollback()
        db_session.remove()


def create_all():
    """Create every table known to the models package."""
    from app import models  # noqa: F401  (register mappers)
    Base.metadata.create_all(bind=engine)


def drop_all():
    """Drop every table (tests only)."""
    Base.metadata.drop_all(bind=engine)


def get_session():
    """Get database session."""
    return db_session


@contextmanager
def transaction(session, label='operación'):
    """
    Run a workflow operation as one unit: commit on success, rollback on any error.

    Business errors propagate unchanged. IntegrityError becomes ConflictError
    and any other SQLAlchemyError becomes StorageError.
    """
    try:
        yield session
        session.commit()
    except ErpError:
        session.rollback()
        raise
    except IntegrityError as e:
        session.rollback()
        logger.warning(f"[DB] Integrity error during {label}: {e.orig}")
        raise ConflictError(f'Conflicto de integridad en {label}', payload={'detail': str(e.orig)})
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception(f"[DB] Storage error during {label}: {e}")
        raise StorageError(f'Error de base de datos en {label}', original=e)
    except Exception:
        session.rollback()
        raise
