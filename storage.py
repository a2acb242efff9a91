"""Storage gateway: durable store with an in-memory fallback.

Every repository call asks the gateway whether the durable store is available
and runs against it, or against the process-local fallback collections when
it is not. A call that reached the durable store is authoritative: if it fails
the error is raised, and the write is never replayed into the fallback store.

Fallback records are never reconciled into the durable store. Once the
durable store is back, reads go to it and the fallback records are no longer
visible.
"""
import logging
import threading
import time
from contextlib import contextmanager
from enum import Enum
from typing import Any, Callable, Generator, List, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from database import create_session_factory, init_db
from errors import BackendUnavailableError
from schemas import AdminRecord

logger = logging.getLogger(__name__)

# Integer primary keys are 32-bit signed on PostgreSQL
MAX_KEY = 2 ** 31 - 1


def parse_key(record_id: str) -> Optional[int]:
    """Durable-store primary key for an opaque id, or None if it cannot be one."""
    try:
        key = int(record_id)
    except (TypeError, ValueError):
        return None
    return key if 0 < key <= MAX_KEY else None


class ConnectionState(str, Enum):
    """Durable store readiness. Only CONNECTED routes calls to the store."""
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    CONNECTING = "connecting"
    DISCONNECTING = "disconnecting"


class FallbackCollection:
    """Ordered in-memory collection guarded by its own lock.

    Callers that need several operations to be atomic hold ``lock`` around
    them; it is re-entrant so the single-record helpers can be used inside.
    """

    def __init__(self, name: str, key: Callable[[Any], str] = lambda record: record.id):
        self.name = name
        self.lock = threading.RLock()
        self._key = key
        self._records: List[Any] = []

    def all(self) -> List[Any]:
        with self.lock:
            return list(self._records)

    def find(self, record_id: str) -> Optional[Any]:
        with self.lock:
            for record in self._records:
                if self._key(record) == record_id:
                    return record
            return None

    def insert(self, record: Any) -> Any:
        with self.lock:
            self._records.append(record)
            return record

    def replace(self, record_id: str, record: Any) -> Optional[Any]:
        with self.lock:
            for index, existing in enumerate(self._records):
                if self._key(existing) == record_id:
                    self._records[index] = record
                    return record
            return None

    def remove(self, record_id: str) -> Optional[Any]:
        with self.lock:
            for index, existing in enumerate(self._records):
                if self._key(existing) == record_id:
                    return self._records.pop(index)
            return None

    def clear(self) -> None:
        with self.lock:
            self._records.clear()

    def __len__(self) -> int:
        with self.lock:
            return len(self._records)


class StorageGateway:
    """Owns durable-store connectivity and the fallback collections."""

    def __init__(
        self,
        engine: Engine,
        admin_username: str,
        admin_password_hash: str,
        session_factory: Optional[sessionmaker] = None
    ):
        """
        Initialize the gateway. No connection is attempted until ``connect``.

        Args:
            engine: SQLAlchemy engine for the durable store
            admin_username: Admin credential seeded in both backends
            admin_password_hash: Hash of the admin password
            session_factory: Session factory, built from ``engine`` if omitted
        """
        self.engine = engine
        self.session_factory = session_factory or create_session_factory(engine)
        self.admin_username = admin_username
        self.admin_password_hash = admin_password_hash

        self._state = ConnectionState.DISCONNECTED
        self._state_lock = threading.Lock()
        self._id_lock = threading.Lock()
        self._last_id = 0

        self.products = FallbackCollection("products")
        self.orders = FallbackCollection("orders")
        self.admins = FallbackCollection("admins", key=lambda record: record.username)
        self._seed_fallback_admin()

    def _seed_fallback_admin(self) -> None:
        self.admins.insert(AdminRecord(
            username=self.admin_username,
            password_hash=self.admin_password_hash
        ))

    # Connectivity

    @property
    def state(self) -> ConnectionState:
        with self._state_lock:
            return self._state

    def _set_state(self, state: ConnectionState) -> None:
        with self._state_lock:
            previous = self._state
            self._state = state
        if previous != state:
            logger.info("Durable store state changed", extra={
                "previous_state": previous.value,
                "state": state.value
            })

    def is_backend_available(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    def _ping(self) -> None:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def connect(self) -> bool:
        """
        Connect to the durable store, creating tables and seeding the admin.

        Failures are logged and leave the gateway in fallback mode.

        Returns:
            True when the durable store is available afterwards
        """
        self._set_state(ConnectionState.CONNECTING)
        try:
            self._ping()
            init_db(self.engine, self.session_factory, self.admin_username, self.admin_password_hash)
        except Exception as e:
            logger.warning("Durable store unavailable, using in-memory fallback", extra={
                "database": self.engine.url.render_as_string(hide_password=True),
                "error": str(e)
            })
            self._set_state(ConnectionState.DISCONNECTED)
            return False
        self._set_state(ConnectionState.CONNECTED)
        return True

    def check_connection(self) -> bool:
        """Health probe: reconnect when down, mark down when a ping fails."""
        if not self.is_backend_available():
            return self.connect()
        try:
            self._ping()
        except Exception as e:
            logger.warning("Durable store ping failed", extra={"error": str(e)})
            self._set_state(ConnectionState.DISCONNECTED)
            return False
        return True

    def mark_disconnected(self) -> None:
        self._set_state(ConnectionState.DISCONNECTED)

    def close(self) -> None:
        self._set_state(ConnectionState.DISCONNECTING)
        self.engine.dispose()
        self._set_state(ConnectionState.DISCONNECTED)

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Durable-store unit of work.

        Commits when the block exits normally and rolls back otherwise.
        Operational failures (lost connection, lock or statement timeout,
        deadlock, pool exhaustion) surface as BackendUnavailableError and are
        not retried against the fallback. Only a lost connection marks the
        gateway disconnected; the store is otherwise still serving and the
        health probe decides.

        Yields:
            Database session
        """
        db = self.session_factory()
        try:
            yield db
            db.commit()
        except DBAPIError as e:
            db.rollback()
            if e.connection_invalidated:
                self._handle_connection_lost(e)
                raise BackendUnavailableError(str(e)) from e
            if isinstance(e, OperationalError):
                logger.error("Durable store call failed", extra={"error": str(e)})
                raise BackendUnavailableError(str(e)) from e
            raise
        except PoolTimeoutError as e:
            db.rollback()
            logger.error("No durable store connection available", extra={"error": str(e)})
            raise BackendUnavailableError(str(e)) from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _handle_connection_lost(self, error: Exception) -> None:
        logger.error("Durable store connection lost", extra={"error": str(error)})
        self._set_state(ConnectionState.DISCONNECTED)

    # Fallback helpers

    def next_id(self) -> str:
        """Monotonic, time-based identifier for fallback records."""
        with self._id_lock:
            self._last_id = max(int(time.time() * 1000), self._last_id + 1)
            return str(self._last_id)

    def reset_fallback(self) -> None:
        self.products.clear()
        self.orders.clear()
        self.admins.clear()
        self._seed_fallback_admin()
