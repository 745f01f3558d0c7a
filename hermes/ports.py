import logging
import threading
from typing import Callable, Iterable, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .models import db, GameServer
from shared.errors import PortsExhausted, PersistenceFailure

logger = logging.getLogger(__name__)

T = TypeVar('T')

_reserve_lock = threading.Lock()


def allocate_port(used_ports: Iterable[int], port_min: int, port_max: int) -> int:
    """Return the first port in [port_min, port_max] not in used_ports.

    Nothing is reserved; the caller has to persist the chosen port before
    another allocation can see it.
    """
    used = set(used_ports)
    for port in range(port_min, port_max + 1):
        if port not in used:
            return port

    raise PortsExhausted(port_min, port_max)


def used_ports() -> set:
    try:
        return {port for (port,) in db.session.query(GameServer.port).all()}
    except SQLAlchemyError as e:
        raise PersistenceFailure("Failed to read used ports", e) from e


def reserve_port(port_min: int, port_max: int, create_record: Callable[[int], T]) -> T:
    """Allocate a port and persist the record that claims it in one step.

    ``create_record`` receives the port and must add and commit the record.
    The lock serializes reservations inside this process; the unique
    constraint on ``GameServer.port`` rejects a double claim from elsewhere.
    """
    with _reserve_lock:
        port = allocate_port(used_ports(), port_min, port_max)
        try:
            record = create_record(port)
        except IntegrityError as e:
            db.session.rollback()
            raise PersistenceFailure(f"Port {port} was claimed concurrently", e) from e
        except SQLAlchemyError as e:
            db.session.rollback()
            raise PersistenceFailure("Failed to create server record", e) from e

    logger.info(f"Reserved port {port}")
    return record
