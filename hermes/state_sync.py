import logging
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from .models import db, GameServer
from .archive import ArchiveArtifact
from shared.errors import PersistenceFailure
from shared.state_machine import ServerState

logger = logging.getLogger(__name__)


class StateSynchronizer:
    """
    Applies lifecycle field updates to the persisted server record.

    This is the only writer of the lifecycle columns (state, dates and the
    archive reference).
    """

    def __init__(self, deletion_ttl_hours: int, clock: Callable[[], datetime] = datetime.utcnow):
        self.deletion_ttl_hours = deletion_ttl_hours
        self.clock = clock

    def get(self, server_id: str) -> GameServer:
        try:
            server = db.session.get(GameServer, server_id)
        except SQLAlchemyError as e:
            raise PersistenceFailure("Failed to get server data from DB", e) from e
        if server is None:
            raise PersistenceFailure(f"No server record for {server_id}")
        return server

    def _commit(self, message: str):
        try:
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            raise PersistenceFailure(message, e) from e

    def on_start(self, server_id: str) -> GameServer:
        server = self.get(server_id)
        server.state = ServerState.RUNNING.value
        server.start_date = self.clock()
        server.shutdown_date = None
        server.deletion_date = None
        # A fresh run invalidates the previous backup.
        server.archive_name = None
        server.archive_data = None
        self._commit("Failed to update server status on successful container start")
        return server

    def on_stop(self, server_id: str, can_be_deleted: bool, artifact: ArchiveArtifact) -> GameServer:
        server = self.get(server_id)
        now = self.clock()
        server.state = ServerState.STOPPED.value
        server.start_date = None
        server.shutdown_date = now
        server.deletion_date = now + timedelta(hours=self.deletion_ttl_hours) if can_be_deleted else None
        server.archive_name = artifact.name
        server.archive_data = artifact.data
        self._commit("Failed to update server data on stop")
        return server

    def on_remove(self, server_id: str):
        server = self.get(server_id)
        try:
            db.session.delete(server)
        except SQLAlchemyError as e:
            db.session.rollback()
            raise PersistenceFailure("Failed to update database after removing server", e) from e
        self._commit("Failed to update database after removing server")
        logger.info(f"Deleted server record {server_id}")
