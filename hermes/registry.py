import uuid
import logging
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from .models import db, GameServer
from .ports import reserve_port
from .filesystem import ServerFilesystem
from .compose_file import ComposeDefinition
from shared.errors import PersistenceFailure, FilesystemFailure

logger = logging.getLogger(__name__)

DEFAULT_ENVIRONMENT = {
    'EULA': True,
    'USE_AIKAR_FLAGS': True,
    'MEMORY': '2G',
    'ICON': '/data/icon.png',
    'OVERRIDE_ICON': True,
    'ENABLE_AUTOPAUSE': True,
    'EXISTING_WHITELIST_FILE': 'SKIP',
    'EXISTING_OPS_FILE': 'SKIP',
    'EXISTING_BANNED_PLAYERS_FILE': 'SKIP',
}


class ServerRegistry:
    """
    Record lookups plus the minimal provisioning step:
    - reserve a port and persist the record that claims it
    - lay out the working directory and write its compose file
    """

    def __init__(self, filesystem: ServerFilesystem, port_min: int, port_max: int,
                 service_name: str = 'minecraft'):
        self.filesystem = filesystem
        self.port_min = port_min
        self.port_max = port_max
        self.service_name = service_name

    def get_server(self, server_id: str) -> Optional[GameServer]:
        try:
            return db.session.get(GameServer, server_id)
        except SQLAlchemyError as e:
            raise PersistenceFailure("Failed to get server data from DB", e) from e

    def list_servers(self, state: str = None, limit: int = 50, offset: int = 0) -> List[GameServer]:
        query = GameServer.query
        if state:
            query = query.filter_by(state=state)
        query = query.order_by(GameServer.created_at.desc())
        try:
            return query.offset(offset).limit(limit).all()
        except SQLAlchemyError as e:
            raise PersistenceFailure("Failed to list servers", e) from e

    def create_server(
        self,
        title: str,
        subdomain: str = None,
        can_be_deleted: bool = True,
        environment: Dict[str, object] = None
    ) -> GameServer:
        """Create a stopped server with a reserved port and its compose file."""
        server_id = uuid.uuid4().hex[:15]

        env = dict(DEFAULT_ENVIRONMENT)
        env['MOTD'] = title
        env.update(environment or {})
        # Validated before a port is claimed; the real port is filled in below.
        definition = ComposeDefinition(port=self.port_min, service_name=self.service_name, environment=env)

        def create_record(port: int) -> GameServer:
            server = GameServer(
                id=server_id,
                title=title,
                subdomain=subdomain,
                port=port,
                state='stopped',
                can_be_deleted=can_be_deleted
            )
            db.session.add(server)
            db.session.commit()
            return server

        server = reserve_port(self.port_min, self.port_max, create_record)

        definition.port = server.port
        try:
            self.filesystem.server_files_folder(server_id).mkdir(parents=True, exist_ok=True)
            definition.write(self.filesystem.server_folder(server_id))
        except OSError as e:
            # Leave no record pointing at a half-built directory.
            db.session.delete(server)
            db.session.commit()
            self.filesystem.remove_all(server_id, force=True)
            raise FilesystemFailure(f"Failed to lay out server {server_id}", e) from e

        logger.info(f"Created server {server_id} on port {server.port}")
        return server
