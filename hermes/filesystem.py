import os
import shutil
import logging
from pathlib import Path

from shared.errors import ServerNotFound, FilesystemFailure

logger = logging.getLogger(__name__)

SERVER_FILES_DIR = 'server-files'
PAUSE_MARKER = '.paused'


class ServerFilesystem:
    """Maps server identifiers to their working directories on disk."""

    def __init__(self, servers_root: str, backups_root: str = None):
        self.servers_root = Path(servers_root).resolve()
        self.backups_root = Path(backups_root).resolve() if backups_root else self.servers_root / 'backups'

    def server_folder(self, server_id: str) -> Path:
        return self.servers_root / server_id

    def server_files_folder(self, server_id: str) -> Path:
        return self.server_folder(server_id) / SERVER_FILES_DIR

    def backup_folder(self) -> Path:
        return self.backups_root

    def exists(self, server_id: str) -> bool:
        # Identifiers are single path segments; anything else cannot name a server.
        if not server_id or os.sep in server_id or server_id in ('.', '..'):
            return False
        return self.server_folder(server_id).is_dir()

    def require(self, server_id: str):
        if not self.exists(server_id):
            raise ServerNotFound(server_id)

    def has_pause_marker(self, server_id: str) -> bool:
        return (self.server_files_folder(server_id) / PAUSE_MARKER).exists()

    def remove_all(self, server_id: str, force: bool = False):
        """Recursively delete the server's working directory."""
        folder = self.server_folder(server_id)

        if force:
            shutil.rmtree(folder, ignore_errors=True)
            logger.info(f"Removed server folder {folder} (forced)")
            return

        try:
            shutil.rmtree(folder)
        except OSError as e:
            raise FilesystemFailure(f"Failed to remove server files for {server_id}", e) from e

        logger.info(f"Removed server folder {folder}")
