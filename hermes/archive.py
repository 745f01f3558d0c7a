import os
import logging
import zipfile
import tempfile
from dataclasses import dataclass
from pathlib import Path

from .filesystem import ServerFilesystem
from shared.errors import ArchiveFailure

logger = logging.getLogger(__name__)

ARCHIVE_EXTENSION = 'zip'
EXCLUDED_DIRS = {'libraries'}


@dataclass
class ArchiveArtifact:
    name: str
    path: Path
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


def is_excluded_dir(name: str) -> bool:
    return name in EXCLUDED_DIRS or name.startswith('.')


def is_excluded_file(name: str) -> bool:
    return name.startswith('.')


def iter_archive_members(root: Path):
    """Yield (path, arcname) for every file that belongs in a backup."""
    for dirpath, dirnames, filenames in os.walk(root):
        # Prune in place so excluded subtrees are never walked.
        dirnames[:] = sorted(d for d in dirnames if not is_excluded_dir(d))
        for filename in sorted(filenames):
            if is_excluded_file(filename):
                continue
            path = Path(dirpath) / filename
            yield path, path.relative_to(root).as_posix()


class ArchiveService:
    """Zips a server's working directory into the shared backups folder."""

    def __init__(self, filesystem: ServerFilesystem):
        self.filesystem = filesystem

    def archive_path(self, server_id: str) -> Path:
        return self.filesystem.backup_folder() / f"{server_id}.{ARCHIVE_EXTENSION}"

    def archive(self, server_id: str) -> ArchiveArtifact:
        self.filesystem.require(server_id)

        source = self.filesystem.server_folder(server_id)
        target = self.archive_path(server_id)

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{server_id}-", suffix='.tmp', dir=str(target.parent))
            os.close(fd)
            try:
                with zipfile.ZipFile(tmp_name, 'w', compression=zipfile.ZIP_DEFLATED) as zf:
                    count = 0
                    for path, arcname in iter_archive_members(source):
                        zf.write(path, arcname)
                        count += 1
                os.replace(tmp_name, target)
            finally:
                if os.path.exists(tmp_name):
                    os.remove(tmp_name)
        except (OSError, zipfile.BadZipFile, ValueError) as e:
            logger.error(f"Failed to zip server files for {server_id}: {e}")
            raise ArchiveFailure(f"Failed to zip server files for {server_id}", e) from e

        try:
            data = target.read_bytes()
        except OSError as e:
            raise ArchiveFailure(f"Failed to read zip for {server_id}", e) from e

        logger.info(f"Archived {count} files for {server_id} to {target} ({len(data)} bytes)")
        return ArchiveArtifact(name=f"{server_id}.{ARCHIVE_EXTENSION}", path=target, data=data)
