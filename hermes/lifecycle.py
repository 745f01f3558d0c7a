import logging
import threading
from contextlib import contextmanager
from typing import Dict, List, Union

from .filesystem import ServerFilesystem
from .compose import ComposeInvoker, ContainerSnapshot, UsageSample, PlayerCount
from .archive import ArchiveService
from .state_sync import StateSynchronizer
from .dns import DnsCleanup, NullDnsCleanup
from shared.errors import HermesError
from shared.events import Event, server_started_event, server_stopped_event, server_removed_event
from shared.state_machine import ServerStateMachine, TransitionError

logger = logging.getLogger(__name__)


class ServerLifecycle:
    """
    Sequences the filesystem, container, archive and record steps into the
    public server operations.

    Operations on the same server id run one at a time; different servers
    are independent. Nothing here retries or rolls back: the first error of a
    multi-step operation is raised and earlier steps stay done.
    """

    def __init__(
        self,
        filesystem: ServerFilesystem,
        invoker: ComposeInvoker,
        archiver: ArchiveService,
        state: StateSynchronizer,
        dns: DnsCleanup = None,
        publisher=None
    ):
        self.filesystem = filesystem
        self.invoker = invoker
        self.archiver = archiver
        self.state = state
        self.dns = dns or NullDnsCleanup()
        self.publisher = publisher
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, server_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(server_id)
            if lock is None:
                lock = self._locks[server_id] = threading.Lock()
            return lock

    @contextmanager
    def exclusive(self, server_id: str):
        """Hold the server's lock for the duration of an operation."""
        lock = self._lock_for(server_id)
        with lock:
            yield

    def _publish(self, event):
        if not self.publisher:
            return
        try:
            self.publisher.publish_server_event(event.server_id, event)
        except Exception as e:
            # Events are advisory; the operation itself already succeeded.
            logger.warning(f"Failed to publish {event.type} for {event.server_id}: {e}")

    def _check_transition(self, server_id: str, action: str):
        try:
            record = self.state.get(server_id)
        except HermesError:
            return
        sm = ServerStateMachine.from_state_string(record.state)
        try:
            sm.transition(action)
        except TransitionError as e:
            # The container is the source of truth; a stale record does not block.
            logger.warning(f"[{server_id}] {e}; continuing")

    # ==================== State-changing operations ====================

    def start(self, server_id: str):
        with self.exclusive(server_id):
            self.filesystem.require(server_id)
            self._check_transition(server_id, 'start')

            self.invoker.start(server_id)
            server = self.state.on_start(server_id)

        logger.info(f"Started server {server_id}")
        self._publish(server_started_event(server_id, server.port))

    def stop(self, server_id: str):
        with self.exclusive(server_id):
            server = self._stop(server_id)

        self._publish(server_stopped_event(
            server_id,
            server.archive_name,
            server.deletion_date.isoformat() if server.deletion_date else None
        ))

    def _stop(self, server_id: str):
        self.filesystem.require(server_id)
        self._check_transition(server_id, 'stop')

        self.invoker.stop(server_id)
        artifact = self.archiver.archive(server_id)
        record = self.state.get(server_id)
        server = self.state.on_stop(server_id, record.can_be_deleted, artifact)

        logger.info(f"Stopped server {server_id}, backup {artifact.name} ({artifact.size} bytes)")
        return server

    def remove(self, server_id: str, force: bool = False):
        with self.exclusive(server_id):
            self.filesystem.require(server_id)

            try:
                self._stop(server_id)
            except HermesError as e:
                logger.warning(f"[{server_id}] stop before removal failed, continuing: {e}")

            record = self.state.get(server_id)
            cname_id = record.cloudflare_cname_record_id
            srv_id = record.cloudflare_srv_record_id

            try:
                self.filesystem.remove_all(server_id, force=force)
            except HermesError as e:
                # Leftover files do not keep the record alive.
                logger.warning(f"[{server_id}] {e}; continuing with removal")

            self.dns.remove_records(cname_id, srv_id)
            self.state.on_remove(server_id)

            with self._locks_guard:
                self._locks.pop(server_id, None)

        logger.info(f"Removed server {server_id}")
        self._publish(server_removed_event(server_id))

    # ==================== Pass-through operations ====================

    def command(self, server_id: str, command: str) -> List[str]:
        with self.exclusive(server_id):
            self.filesystem.require(server_id)
            return self.invoker.exec(server_id, command)

    def logs(self, server_id: str, lines: Union[int, str] = 'all') -> List[str]:
        self.filesystem.require(server_id)
        return self.invoker.logs(server_id, lines)

    def status(self, server_id: str) -> ContainerSnapshot:
        self.filesystem.require(server_id)
        return self.invoker.status(server_id)

    def players(self, server_id: str) -> PlayerCount:
        self.filesystem.require(server_id)
        return self.invoker.player_count(server_id)

    def usage(self, server_id: str) -> UsageSample:
        self.filesystem.require(server_id)
        snapshot = self.invoker.status(server_id)
        return self.invoker.usage_sample(snapshot.id)

    def recent_events(self, server_id: str, count: int = 50) -> List[Event]:
        self.filesystem.require(server_id)
        if not self.publisher:
            return []
        return self.publisher.get_recent_events(server_id, count)
