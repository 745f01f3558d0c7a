"""
Unit tests for ServerLifecycle.
The container invoker is mocked; filesystem, archive and records are real.
"""
import threading
import time
from unittest.mock import MagicMock
import pytest

from hermes.lifecycle import ServerLifecycle
from hermes.compose import ComposeInvoker, ContainerSnapshot, UsageSample
from hermes.archive import ArchiveService
from hermes.state_sync import StateSynchronizer
from hermes.dns import DnsCleanup
from hermes.models import db, GameServer
from shared.errors import (
    ServerNotFound, ProcessFailure, ArchiveFailure, DnsFailure, FilesystemFailure
)
from shared.events import EventType, server_removed_event


@pytest.fixture
def invoker():
    return MagicMock(spec=ComposeInvoker)


@pytest.fixture
def dns():
    return MagicMock(spec=DnsCleanup)


@pytest.fixture
def publisher():
    return MagicMock()


@pytest.fixture
def lifecycle(app, filesystem, invoker, dns, publisher):
    return ServerLifecycle(
        filesystem=filesystem,
        invoker=invoker,
        archiver=ArchiveService(filesystem),
        state=StateSynchronizer(deletion_ttl_hours=168),
        dns=dns,
        publisher=publisher
    )


def record(server_id='srv001'):
    db.session.expire_all()
    return db.session.get(GameServer, server_id)


class TestStart:

    def test_start_marks_running(self, lifecycle, invoker, make_server):
        make_server('srv001')
        lifecycle.start('srv001')

        invoker.start.assert_called_once_with('srv001')
        server = record()
        assert server.state == 'running'
        assert server.start_date is not None

    def test_start_failure_leaves_record(self, lifecycle, invoker, make_server):
        make_server('srv001')
        invoker.start.side_effect = ProcessFailure("compose up failed", exit_code=1)

        with pytest.raises(ProcessFailure):
            lifecycle.start('srv001')

        server = record()
        assert server.state == 'stopped'
        assert server.start_date is None

    def test_unknown_server_touches_nothing(self, lifecycle, invoker):
        with pytest.raises(ServerNotFound):
            lifecycle.start('ghost')
        assert invoker.method_calls == []

    def test_stale_record_state_does_not_block(self, lifecycle, invoker, make_server):
        make_server('srv001', state='running')
        lifecycle.start('srv001')
        invoker.start.assert_called_once_with('srv001')

    def test_publishes_started_event(self, lifecycle, publisher, make_server):
        make_server('srv001', port=25566)
        lifecycle.start('srv001')

        server_id, event = publisher.publish_server_event.call_args[0]
        assert server_id == 'srv001'
        assert event.type == EventType.SERVER_STARTED
        assert event.data == {'port': 25566}

    def test_publish_failure_is_not_raised(self, lifecycle, publisher, make_server):
        make_server('srv001')
        publisher.publish_server_event.side_effect = ConnectionError("redis down")
        lifecycle.start('srv001')
        assert record().state == 'running'


class TestStop:

    def test_stop_archives_and_marks_stopped(self, lifecycle, invoker, filesystem, make_server):
        make_server('srv001', state='running')
        lifecycle.stop('srv001')

        invoker.stop.assert_called_once_with('srv001')
        server = record()
        assert server.state == 'stopped'
        assert server.archive_name == 'srv001.zip'
        assert server.archive_data
        assert server.deletion_date is not None
        assert (filesystem.backup_folder() / 'srv001.zip').exists()

    def test_non_deletable_server_has_no_deletion_date(self, lifecycle, make_server):
        make_server('srv001', state='running', can_be_deleted=False)
        lifecycle.stop('srv001')
        assert record().deletion_date is None

    def test_stop_failure_writes_no_archive(self, lifecycle, invoker, filesystem, make_server):
        make_server('srv001', state='running')
        invoker.stop.side_effect = ProcessFailure("compose stop failed", exit_code=1)

        with pytest.raises(ProcessFailure):
            lifecycle.stop('srv001')

        assert not (filesystem.backup_folder() / 'srv001.zip').exists()
        server = record()
        assert server.state == 'running'
        assert server.archive_data is None

    def test_archive_failure_leaves_record_running(self, lifecycle, invoker, make_server, mocker):
        make_server('srv001', state='running')
        mocker.patch('hermes.archive.zipfile.ZipFile', side_effect=OSError('disk full'))

        with pytest.raises(ArchiveFailure):
            lifecycle.stop('srv001')

        # The container was already stopped; nothing restarts it.
        invoker.stop.assert_called_once_with('srv001')
        invoker.start.assert_not_called()
        server = record()
        assert server.state == 'running'
        assert server.shutdown_date is None

    def test_publishes_stopped_event(self, lifecycle, publisher, make_server):
        make_server('srv001', state='running')
        lifecycle.stop('srv001')

        _, event = publisher.publish_server_event.call_args[0]
        assert event.type == EventType.SERVER_STOPPED
        assert event.data['archive'] == 'srv001.zip'


class TestRemove:

    def test_remove_deletes_everything(self, lifecycle, invoker, dns, filesystem, make_server):
        make_server('srv001', state='running',
                    cloudflare_cname_record_id='cname1', cloudflare_srv_record_id='srv1')
        lifecycle.remove('srv001')

        invoker.stop.assert_called_once_with('srv001')
        dns.remove_records.assert_called_once_with('cname1', 'srv1')
        assert not filesystem.server_folder('srv001').exists()
        assert record() is None

    def test_remove_continues_when_stop_fails(self, lifecycle, invoker, filesystem, make_server):
        make_server('srv001', state='running')
        invoker.stop.side_effect = ProcessFailure("compose stop failed", exit_code=1)

        lifecycle.remove('srv001')

        assert not filesystem.server_folder('srv001').exists()
        assert record() is None

    def test_remove_continues_when_folder_removal_fails(self, lifecycle, filesystem, make_server, mocker):
        make_server('srv001')
        mocker.patch.object(filesystem, 'remove_all', side_effect=FilesystemFailure("busy"))

        lifecycle.remove('srv001')
        assert record() is None

    def test_dns_failure_keeps_record(self, lifecycle, dns, make_server):
        make_server('srv001', cloudflare_cname_record_id='cname1')
        dns.remove_records.side_effect = DnsFailure("HTTP 500")

        with pytest.raises(DnsFailure):
            lifecycle.remove('srv001')
        assert record() is not None

    def test_force_is_forwarded(self, lifecycle, filesystem, make_server, mocker):
        make_server('srv001')
        remove_all = mocker.spy(filesystem, 'remove_all')
        lifecycle.remove('srv001', force=True)
        remove_all.assert_called_once_with('srv001', force=True)

    def test_unknown_server(self, lifecycle, invoker, dns):
        with pytest.raises(ServerNotFound):
            lifecycle.remove('ghost')
        assert invoker.method_calls == []
        dns.remove_records.assert_not_called()

    def test_publishes_removed_event(self, lifecycle, publisher, make_server):
        make_server('srv001')
        lifecycle.remove('srv001')

        _, event = publisher.publish_server_event.call_args[0]
        assert event.type == EventType.SERVER_REMOVED

    def test_lock_entry_is_released(self, lifecycle, make_server):
        make_server('srv001')
        lifecycle.remove('srv001')
        assert 'srv001' not in lifecycle._locks

    def test_lock_entry_kept_when_remove_fails(self, lifecycle, dns, make_server):
        make_server('srv001')
        dns.remove_records.side_effect = DnsFailure("HTTP 500")
        with pytest.raises(DnsFailure):
            lifecycle.remove('srv001')
        assert 'srv001' in lifecycle._locks


class TestPassThrough:

    def test_command(self, lifecycle, invoker, make_server):
        make_server('srv001')
        invoker.exec.return_value = ['There are 0 of a max of 20 players online:']
        assert lifecycle.command('srv001', 'list') == ['There are 0 of a max of 20 players online:']
        invoker.exec.assert_called_once_with('srv001', 'list')

    def test_command_text_is_forwarded_unchanged(self, lifecycle, invoker, make_server):
        make_server('srv001')
        lifecycle.command('srv001', '  say "hi" ; stop  ')
        invoker.exec.assert_called_once_with('srv001', '  say "hi" ; stop  ')

    def test_recent_events(self, lifecycle, publisher, make_server):
        make_server('srv001')
        publisher.get_recent_events.return_value = [server_removed_event('srv001')]
        events = lifecycle.recent_events('srv001', 5)
        publisher.get_recent_events.assert_called_once_with('srv001', 5)
        assert events[0].type == EventType.SERVER_REMOVED

    def test_recent_events_without_publisher(self, lifecycle, make_server):
        make_server('srv001')
        lifecycle.publisher = None
        assert lifecycle.recent_events('srv001') == []

    def test_logs(self, lifecycle, invoker, make_server):
        make_server('srv001')
        lifecycle.logs('srv001', 10)
        invoker.logs.assert_called_once_with('srv001', 10)

    def test_usage_uses_container_id_from_status(self, lifecycle, invoker, make_server):
        make_server('srv001')
        invoker.status.return_value = ContainerSnapshot(id='c0ffee', project='srv001', state='running', exit_code=0)
        sample = UsageSample(container_id='c0ffee', name='srv001-minecraft-1', cpu_percent='1.00%',
                             mem_percent='10.00%', mem_usage='1GiB / 10GiB', net_io='1kB / 1kB',
                             block_io='0B / 0B', pids='40')
        invoker.usage_sample.return_value = sample

        assert lifecycle.usage('srv001') is sample
        invoker.usage_sample.assert_called_once_with('c0ffee')

    @pytest.mark.parametrize('method,args', [
        ('command', ('list',)),
        ('logs', ()),
        ('status', ()),
        ('players', ()),
        ('usage', ()),
        ('recent_events', ()),
    ])
    def test_unknown_server(self, lifecycle, invoker, method, args):
        with pytest.raises(ServerNotFound):
            getattr(lifecycle, method)('ghost', *args)
        assert invoker.method_calls == []


class TestLocking:

    def _folder(self, filesystem, server_id):
        filesystem.server_files_folder(server_id).mkdir(parents=True)

    def test_same_server_is_serialized(self, lifecycle, invoker, filesystem):
        self._folder(filesystem, 'srv001')
        events = []

        def slow_exec(server_id, command):
            events.append(('enter', command))
            time.sleep(0.05)
            events.append(('exit', command))
            return []

        invoker.exec.side_effect = slow_exec
        threads = [
            threading.Thread(target=lifecycle.command, args=('srv001', name))
            for name in ('a', 'b')
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert [kind for kind, _ in events] == ['enter', 'exit', 'enter', 'exit']
        assert events[0][1] == events[1][1]

    def test_different_servers_run_concurrently(self, lifecycle, invoker, filesystem):
        self._folder(filesystem, 'srv001')
        self._folder(filesystem, 'srv002')
        barrier = threading.Barrier(2, timeout=2)
        results = []

        def meet(server_id, command):
            # Only returns if both servers are inside exec at the same time.
            barrier.wait()
            results.append(server_id)
            return []

        invoker.exec.side_effect = meet
        threads = [
            threading.Thread(target=lifecycle.command, args=(server_id, 'list'))
            for server_id in ('srv001', 'srv002')
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(results) == ['srv001', 'srv002']
        assert not barrier.broken
