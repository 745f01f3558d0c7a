"""
Pytest configuration and fixtures for orchestrator tests.
"""
import os
import sys
import subprocess
import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

# Set testing environment before importing app
os.environ['FLASK_ENV'] = 'testing'

from hermes.app import create_app
from hermes.models import db, GameServer


@pytest.fixture
def app(tmp_path):
    """Create application for testing with throwaway server/backup roots."""
    app = create_app('testing', overrides={
        'SERVERS_ROOT': str(tmp_path / 'servers'),
        'BACKUPS_ROOT': str(tmp_path / 'backups'),
        'PORT_MIN': 25565,
        'PORT_MAX': 25570,
        'TIME_UNTIL_DELETION_AFTER_SHUTDOWN': 168,
    })
    (tmp_path / 'servers').mkdir()

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def filesystem(app):
    return app.lifecycle.filesystem


@pytest.fixture
def make_server(app, filesystem):
    """Factory creating a server record plus its working directory."""
    def _make(server_id='srv001', port=25565, state='stopped', can_be_deleted=True,
              with_folder=True, **fields):
        server = GameServer(
            id=server_id,
            title=fields.pop('title', 'Test Server'),
            port=port,
            state=state,
            can_be_deleted=can_be_deleted,
            **fields
        )
        db.session.add(server)
        db.session.commit()

        if with_folder:
            files = filesystem.server_files_folder(server_id)
            files.mkdir(parents=True)
            (filesystem.server_folder(server_id) / 'docker-compose.yml').write_text('services: {}\n')
            (files / 'server.properties').write_text('motd=hello\n')
            (files / 'world').mkdir()
            (files / 'world' / 'level.dat').write_bytes(b'\x00level')
        return server

    return _make


@pytest.fixture
def completed():
    """Build a CompletedProcess like subprocess.run returns."""
    def _completed(stdout='', stderr='', returncode=0, args=None):
        return subprocess.CompletedProcess(args or [], returncode, stdout=stdout, stderr=stderr)
    return _completed


@pytest.fixture
def mock_run(mocker, completed):
    """Patch subprocess.run as seen by the compose invoker."""
    return mocker.patch('hermes.compose.subprocess.run', return_value=completed())
