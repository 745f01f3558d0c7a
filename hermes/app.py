import os
from flask import Flask, request, jsonify

from .config import config
from .models import db
from .filesystem import ServerFilesystem
from .compose import ComposeInvoker
from .archive import ArchiveService
from .state_sync import StateSynchronizer
from .dns import dns_cleanup_from_config
from .lifecycle import ServerLifecycle
from .registry import ServerRegistry
from shared.errors import (
    HermesError,
    ServerNotFound,
    ProcessFailure,
    ParseFailure,
    ArchiveFailure,
    PersistenceFailure,
    PortsExhausted,
    DnsFailure,
    FilesystemFailure,
)
from shared.pubsub import PubSubClient

ERROR_STATUS = {
    ServerNotFound: 404,
    ProcessFailure: 502,
    ParseFailure: 502,
    DnsFailure: 502,
    ArchiveFailure: 500,
    PersistenceFailure: 500,
    FilesystemFailure: 500,
    PortsExhausted: 409,
}


def status_for(error: HermesError) -> int:
    for cls in type(error).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 500


def create_app(config_name: str = None, overrides: dict = None) -> Flask:
    """Application factory for the orchestrator service."""
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config[config_name])
    if overrides:
        app.config.update(overrides)

    db.init_app(app)

    with app.app_context():
        db.create_all()

    filesystem = ServerFilesystem(app.config['SERVERS_ROOT'], app.config['BACKUPS_ROOT'])
    publisher = PubSubClient(app.config['REDIS_URL']) if app.config.get('USE_REDIS') else None

    app.registry = ServerRegistry(
        filesystem,
        app.config['PORT_MIN'],
        app.config['PORT_MAX'],
        service_name=app.config['GAME_SERVICE_NAME']
    )
    app.lifecycle = ServerLifecycle(
        filesystem=filesystem,
        invoker=ComposeInvoker.from_config(filesystem, app.config),
        archiver=ArchiveService(filesystem),
        state=StateSynchronizer(app.config['TIME_UNTIL_DELETION_AFTER_SHUTDOWN']),
        dns=dns_cleanup_from_config(app.config),
        publisher=publisher
    )

    register_error_handlers(app)
    register_api_routes(app)

    return app


def register_error_handlers(app: Flask):

    @app.errorhandler(HermesError)
    def handle_hermes_error(error: HermesError):
        code = status_for(error)
        if code >= 500:
            app.logger.error(f"{request.method} {request.path} failed: {error}")
        return jsonify(error.to_dict()), code


def register_api_routes(app: Flask):
    """Register API routes."""

    # ==================== Records ====================

    @app.route('/api/v1/servers', methods=['GET'])
    def api_list_servers():
        state = request.args.get('state')
        limit = request.args.get('limit', 50, type=int)
        offset = request.args.get('offset', 0, type=int)

        servers = app.registry.list_servers(state=state, limit=limit, offset=offset)
        return jsonify({
            'servers': [s.to_dict() for s in servers],
            'count': len(servers),
            'limit': limit,
            'offset': offset
        })

    @app.route('/api/v1/servers', methods=['POST'])
    def api_create_server():
        data = request.get_json(silent=True) or {}

        title = data.get('title')
        if not title:
            return jsonify({'error': 'Server title is required'}), 400

        environment = data.get('environment') or {}
        if not isinstance(environment, dict):
            return jsonify({'error': 'environment must be an object'}), 400

        try:
            server = app.registry.create_server(
                title=title,
                subdomain=data.get('subdomain'),
                can_be_deleted=bool(data.get('can_be_deleted', True)),
                environment=environment
            )
        except ValueError as e:
            return jsonify({'error': str(e)}), 400

        return jsonify({
            'message': 'Server created',
            'server': server.to_dict()
        }), 201

    @app.route('/api/v1/servers/<server_id>', methods=['GET'])
    def api_get_server(server_id: str):
        server = app.registry.get_server(server_id)
        if not server:
            return jsonify({'error': "This server doesn't exist"}), 404
        return jsonify(server.to_dict())

    @app.route('/api/v1/servers/<server_id>', methods=['DELETE'])
    def api_remove_server(server_id: str):
        force = request.args.get('force', 'false').lower() == 'true'
        app.lifecycle.remove(server_id, force=force)
        return jsonify({'message': 'Server removed'})

    # ==================== Lifecycle ====================

    @app.route('/api/v1/servers/<server_id>/start', methods=['POST'])
    def api_start_server(server_id: str):
        app.lifecycle.start(server_id)
        return jsonify({
            'action': 'start',
            'server': app.registry.get_server(server_id).to_dict()
        })

    @app.route('/api/v1/servers/<server_id>/stop', methods=['POST'])
    def api_stop_server(server_id: str):
        app.lifecycle.stop(server_id)
        return jsonify({
            'action': 'stop',
            'server': app.registry.get_server(server_id).to_dict()
        })

    @app.route('/api/v1/servers/<server_id>/command', methods=['POST'])
    def api_send_command(server_id: str):
        data = request.get_json(silent=True) or {}
        command = data.get('command')
        if not isinstance(command, str) or not command.strip():
            return jsonify({'error': 'command is required'}), 400

        output = app.lifecycle.command(server_id, command)
        return jsonify({'action': 'command', 'value': output})

    # ==================== Queries ====================

    @app.route('/api/v1/servers/<server_id>/logs', methods=['GET'])
    def api_server_logs(server_id: str):
        lines = request.args.get('lines', 'all')
        if lines != 'all':
            try:
                lines = int(lines)
            except ValueError:
                return jsonify({'error': "lines must be an integer or 'all'"}), 400
            if lines < 0:
                return jsonify({'error': "lines must not be negative"}), 400

        return jsonify({'action': 'logs', 'value': app.lifecycle.logs(server_id, lines)})

    @app.route('/api/v1/servers/<server_id>/status', methods=['GET'])
    def api_server_status(server_id: str):
        return jsonify(app.lifecycle.status(server_id).to_dict())

    @app.route('/api/v1/servers/<server_id>/usage', methods=['GET'])
    def api_server_usage(server_id: str):
        return jsonify(app.lifecycle.usage(server_id).to_dict())

    @app.route('/api/v1/servers/<server_id>/players', methods=['GET'])
    def api_server_players(server_id: str):
        return jsonify(app.lifecycle.players(server_id).to_dict())

    @app.route('/api/v1/servers/<server_id>/events', methods=['GET'])
    def api_server_events(server_id: str):
        count = request.args.get('count', 50, type=int)
        if count < 1:
            return jsonify({'error': 'count must be positive'}), 400

        events = app.lifecycle.recent_events(server_id, count)
        return jsonify({'events': [e.to_dict() for e in events]})

    # ==================== Health Check ====================

    @app.route('/health')
    def health_check():
        try:
            db.session.execute(db.text('SELECT 1'))
            db_ok = True
        except Exception:
            db_ok = False

        status = 'healthy' if db_ok else 'unhealthy'
        return jsonify({
            'status': status,
            'database': 'connected' if db_ok else 'disconnected'
        }), 200 if db_ok else 503
