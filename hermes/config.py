import os


DEFAULT_LOG_FILTER_PATTERNS = [
    r'.*(RCON Listener).*(Thread RCON Client).*(started).*',
    r'.*(RCON Client).*(Thread RCON Client).*(shutting down).*',
]


def _patterns_from_env(name: str, default: list) -> list:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [p for p in (line.strip() for line in raw.splitlines()) if p]


class Config:
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-prod')
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    # Database
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///hermes.db')
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Redis
    REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379')
    USE_REDIS = os.getenv('USE_REDIS', 'false').lower() == 'true'

    # Server layout
    SERVERS_ROOT = os.getenv('SERVERS_ROOT', 'servers')
    BACKUPS_ROOT = os.getenv('BACKUPS_ROOT', os.path.join(SERVERS_ROOT, 'backups'))

    # Port range handed out to new servers
    PORT_MIN = int(os.getenv('PORT_MIN', '25565'))
    PORT_MAX = int(os.getenv('PORT_MAX', '25665'))

    # Hours after shutdown until a deletable server may be removed
    TIME_UNTIL_DELETION_AFTER_SHUTDOWN = int(os.getenv('TIME_UNTIL_DELETION_AFTER_SHUTDOWN', '168'))

    # Docker settings
    COMPOSE_COMMAND = os.getenv('COMPOSE_COMMAND', 'docker compose')
    DOCKER_COMMAND = os.getenv('DOCKER_COMMAND', 'docker')
    GAME_SERVICE_NAME = os.getenv('GAME_SERVICE_NAME', 'minecraft')
    PROCESS_TIMEOUT = int(os.getenv('PROCESS_TIMEOUT', '120'))
    START_TIMEOUT = int(os.getenv('START_TIMEOUT', '300'))
    STATS_SETTLE_DELAY = float(os.getenv('STATS_SETTLE_DELAY', '0.5'))
    LOG_TAIL_CAP = 150
    LOG_FILTER_PATTERNS = _patterns_from_env('LOG_FILTER_PATTERNS', DEFAULT_LOG_FILTER_PATTERNS)

    # Cloudflare DNS cleanup
    CLOUDFLARE_API_TOKEN = os.getenv('CLOUDFLARE_API_TOKEN', '')
    CLOUDFLARE_ZONE_ID = os.getenv('CLOUDFLARE_ZONE_ID', '')


class DevelopmentConfig(Config):
    DEBUG = True
    LOG_LEVEL = 'DEBUG'


class ProductionConfig(Config):
    DEBUG = False
    USE_REDIS = True


class TestingConfig(Config):
    TESTING = True
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    USE_REDIS = False
    STATS_SETTLE_DELAY = 0
    CLOUDFLARE_API_TOKEN = ''


config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
