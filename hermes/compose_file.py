import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Union

import yaml

COMPOSE_FILENAME = 'docker-compose.yml'
ENV_KEY_PATTERN = re.compile(r'[A-Z][A-Z0-9_]*')

EnvValue = Union[str, int, float, bool]


@dataclass
class Healthcheck:
    test: str = 'mc-health'
    start_period: str = '1m'
    interval: str = '5s'
    retries: int = 20

    def to_dict(self):
        return {
            'test': self.test,
            'start_period': self.start_period,
            'interval': self.interval,
            'retries': self.retries,
        }


@dataclass
class ComposeDefinition:
    """Orchestration definition for one game server.

    Values go through the YAML emitter, so titles, MOTDs and other user text
    are quoted and escaped rather than pasted into a template.
    """
    port: int
    service_name: str = 'minecraft'
    image: str = 'itzg/minecraft-server'
    container_port: int = 25565
    volumes: List[str] = field(default_factory=lambda: ['./server-files:/data'])
    restart: str = 'no'
    environment: Dict[str, EnvValue] = field(default_factory=dict)
    healthcheck: Healthcheck = field(default_factory=Healthcheck)

    def __post_init__(self):
        for port in (self.port, self.container_port):
            if not isinstance(port, int) or isinstance(port, bool) or not 1 <= port <= 65535:
                raise ValueError(f"Invalid port: {port!r}")
        for key in self.environment:
            self._check_key(key)

    @staticmethod
    def _check_key(key: str):
        if not isinstance(key, str) or not ENV_KEY_PATTERN.fullmatch(key):
            raise ValueError(f"Invalid environment variable name: {key!r}")

    @staticmethod
    def _format_value(value: EnvValue) -> str:
        if isinstance(value, bool):
            return 'true' if value else 'false'
        return str(value)

    def set_variable(self, key: str, value: EnvValue) -> "ComposeDefinition":
        self._check_key(key)
        self.environment[key] = value
        return self

    def to_dict(self) -> dict:
        return {
            'services': {
                self.service_name: {
                    'image': self.image,
                    'ports': [f"{self.port}:{self.container_port}"],
                    'volumes': list(self.volumes),
                    'environment': {k: self._format_value(v) for k, v in self.environment.items()},
                    'restart': self.restart,
                    'healthcheck': self.healthcheck.to_dict(),
                }
            }
        }

    def render(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False, default_flow_style=False, allow_unicode=True)

    def write(self, folder: Union[str, Path]) -> Path:
        path = Path(folder) / COMPOSE_FILENAME
        path.write_text(self.render(), encoding='utf-8')
        return path
