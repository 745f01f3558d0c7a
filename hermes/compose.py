"""
Container CLI invoker.

Drives ``docker compose`` inside a server's working directory and the
engine-level ``docker stats`` command, and turns their text/JSON output into
plain Python values. Every call checks that the server exists before any
process is spawned.
"""
import re
import json
import time
import shlex
import logging
import subprocess
from dataclasses import dataclass, asdict
from typing import List, Sequence, Union

from .filesystem import ServerFilesystem
from .config import DEFAULT_LOG_FILTER_PATTERNS
from shared.errors import ProcessFailure, ParseFailure
from shared.state_machine import PAUSED

logger = logging.getLogger(__name__)

LOG_TAIL_CAP = 150


@dataclass
class ContainerSnapshot:
    id: str
    project: str
    state: str
    exit_code: int
    name: str = ''
    service: str = ''
    health: str = ''

    @classmethod
    def from_ps_record(cls, record) -> "ContainerSnapshot":
        if not isinstance(record, dict) or not record.get('ID') or not record.get('State'):
            raise ParseFailure("Malformed container record from ps command")
        try:
            exit_code = int(record.get('ExitCode') or 0)
        except (TypeError, ValueError) as e:
            raise ParseFailure("Malformed exit code in ps output", e) from e
        return cls(
            id=record['ID'],
            project=record.get('Project', ''),
            state=record['State'],
            exit_code=exit_code,
            name=record.get('Name', ''),
            service=record.get('Service', ''),
            health=record.get('Health', ''),
        )

    @property
    def running(self) -> bool:
        return self.state == 'running'

    def to_dict(self):
        data = asdict(self)
        data['running'] = self.running
        return data


@dataclass
class UsageSample:
    container_id: str
    name: str
    cpu_percent: str
    mem_percent: str
    mem_usage: str
    net_io: str
    block_io: str
    pids: str

    @classmethod
    def from_stats_record(cls, record) -> "UsageSample":
        if not isinstance(record, dict) or 'CPUPerc' not in record or 'MemPerc' not in record:
            raise ParseFailure("Malformed usage record from stats command")
        return cls(
            container_id=record.get('ID', ''),
            name=record.get('Name', ''),
            cpu_percent=record['CPUPerc'],
            mem_percent=record['MemPerc'],
            mem_usage=record.get('MemUsage', ''),
            net_io=record.get('NetIO', ''),
            block_io=record.get('BlockIO', ''),
            pids=record.get('PIDs', ''),
        )

    def to_dict(self):
        return asdict(self)


@dataclass
class PlayerCount:
    online: int
    max: int

    def to_dict(self):
        return asdict(self)


def split_lines(output: str) -> List[str]:
    """Trimmed, non-empty lines in their original order."""
    return [line.strip() for line in output.split('\n') if line.strip()]


def parse_json_records(output: str) -> list:
    """Parse either a JSON array or newline-delimited JSON objects."""
    text = output.strip()
    if not text:
        return []

    try:
        parsed = json.loads(text)
    except ValueError:
        try:
            return [json.loads(line) for line in split_lines(text)]
        except ValueError as e:
            raise ParseFailure("Invalid JSON output", e) from e

    if isinstance(parsed, list):
        return parsed
    return [parsed]


class LogFilter:
    """Drops known boilerplate lines from container logs."""

    def __init__(self, patterns: Sequence[str] = None):
        if patterns is None:
            patterns = DEFAULT_LOG_FILTER_PATTERNS
        self.patterns = [re.compile(p) for p in patterns]

    def is_boilerplate(self, line: str) -> bool:
        return any(p.search(line) for p in self.patterns)

    def apply(self, lines: Sequence[str]) -> List[str]:
        result = []
        for line in lines:
            line = line.strip()
            if not line or self.is_boilerplate(line):
                continue
            result.append(line)
        return result


class ComposeInvoker:
    """Runs orchestration commands for a single server's compose project."""

    def __init__(
        self,
        filesystem: ServerFilesystem,
        compose_command: Union[str, Sequence[str]] = ('docker', 'compose'),
        docker_command: str = 'docker',
        service_name: str = 'minecraft',
        timeout: float = 120,
        start_timeout: float = 300,
        stats_settle_delay: float = 0.5,
        log_tail_cap: int = LOG_TAIL_CAP,
        log_filters: Sequence[str] = None
    ):
        self.filesystem = filesystem
        if isinstance(compose_command, str):
            compose_command = shlex.split(compose_command)
        self.compose_command = list(compose_command)
        self.docker_command = docker_command
        self.service_name = service_name
        self.timeout = timeout
        self.start_timeout = start_timeout
        self.stats_settle_delay = stats_settle_delay
        self.log_tail_cap = min(log_tail_cap, LOG_TAIL_CAP)
        self.log_filter = LogFilter(log_filters)

    @classmethod
    def from_config(cls, filesystem: ServerFilesystem, config) -> "ComposeInvoker":
        return cls(
            filesystem,
            compose_command=config.get('COMPOSE_COMMAND', 'docker compose'),
            docker_command=config.get('DOCKER_COMMAND', 'docker'),
            service_name=config.get('GAME_SERVICE_NAME', 'minecraft'),
            timeout=config.get('PROCESS_TIMEOUT', 120),
            start_timeout=config.get('START_TIMEOUT', 300),
            stats_settle_delay=config.get('STATS_SETTLE_DELAY', 0.5),
            log_tail_cap=config.get('LOG_TAIL_CAP', LOG_TAIL_CAP),
            log_filters=config.get('LOG_FILTER_PATTERNS'),
        )

    def _run_compose(self, server_id: str, args: List[str], failure: str,
                     timeout: float = None) -> subprocess.CompletedProcess:
        self.filesystem.require(server_id)

        cmd = self.compose_command + args
        logger.debug(f"[{server_id}] running: {' '.join(cmd)}")

        try:
            result = subprocess.run(
                cmd,
                cwd=str(self.filesystem.server_folder(server_id)),
                capture_output=True,
                text=True,
                errors='replace',
                timeout=timeout or self.timeout
            )
        except subprocess.TimeoutExpired as e:
            raise ProcessFailure(f"{failure}: timed out", command=cmd, cause=e) from e
        except OSError as e:
            raise ProcessFailure(f"{failure}: {e}", command=cmd, cause=e) from e

        if result.returncode != 0:
            logger.error(f"[{server_id}] {' '.join(cmd)} exited with {result.returncode}: {result.stderr.strip()}")
            raise ProcessFailure(
                failure,
                command=cmd,
                exit_code=result.returncode,
                stderr=result.stderr
            )

        return result

    def start(self, server_id: str):
        self._run_compose(server_id, ['up', '-d'], "Failed to start container",
                          timeout=self.start_timeout)

    def stop(self, server_id: str):
        self._run_compose(server_id, ['stop'], "Failed to stop container")

    def exec(self, server_id: str, command: str) -> List[str]:
        """Send a console command through rcon-cli; the text is passed as-is."""
        result = self._run_compose(
            server_id,
            ['exec', '-T', self.service_name, 'rcon-cli', command],
            "Failed to execute command in container"
        )
        return split_lines(result.stdout)

    def logs(self, server_id: str, lines: Union[int, str] = 'all') -> List[str]:
        if lines == 'all':
            tail = self.log_tail_cap
        elif isinstance(lines, int) and not isinstance(lines, bool) and lines >= 0:
            tail = min(lines, self.log_tail_cap)
        else:
            raise ValueError(f"lines must be a non-negative integer or 'all', got {lines!r}")

        result = self._run_compose(
            server_id,
            ['logs', '--no-color', '--tail', str(tail)],
            "Failed to get container logs"
        )
        kept = self.log_filter.apply(result.stdout.split('\n'))
        # --tail applies per service, so several services can exceed the cap.
        return kept[-tail:] if tail else []

    def status(self, server_id: str) -> ContainerSnapshot:
        result = self._run_compose(
            server_id,
            ['ps', '--all', '--format', 'json'],
            "Failed to read container data"
        )
        records = parse_json_records(result.stdout)
        if not records:
            raise ParseFailure("Failed to get any containers from ps command")

        snapshot = ContainerSnapshot.from_ps_record(records[0])

        # The engine cannot report auto-pause; the marker file is the only source.
        if self.filesystem.has_pause_marker(server_id):
            snapshot.state = PAUSED

        return snapshot

    def player_count(self, server_id: str) -> PlayerCount:
        result = self._run_compose(
            server_id,
            ['exec', '-T', self.service_name, 'mc-monitor', 'status'],
            "Failed to execute command getting player count"
        )
        online = re.search(r'online=(\d+)', result.stdout)
        maximum = re.search(r'max=(\d+)', result.stdout)
        if not online or not maximum:
            raise ParseFailure(f"Unexpected mc-monitor output: {result.stdout.strip()[:200]}")
        return PlayerCount(online=int(online.group(1)), max=int(maximum.group(1)))

    def usage_sample(self, container_id: str) -> UsageSample:
        """One-shot ``docker stats`` poll addressed by container id."""
        cmd = [
            self.docker_command, 'stats', container_id,
            '--no-stream', '--no-trunc', '--format', '{{ json . }}'
        ]
        logger.debug(f"running: {' '.join(cmd)}")

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors='replace'
            )
        except OSError as e:
            raise ProcessFailure(f"Failed to get the server usage stats: {e}", command=cmd, cause=e) from e

        try:
            out, err = process.communicate(timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            process.kill()
            process.communicate()
            raise ProcessFailure("Failed to get the server usage stats: timed out", command=cmd, cause=e) from e

        # Output read straight after exit can be truncated.
        if self.stats_settle_delay:
            time.sleep(self.stats_settle_delay)

        if process.returncode != 0:
            raise ProcessFailure(
                "Failed to get the server usage stats",
                command=cmd,
                exit_code=process.returncode,
                stderr=err
            )

        records = parse_json_records(out)
        if not records:
            raise ParseFailure("No usage record returned by stats command")
        return UsageSample.from_stats_record(records[0])
