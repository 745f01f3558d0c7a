from typing import Optional, Sequence


class HermesError(Exception):
    """Base for every failure raised by the orchestration layer."""

    category = "error"

    def __init__(self, message: str, cause: Exception = None):
        self.message = message
        self.cause = cause
        super().__init__(message)
        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> dict:
        data = {
            "error": self.message,
            "type": self.category,
        }
        if self.cause is not None:
            data["cause"] = str(self.cause)
        return data


class ServerNotFound(HermesError):
    category = "not_found"

    def __init__(self, server_id: str, message: str = None):
        self.server_id = server_id
        super().__init__(message or f"Server not found: {server_id}")


class ProcessFailure(HermesError):
    category = "process_failure"

    def __init__(
        self,
        message: str,
        command: Sequence[str] = None,
        exit_code: Optional[int] = None,
        stderr: str = "",
        cause: Exception = None
    ):
        self.command = list(command) if command else []
        self.exit_code = exit_code
        self.stderr = stderr or ""
        super().__init__(message, cause)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["exit_code"] = self.exit_code
        if self.stderr:
            data["stderr"] = self.stderr.strip()[-500:]
        return data


class ParseFailure(HermesError):
    category = "parse_failure"


class ArchiveFailure(HermesError):
    category = "archive_failure"


class PersistenceFailure(HermesError):
    category = "persistence_failure"


class PortsExhausted(HermesError):
    category = "ports_exhausted"

    def __init__(self, port_min: int, port_max: int):
        self.port_min = port_min
        self.port_max = port_max
        super().__init__(f"No available ports in range {port_min}-{port_max}")


class DnsFailure(HermesError):
    category = "dns_failure"


class FilesystemFailure(HermesError):
    category = "filesystem_failure"
