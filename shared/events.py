from enum import Enum
from dataclasses import dataclass
from datetime import datetime
import json


class EventType(str, Enum):
    SERVER_STARTED = "server.started"
    SERVER_STOPPED = "server.stopped"
    SERVER_REMOVED = "server.removed"


@dataclass
class Event:
    type: EventType
    server_id: str
    timestamp: str = None
    data: dict = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.utcnow().isoformat() + "Z"
        if self.data is None:
            self.data = {}

    def to_dict(self) -> dict:
        return {
            "type": self.type.value if isinstance(self.type, EventType) else self.type,
            "server_id": self.server_id,
            "timestamp": self.timestamp,
            "data": self.data
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict) -> "Event":
        return cls(
            type=EventType(data["type"]) if data["type"] in [e.value for e in EventType] else data["type"],
            server_id=data["server_id"],
            timestamp=data.get("timestamp"),
            data=data.get("data", {})
        )

    @classmethod
    def from_json(cls, json_str: str) -> "Event":
        return cls.from_dict(json.loads(json_str))


def server_started_event(server_id: str, port: int = None) -> Event:
    return Event(
        type=EventType.SERVER_STARTED,
        server_id=server_id,
        data={"port": port}
    )


def server_stopped_event(server_id: str, archive_name: str, deletion_date: str = None) -> Event:
    return Event(
        type=EventType.SERVER_STOPPED,
        server_id=server_id,
        data={
            "archive": archive_name,
            "deletion_date": deletion_date
        }
    )


def server_removed_event(server_id: str) -> Event:
    return Event(type=EventType.SERVER_REMOVED, server_id=server_id)
