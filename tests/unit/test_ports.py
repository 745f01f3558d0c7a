"""
Unit tests for port allocation.
Tests: allocate_port, used_ports, reserve_port
"""
import pytest
from sqlalchemy.exc import IntegrityError

from hermes.ports import allocate_port, reserve_port, used_ports
from hermes.models import db, GameServer
from shared.errors import PortsExhausted, PersistenceFailure


class TestAllocatePort:
    """Tests for the pure linear-scan allocator."""

    def test_first_gap_is_returned(self):
        assert allocate_port({25565, 25566, 25568}, 25565, 25570) == 25567

    def test_empty_set_returns_min(self):
        assert allocate_port(set(), 25565, 25570) == 25565

    def test_last_port_in_range(self):
        used = set(range(25565, 25570))
        assert allocate_port(used, 25565, 25570) == 25570

    def test_full_range_is_exhausted(self):
        used = set(range(25565, 25571))
        with pytest.raises(PortsExhausted) as exc_info:
            allocate_port(used, 25565, 25570)
        assert exc_info.value.port_min == 25565
        assert exc_info.value.port_max == 25570

    def test_ports_outside_range_are_ignored(self):
        assert allocate_port({80, 443, 25565}, 25565, 25570) == 25566

    def test_deterministic(self):
        used = [25565, 25567]
        assert allocate_port(used, 25565, 25570) == allocate_port(used, 25565, 25570)


class TestReservePort:
    """Tests for allocate-and-persist."""

    def _creator(self, server_id):
        def create(port):
            server = GameServer(id=server_id, title=server_id, port=port)
            db.session.add(server)
            db.session.commit()
            return server
        return create

    def test_reserve_persists_record(self, app):
        server = reserve_port(25565, 25570, self._creator('a'))
        assert server.port == 25565
        assert used_ports() == {25565}

    def test_consecutive_reservations_get_distinct_ports(self, app):
        first = reserve_port(25565, 25570, self._creator('a'))
        second = reserve_port(25565, 25570, self._creator('b'))
        assert first.port != second.port
        assert second.port == 25566

    def test_reserve_reuses_freed_gap(self, app, make_server):
        make_server('a', port=25565, with_folder=False)
        make_server('c', port=25567, with_folder=False)
        server = reserve_port(25565, 25570, self._creator('b'))
        assert server.port == 25566

    def test_exhausted_range_creates_nothing(self, app, make_server):
        make_server('a', port=25565, with_folder=False)
        creator_calls = []
        with pytest.raises(PortsExhausted):
            reserve_port(25565, 25565, lambda port: creator_calls.append(port))
        assert creator_calls == []

    def test_double_claim_becomes_persistence_failure(self, app):
        def create(port):
            raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))

        with pytest.raises(PersistenceFailure) as exc_info:
            reserve_port(25565, 25570, create)
        assert isinstance(exc_info.value.cause, IntegrityError)
