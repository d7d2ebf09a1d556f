"""
Tests for configuration, the authority lease and sessions.
"""

import asyncio

import pytest

from ..config import VisageConfig
from ..engine_core.errors import NotAuthoritative
from ..host.memory import MemoryStore
from ..session.lease import AuthorityLease
from ..session.manager import SessionManager, SessionState
from .conftest import FakeClock


class TestConfig:

    def test_defaults(self):
        config = VisageConfig.from_env({})
        assert config.env == "development"
        assert config.data_dir is None
        assert config.lease_ttl == 30.0
        assert config.bin_retention_days == 30.0
        assert config.allowed_origins == ["*"]
        assert config.authority_id

    def test_from_env(self):
        config = VisageConfig.from_env({
            "VISAGE_DATA_DIR": "/tmp/visage",
            "VISAGE_LOG_LEVEL": "debug",
            "VISAGE_AUTHORITY_ID": "gm-client",
            "VISAGE_LEASE_TTL": "5",
            "ALLOWED_ORIGINS": "http://a.test, http://b.test,",
        })
        assert config.data_dir == "/tmp/visage"
        assert config.log_level == "DEBUG"
        assert config.authority_id == "gm-client"
        assert config.lease_ttl == 5.0
        assert config.allowed_origins == ["http://a.test", "http://b.test"]

    @pytest.mark.parametrize("value", ["0", "-1", "soon"])
    def test_invalid_ttl(self, value):
        with pytest.raises(ValueError):
            VisageConfig.from_env({"VISAGE_LEASE_TTL": value})


class TestLease:

    def test_single_holder(self):
        lease = AuthorityLease(ttl=30, clock=FakeClock())
        assert lease.acquire("gm")
        assert not lease.acquire("player")
        assert lease.acquire("gm")
        assert lease.holder == "gm"

    def test_expiry_and_takeover(self):
        clock = FakeClock()
        lease = AuthorityLease(ttl=30, clock=clock)
        lease.acquire("gm")
        clock.advance(31)
        assert lease.holder is None
        assert not lease.renew("gm")
        assert lease.acquire("player")
        assert lease.is_holder("player")

    def test_renew_extends(self):
        clock = FakeClock()
        lease = AuthorityLease(ttl=30, clock=clock)
        lease.acquire("gm")
        clock.advance(20)
        assert lease.renew("gm")
        clock.advance(20)
        assert lease.is_holder("gm")

    def test_release(self):
        lease = AuthorityLease(ttl=30, clock=FakeClock())
        lease.acquire("gm")
        lease.release("player")
        assert lease.holder == "gm"
        lease.release("gm")
        assert lease.holder is None

    def test_ensure(self):
        lease = AuthorityLease(ttl=30, clock=FakeClock())
        lease.acquire("gm")
        lease.ensure("gm")
        with pytest.raises(NotAuthoritative):
            lease.ensure("player")

    def test_ttl_must_be_positive(self):
        with pytest.raises(ValueError):
            AuthorityLease(ttl=0)


class TestSession:

    def test_start_authoritative(self):
        manager = SessionManager(VisageConfig(authority_id="gm"))
        session = manager.create_session()
        assert asyncio.run(session.start())
        assert session.state == SessionState.ACTIVE
        assert session.is_authoritative
        assert session.bus.subscriber_count == 1

    def test_second_session_observes(self):
        lease = AuthorityLease(ttl=30)
        store = MemoryStore()
        gm = SessionManager(VisageConfig(authority_id="gm")).create_session(store=store, lease=lease)
        player = SessionManager(VisageConfig(authority_id="player")).create_session(store=store, lease=lease)

        async def scenario():
            return await gm.start(), await player.start()

        assert asyncio.run(scenario()) == (True, False)
        assert player.state == SessionState.OBSERVING
        assert player.bus.subscriber_count == 0

    def test_heartbeat_loses_lease(self):
        clock = FakeClock()
        lease = AuthorityLease(ttl=30, clock=clock)
        session = SessionManager(VisageConfig(authority_id="gm")).create_session(lease=lease)
        asyncio.run(session.start())
        assert session.heartbeat()
        clock.advance(31)
        lease.acquire("other")
        assert not session.heartbeat()
        assert session.state == SessionState.OBSERVING

    def test_operator_edit_without_overrides(self, base_fields):
        session = SessionManager(VisageConfig(authority_id="gm")).create_session()

        async def scenario():
            await session.start()
            await session.scene.add_entity("token-1", base_fields)
            await session.operator_edit("token-1", {"name": "Strider"})
            return await session.scene.read_live_fields("token-1")

        assert asyncio.run(scenario()).display_name == "Strider"

    def test_operator_edit_rebases(self, base_fields):
        session = SessionManager(VisageConfig(authority_id="gm")).create_session()

        async def scenario():
            await session.start()
            await session.scene.add_entity("token-1", base_fields)
            wolf = await session.library.save({"label": "Wolf", "changeset": {"img": "wolf.png"}})
            await session.stack_ops.apply("token-1", wolf.id)
            edited = await session.operator_edit("token-1", {"name": "Strider"})
            reverted = await session.stack_ops.revert("token-1")
            return edited, reverted

        edited, reverted = asyncio.run(scenario())
        assert edited.resolved.texture.src == "wolf.png"
        assert reverted.resolved.display_name == "Strider"
        assert reverted.resolved.texture.src == "tokens/aragorn.png"

    def test_operator_edit_unknown_entity(self):
        session = SessionManager(VisageConfig(authority_id="gm")).create_session()

        async def scenario():
            await session.start()
            return await session.operator_edit("ghost", {"name": "x"})

        result = asyncio.run(scenario())
        assert not result.success
        assert result.error_code == "NOT_FOUND"

    def test_operator_edit_while_observing(self, base_fields):
        lease = AuthorityLease(ttl=30)
        lease.acquire("other")
        session = SessionManager(VisageConfig(authority_id="gm")).create_session(lease=lease)

        async def scenario():
            await session.start()
            await session.scene.add_entity("token-1", base_fields)
            with pytest.raises(NotAuthoritative):
                await session.operator_edit("token-1", {"name": "Strider"})
            return await session.scene.read_live_fields("token-1")

        assert asyncio.run(scenario()) == base_fields
        assert session.state == SessionState.OBSERVING

    def test_end_session(self):
        manager = SessionManager(VisageConfig(authority_id="gm"))
        session = manager.create_session()
        asyncio.run(session.start())
        assert manager.list_active_sessions() == [session.session_id]

        assert manager.end_session(session.session_id)
        assert not manager.end_session(session.session_id)
        assert session.state == SessionState.CLOSED
        assert session.lease.holder is None
        assert session.bus.subscriber_count == 0
        assert manager.get_session(session.session_id) is None
