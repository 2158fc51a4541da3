"""End-to-end tests for HealthCheckSession over the in-process hub."""

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from healthcheck_sync.config import EngineConfig
from healthcheck_sync.core.session import HealthCheckSession
from healthcheck_sync.errors import FacilitatorRequiredError, InvalidScoreError
from healthcheck_sync.models import Participant, Phase, SessionDocument, SessionStatus
from healthcheck_sync.persistence.backend import HttpBackend, InMemoryBackend, JsonFileBackend
from healthcheck_sync.sync.gateway import LoopbackHub
from healthcheck_sync.sync.messages import SESSION_UPDATE, MemberJoined


async def open_client(hub, backend, user, config, session_id="hc-1"):
    session = HealthCheckSession("team-1", session_id, user, backend, hub.gateway(), config)
    await session.open()
    return session


def offline_gateway():
    """Gateway whose every network call fails."""
    gateway = MagicMock()
    gateway.connect = AsyncMock(side_effect=ConnectionError("no server"))
    gateway.join = AsyncMock()
    gateway.leave = AsyncMock(side_effect=ConnectionError("no server"))
    gateway.broadcast = AsyncMock(side_effect=ConnectionError("no server"))
    gateway.current_session_id.return_value = None
    return gateway


class TestPropagation:
    """Local changes reach the other clients"""

    @pytest.mark.asyncio
    async def test_rating_reaches_other_client(self, hub, backend, alice, bob, config):
        a = await open_client(hub, backend, alice, config)
        b = await open_client(hub, backend, bob, config)

        await a.rate("speed", 4)

        assert b.document.ratings["alice"]["speed"].rating == 4
        assert b.stats("speed").average == 4.0
        await a.close()
        await b.close()

    @pytest.mark.asyncio
    async def test_phase_change_reaches_participants(self, hub, backend, facilitator, alice, config):
        fac = await open_client(hub, backend, facilitator, config)
        a = await open_client(hub, backend, alice, config)

        await fac.set_phase(Phase.DISCUSS)

        assert a.document.phase == Phase.DISCUSS
        await fac.close()
        await a.close()

    @pytest.mark.asyncio
    async def test_identical_end_state_after_sequential_edits(
        self, hub, backend, facilitator, alice, bob, config
    ):
        fac = await open_client(hub, backend, facilitator, config)
        a = await open_client(hub, backend, alice, config)
        b = await open_client(hub, backend, bob, config)

        await a.rate("fun", 3)
        await b.rate("fun", 5)
        await fac.add_action("Celebrate more", "fun")
        await fac.toggle_discussion_focus("fun")

        assert a.document == b.document == fac.document
        assert fac.stats("fun").average == 4.0
        for client in (fac, a, b):
            await client.close()


class TestLostUpdate:
    """Concurrent writers: the later broadcast wins"""

    @pytest.mark.asyncio
    async def test_concurrent_edits_lose_the_earlier_write(self, backend, alice, bob, config):
        hub = LoopbackHub(auto_deliver=False)
        a = await open_client(hub, backend, alice, config)
        b = await open_client(hub, backend, bob, config)
        await hub.flush()

        # Both edit their own copy before seeing the other's broadcast.
        await a.rate("speed", 5)
        await b.rate("fun", 1)
        assert hub.pending == 2
        await hub.flush()

        # Alice's broadcast went out first, Bob's replaced it on Alice's side.
        assert "alice" not in a.document.ratings
        assert a.document.ratings["bob"]["fun"].rating == 1
        assert "bob" not in b.document.ratings
        assert b.document.ratings["alice"]["speed"].rating == 5
        await a.close()
        await b.close()


class TestSnapshotFiltering:
    @pytest.mark.asyncio
    async def test_snapshot_for_other_session_ignored(self, hub, backend, alice, config):
        a = await open_client(hub, backend, alice, config)
        before = a.document

        await a.gateway._deliver(SESSION_UPDATE, SessionDocument(id="hc-other", phase=Phase.CLOSE))

        assert a.document is before
        await a.close()

    @pytest.mark.asyncio
    async def test_events_ignored_after_close(self, hub, backend, alice, bob, config):
        a = await open_client(hub, backend, alice, config)
        b = await open_client(hub, backend, bob, config)
        await a.close()
        before = a.document

        await b.rate("value", 2)

        assert a.document is before
        assert a.document.ratings == {}
        await b.close()


class TestPermissions:
    """Facilitator-only commands"""

    @pytest.mark.asyncio
    async def test_participant_cannot_change_phase(self, hub, backend, alice, bob, config):
        a = await open_client(hub, backend, alice, config)
        b = await open_client(hub, backend, bob, config)

        with pytest.raises(FacilitatorRequiredError):
            await a.set_phase(Phase.CLOSE)

        assert a.document.phase == Phase.SURVEY
        assert b.document.phase == Phase.SURVEY
        await a.close()
        await b.close()

    @pytest.mark.asyncio
    async def test_participant_cannot_reveal_roti(self, hub, backend, alice, config):
        a = await open_client(hub, backend, alice, config)
        with pytest.raises(FacilitatorRequiredError):
            await a.reveal_roti()
        assert a.document.settings.reveal_roti is False
        await a.close()

    @pytest.mark.asyncio
    async def test_invalid_score_rejected_before_mutation(self, hub, backend, alice, config):
        a = await open_client(hub, backend, alice, config)
        before = a.document
        with pytest.raises(InvalidScoreError):
            await a.rate("speed", 9)
        with pytest.raises(InvalidScoreError):
            await a.cast_roti(0)
        assert a.document is before
        await a.close()


class TestPresence:
    """Connected users"""

    @pytest.mark.asyncio
    async def test_join_and_leave_update_presence(self, hub, backend, alice, bob, config):
        a = await open_client(hub, backend, alice, config)
        b = await open_client(hub, backend, bob, config)
        assert a.connected_user_ids == {"alice", "bob"}

        await b.close()
        assert a.connected_user_ids == {"alice"}
        await a.close()

    @pytest.mark.asyncio
    async def test_newcomer_added_to_every_roster(self, hub, backend, alice, config):
        carol = Participant("carol", "Carol", "")
        a = await open_client(hub, backend, alice, config)
        c = await open_client(hub, backend, carol, config)

        assert "carol" in [p.id for p in a.roster()]
        assert "carol" in [p.id for p in c.roster()]
        assert "carol" in {m.id for m in backend.members("team-1")}
        await a.close()
        await c.close()


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_facilitator_exit_closes_session(self, hub, backend, facilitator, alice, config):
        fac = await open_client(hub, backend, facilitator, config)
        a = await open_client(hub, backend, alice, config)

        await fac.exit()

        assert a.document.status == SessionStatus.CLOSED
        assert backend.get("team-1", "hc-1").status == SessionStatus.CLOSED
        await a.close()

    @pytest.mark.asyncio
    async def test_participant_exit_leaves_session_open(self, hub, backend, alice, config):
        a = await open_client(hub, backend, alice, config)
        await a.exit()
        assert backend.get("team-1", "hc-1").status == SessionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_facilitator_rebroadcasts_after_join(self, hub, backend, facilitator, alice, config):
        a = await open_client(hub, backend, alice, config)
        fac = await open_client(hub, backend, facilitator, config)

        await fac._rebroadcast_task
        assert a.document == fac.document
        await fac.close()
        await a.close()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, hub, backend, alice, config):
        a = await open_client(hub, backend, alice, config)
        await a.close()
        await a.close()
        assert a.gateway._registry.count(SESSION_UPDATE) == 0


class TestDegradedMode:
    """Gateway failures never reach the caller"""

    @pytest.mark.asyncio
    async def test_commands_work_offline(self, backend, alice, config, caplog):
        session = HealthCheckSession("team-1", "hc-1", alice, backend, offline_gateway(), config)

        with caplog.at_level(logging.WARNING):
            await session.open()
            doc = await session.rate("speed", 3)

        assert session.degraded is True
        assert doc.ratings["alice"]["speed"].rating == 3
        assert backend.get("team-1", "hc-1").ratings["alice"]["speed"].rating == 3
        assert "continuing locally" in caplog.text
        await session.close()

    @pytest.mark.asyncio
    async def test_missing_session_drops_commands(self, hub, alice, config):
        session = await open_client(hub, InMemoryBackend(), alice, config, session_id="ghost")
        assert await session.rate("speed", 3) is None
        with pytest.raises(LookupError):
            session.finished_count()
        await session.close()


class TestQueries:
    @pytest.mark.asyncio
    async def test_progress_roti_and_labels(self, hub, backend, facilitator, alice, bob, config):
        fac = await open_client(hub, backend, facilitator, config)
        a = await open_client(hub, backend, alice, config)

        for dim in ("speed", "fun", "value"):
            await a.rate(dim, 4)
        await a.cast_roti(5)
        await fac.reveal_roti()

        assert fac.has_completed("alice")
        assert not fac.has_completed()
        assert fac.finished_count() == 1
        assert fac.is_finished("alice")
        assert not fac.is_finished("bob")
        tally = fac.roti_tally()
        assert tally.voter_count == 1
        assert tally.total_participants == 3
        assert fac.document.settings.reveal_roti is True

        await fac.toggle_discussion_focus("speed")
        assert a.document.discussion_focus_id == "speed"
        assert fac.label("bob") == "Bob"
        await fac.close()
        await a.close()

    @pytest.mark.asyncio
    async def test_blank_action_is_noop(self, hub, backend, alice, config):
        a = await open_client(hub, backend, alice, config)
        before = a.document
        assert await a.add_action("   ") is before
        await a.close()

    @pytest.mark.asyncio
    async def test_actions_grouped_and_assigned(self, hub, backend, facilitator, alice, config):
        fac = await open_client(hub, backend, facilitator, config)
        a = await open_client(hub, backend, alice, config)

        doc = await a.add_action("Speed up CI", "speed")
        action_id = doc.actions[0].id
        await fac.assign_action(action_id, "alice")
        await fac.toggle_action_done(action_id)

        item = a.actions_by_dimension()["speed"][0]
        assert item.assignee_id == "alice"
        assert item.done is True
        await fac.close()
        await a.close()


class TestColdStart:
    """Membership events that arrive before the document is loaded"""

    @pytest.mark.asyncio
    async def test_join_of_stored_participant_is_noop(self, backend, alice, config):
        gateway = MagicMock()
        gateway.broadcast = AsyncMock()
        gateway.current_session_id.return_value = "hc-1"
        session = HealthCheckSession("team-1", "hc-1", alice, backend, gateway, config)

        await session._on_member_joined(MemberJoined(user_id="bob", user_name="Bob"))

        gateway.broadcast.assert_not_awaited()
        assert session.connected_user_ids == {"alice", "bob"}
        assert [p.id for p in session.roster()] == ["fac", "alice", "bob"]

    @pytest.mark.asyncio
    async def test_open_keeps_stored_roster_intact(self, hub, backend, alice, bob, config):
        a = await open_client(hub, backend, alice, config)
        b = await open_client(hub, backend, bob, config)

        for client in (a, b):
            assert [p.id for p in client.document.participants] == ["fac", "alice", "bob"]
            assert [p.color_tag for p in client.document.participants] == [
                "bg-indigo-500",
                "bg-emerald-500",
                "bg-amber-500",
            ]
        await a.close()
        await b.close()


class TestFromConfig:
    """Sessions built from resolved configuration"""

    def test_team_files_under_data_dir(self, tmp_path, alice):
        config = EngineConfig(server_url="http://hc.example.com", data_dir=tmp_path)
        session = HealthCheckSession.from_config("team-1", "hc-1", alice, config)

        assert isinstance(session.store.backend, JsonFileBackend)
        assert session.store.backend.data_dir == tmp_path
        assert session.gateway.uri == "ws://hc.example.com/ws"
        assert session.config is config

    def test_password_selects_server_storage(self, tmp_path, alice):
        config = EngineConfig(server_url="https://hc.example.com", data_dir=tmp_path)
        session = HealthCheckSession.from_config("team-1", "hc-1", alice, config, password="s3cret")

        assert isinstance(session.store.backend, HttpBackend)
        assert session.store.backend.server_url == "https://hc.example.com"
        assert session.gateway.uri == "wss://hc.example.com/ws"
        session.store.backend.close()
        assert list(tmp_path.iterdir()) == []
