from __future__ import annotations

import pytest

from lfg.models import SessionStatus


async def confirming_session(engine, create, capacity=3):
    session = await create(user_id=1, capacity=capacity)
    for user_id in range(2, capacity + 1):
        await engine.join(session.id, user_id)
    return session


async def active_session(engine, create):
    session = await create(user_id=1, capacity=2)
    await engine.join(session.id, 2)
    await engine.confirm(session.id, 1)
    await engine.confirm(session.id, 2)
    return session


# ================================
#       CONFIRMATION BACKUP
# ================================

@pytest.mark.asyncio
async def test_sweep_times_out_confirmation_when_timer_was_lost(engine, clock, create) -> None:
    session = await confirming_session(engine, create)
    await engine.confirm(session.id, 1)
    session.confirmation_timer = None

    clock.advance(seconds=120)
    report = await engine.run_expiry_sweep()

    assert report.confirmations_timed_out == 1
    assert session.roster == [1]
    assert session.status is SessionStatus.WAITING
    assert session.confirmed == set()


@pytest.mark.asyncio
async def test_sweep_leaves_confirmation_before_deadline(engine, clock, create) -> None:
    session = await confirming_session(engine, create)

    clock.advance(seconds=60)
    report = await engine.run_expiry_sweep()

    assert report.confirmations_timed_out == 0
    assert session.status is SessionStatus.CONFIRMING
    assert session.roster == [1, 2, 3]


@pytest.mark.asyncio
async def test_timer_then_sweep_converge(engine, clock, create) -> None:
    session = await confirming_session(engine, create)
    await engine.confirm(session.id, 2)

    clock.advance(seconds=120)
    await session.confirmation_timer.fire()
    report = await engine.run_expiry_sweep()

    assert report.confirmations_timed_out == 0
    assert session.roster == [1, 2]
    assert session.status is SessionStatus.WAITING


@pytest.mark.asyncio
async def test_sweep_then_timer_converge(engine, clock, create) -> None:
    session = await confirming_session(engine, create)
    await engine.confirm(session.id, 2)
    timer = session.confirmation_timer

    clock.advance(seconds=120)
    await engine.run_expiry_sweep()
    assert timer.cancelled

    # A timer that fires anyway must not act twice
    await timer.fire()

    assert session.roster == [1, 2]
    assert session.status is SessionStatus.WAITING


# ================================
#       NO JOINER
# ================================

@pytest.mark.asyncio
async def test_session_without_joiners_expires(engine, platform, clock, create) -> None:
    session = await create(user_id=1, capacity=3)

    clock.advance(minutes=20)
    report = await engine.run_expiry_sweep()

    assert report.sessions_expired == 1
    assert len(engine.store) == 0
    assert session.status is SessionStatus.ENDED
    assert session.voice_channel_id in platform.deleted
    assert platform.status_of(session).embed.title == "LFG queue ended"


@pytest.mark.asyncio
async def test_session_without_joiners_waits_for_deadline(engine, clock, create) -> None:
    await create(user_id=1, capacity=3)

    clock.advance(minutes=19)
    report = await engine.run_expiry_sweep()

    assert report.sessions_expired == 0
    assert len(engine.store) == 1


@pytest.mark.asyncio
async def test_session_with_joiner_does_not_expire(engine, clock, create) -> None:
    session = await create(user_id=1, capacity=3)
    await engine.join(session.id, 2)

    clock.advance(minutes=25)
    report = await engine.run_expiry_sweep()

    assert report.sessions_expired == 0
    assert engine.store.get(session.id) is session


@pytest.mark.asyncio
async def test_full_session_left_waiting_by_timeout_is_closed(engine, platform, clock, create) -> None:
    session = await create(user_id=1, capacity=2)
    await engine.join(session.id, 2)
    await engine.confirm(session.id, 2)
    clock.advance(seconds=120)
    await session.confirmation_timer.fire()
    assert session.status is SessionStatus.WAITING

    clock.advance(minutes=19)
    assert (await engine.run_expiry_sweep()).sessions_expired == 0
    assert engine.store.get(session.id) is session

    clock.advance(minutes=1)
    report = await engine.run_expiry_sweep()

    assert report.sessions_expired == 1
    assert engine.store.get(session.id) is None
    assert session.voice_channel_id in platform.deleted


@pytest.mark.asyncio
async def test_stalled_session_refilled_starts_confirmation_again(engine, clock, create) -> None:
    session = await create(user_id=1, capacity=2)
    await engine.join(session.id, 2)
    await engine.confirm(session.id, 2)
    clock.advance(seconds=120)
    await session.confirmation_timer.fire()

    await engine.leave(session.id, 2)
    await engine.join(session.id, 3)

    assert session.status is SessionStatus.CONFIRMING
    assert session.stalled_since is None


# ================================
#       ACTIVE SESSIONS
# ================================

@pytest.mark.asyncio
async def test_active_session_with_empty_channel_is_closed(engine, platform, clock, create) -> None:
    session = await active_session(engine, create)

    first = await engine.run_expiry_sweep()
    assert first.sessions_reaped == 0
    assert session.voice_empty_since == clock.now

    clock.advance(minutes=5)
    second = await engine.run_expiry_sweep()

    assert second.sessions_reaped == 1
    assert len(engine.store) == 0
    assert session.voice_channel_id in platform.deleted
    assert platform.status_of(session).embed.title == "🏁 LFG Session Closed"


@pytest.mark.asyncio
async def test_active_session_in_use_is_kept(engine, platform, clock, create) -> None:
    session = await active_session(engine, create)
    platform.voice[session.voice_channel_id].update({1, 2})

    for _ in range(3):
        clock.advance(minutes=5)
        report = await engine.run_expiry_sweep()
        assert report.sessions_reaped == 0

    assert session.voice_empty_since is None
    assert session.status is SessionStatus.ACTIVE


@pytest.mark.asyncio
async def test_active_session_is_closed_after_max_age(engine, platform, clock, create) -> None:
    session = await active_session(engine, create)
    platform.voice[session.voice_channel_id].update({1, 2})

    clock.advance(hours=2)
    report = await engine.run_expiry_sweep()

    assert report.sessions_reaped == 1
    assert engine.store.get(session.id) is None


@pytest.mark.asyncio
async def test_rejoining_voice_resets_idle_clock(engine, platform, clock, create) -> None:
    session = await active_session(engine, create)
    await engine.run_expiry_sweep()
    assert session.voice_empty_since is not None

    platform.voice[session.voice_channel_id].add(2)
    await engine.voice_state_changed(2, None, session.voice_channel_id)
    platform.voice[session.voice_channel_id].clear()

    clock.advance(minutes=5)
    report = await engine.run_expiry_sweep()

    assert report.sessions_reaped == 0
    assert session.voice_empty_since == clock.now


# ================================
#       RECONCILE / ROBUSTNESS
# ================================

@pytest.mark.asyncio
async def test_sweep_reconciles_voice_permissions(engine, platform, create) -> None:
    session = await create(user_id=1, capacity=3)
    await engine.join(session.id, 2)
    permissions = platform.permissions[session.voice_channel_id]
    permissions.discard(2)
    permissions.add(50)

    report = await engine.run_expiry_sweep()

    assert report.permissions_fixed == 2
    assert permissions == {1, 2}


@pytest.mark.asyncio
async def test_sweep_continues_after_a_failing_session(engine, clock, create, monkeypatch) -> None:
    broken = await create(user_id=1, capacity=3)
    await engine.join(broken.id, 2)
    lonely = await create(user_id=10, capacity=3)

    reconcile = engine.voice.reconcile

    async def flaky_reconcile(session):
        if session is broken:
            raise RuntimeError("boom")
        return await reconcile(session)

    monkeypatch.setattr(engine.voice, 'reconcile', flaky_reconcile)

    clock.advance(minutes=20)
    report = await engine.run_expiry_sweep()

    assert report.sessions_expired == 1
    assert engine.store.get(lonely.id) is None
    assert engine.store.get(broken.id) is broken


@pytest.mark.asyncio
async def test_empty_sweep_reports_nothing(engine) -> None:
    report = await engine.run_expiry_sweep()

    assert report.total == 0
