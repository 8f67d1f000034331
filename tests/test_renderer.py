from __future__ import annotations

import discord
import pytest

from lfg.models import ButtonKind, Session, SessionEvent, SessionStatus
from lfg.platform import build_view
from lfg.renderer import (
    confirmation_ping, format_players, help_embed, render_expired_control, render_status,
)


def make_session(**overrides) -> Session:
    values = dict(
        id="1-1700000000000-abcdef",
        creator_id=1,
        guild_id=10,
        origin_channel_id=20,
        game='apexlegends',
        game_name='Apex Legends',
        mode='Trios',
        capacity=3,
        voice_channel_id=30,
        roster=[1, 2],
    )
    values.update(overrides)
    return Session(**values)


def fields_of(embed: discord.Embed) -> dict:
    return {field.name: field.value for field in embed.fields}


def test_format_players_marks_creator() -> None:
    assert format_players([1, 2], creator_id=1) == "👑 <@1>\n⚔️ <@2>"
    assert format_players([], creator_id=1) == "Nobody yet"


def test_waiting_listing() -> None:
    session = make_session(note="mic required")

    payload = render_status(session, SessionEvent.JOINED)
    fields = fields_of(payload.embed)

    assert payload.embed.title == "🎮 LFG: Apex Legends"
    assert payload.buttons == [ButtonKind.JOIN, ButtonKind.LEAVE]
    assert payload.session_id == session.id
    assert fields["👥 Players"] == "2/3"
    assert fields["📝 Additional Info"] == "mic required"
    assert fields["🔊 Voice Channel"].startswith("<#30>")
    assert payload.embed.footer.text == "LFG #abcdef • Looking for 1 more player(s)"


def test_timed_out_listing_explains_removal() -> None:
    payload = render_status(make_session(roster=[1]), SessionEvent.TIMED_OUT)

    assert payload.embed.description.startswith("⏰ Not everyone confirmed in time.")
    assert payload.embed.description.endswith("Looking for 2 more player(s)")


def test_confirming_shows_confirm_buttons() -> None:
    session = make_session(roster=[1, 2, 3], status=SessionStatus.CONFIRMING)
    session.confirmed.add(1)

    payload = render_status(session, SessionEvent.CONFIRMING)

    assert payload.embed.description == "Team full! Waiting for confirmations..."
    assert payload.buttons == [ButtonKind.CONFIRM, ButtonKind.DECLINE]
    assert fields_of(payload.embed)["✅ Confirmed (1/3)"] == "👑 <@1>"


def test_finalized_has_no_buttons() -> None:
    payload = render_status(make_session(roster=[1, 2, 3]), SessionEvent.FINALIZED)

    assert payload.embed.title == "🎉 Match Found!"
    assert payload.buttons == []
    assert "<@3>" in fields_of(payload.embed)["👤 Your Team"]


@pytest.mark.parametrize(
    ("event", "title"),
    [
        (SessionEvent.CANCELLED, "❌ LFG Session Cancelled"),
        (SessionEvent.ENDED, "🔚 LFG Session Ended"),
        (SessionEvent.EMPTY, "💭 LFG Session Empty"),
        (SessionEvent.CLOSED, "🏁 LFG Session Closed"),
        (SessionEvent.EXPIRED, "LFG queue ended"),
    ],
)
def test_closed_payloads_have_no_buttons(event, title) -> None:
    payload = render_status(make_session(), event)

    assert payload.embed.title == title
    assert payload.buttons == []


def test_expired_mentions_creator() -> None:
    payload = render_status(make_session(roster=[1]), SessionEvent.EXPIRED)

    assert payload.embed.description == "No player was found in time (20 minutes)"
    assert "<@1>" in fields_of(payload.embed)["👤 Session Creator"]


def test_confirmation_ping_mentions_roster() -> None:
    content, mentions = confirmation_ping(make_session(roster=[1, 2, 3]))

    assert content == "<@1> <@2> <@3> 🎯 **Confirm matchmaking!**"
    assert mentions == [1, 2, 3]


def test_expired_control_and_help() -> None:
    assert render_expired_control().embed.title == "❌ LFG Session Expired"
    assert render_expired_control().session_id is None
    assert "Among Us" in fields_of(help_embed())["🎮 Supported Games"]


@pytest.mark.asyncio
async def test_build_view_uses_session_custom_ids() -> None:
    payload = render_status(make_session(), SessionEvent.CREATED)

    view = build_view(payload)

    assert view.timeout is None
    assert [item.custom_id for item in view.children] == [
        "lfg:join:1-1700000000000-abcdef",
        "lfg:leave:1-1700000000000-abcdef",
    ]
    assert build_view(render_status(make_session(), SessionEvent.ENDED)) is None
