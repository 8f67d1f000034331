from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock

import discord
import pytest

from lfg.lfg_commands import LFGCommands

GUILD_ID = 4242


def make_cog(engine, platform) -> LFGCommands:
    cog = LFGCommands(SimpleNamespace(wait_until_ready=AsyncMock()), engine, platform)
    # Keep the sweep loop out of these tests
    cog.cog_unload()
    return cog


def button_interaction(custom_id: str, user_id: int = 2):
    return SimpleNamespace(
        type=discord.InteractionType.component,
        data={'custom_id': custom_id},
        user=SimpleNamespace(id=user_id),
        response=SimpleNamespace(defer=AsyncMock(), is_done=lambda: True, send_message=AsyncMock()),
        followup=SimpleNamespace(send=AsyncMock()),
        message=SimpleNamespace(id=9001, edit=AsyncMock()),
    )


@pytest.mark.asyncio
async def test_button_for_unknown_session_expires_the_message(engine, platform) -> None:
    cog = make_cog(engine, platform)
    interaction = button_interaction('lfg:join:1-1700000000000-abcdef')

    await cog.on_interaction(interaction)

    interaction.response.defer.assert_awaited_once_with(ephemeral=True)
    interaction.message.edit.assert_awaited_once()
    kwargs = interaction.message.edit.await_args.kwargs
    assert kwargs['view'] is None
    assert kwargs['embed'].title == "❌ LFG Session Expired"
    interaction.followup.send.assert_awaited_once_with("❌ This LFG session is no longer active!", ephemeral=True)


@pytest.mark.asyncio
async def test_failed_expire_edit_still_replies(engine, platform) -> None:
    cog = make_cog(engine, platform)
    interaction = button_interaction('lfg:confirm:1-1700000000000-abcdef')
    interaction.message.edit.side_effect = discord.HTTPException(
        SimpleNamespace(status=404, reason="Not Found"), "Unknown Message"
    )

    await cog.on_interaction(interaction)

    interaction.followup.send.assert_awaited_once_with("❌ This LFG session is no longer active!", ephemeral=True)


@pytest.mark.asyncio
async def test_join_button_replies_with_result(engine, platform, create) -> None:
    cog = make_cog(engine, platform)
    session = await create(user_id=1, capacity=3)
    interaction = button_interaction(f'lfg:join:{session.id}', user_id=2)

    await cog.on_interaction(interaction)

    assert session.roster == [1, 2]
    interaction.message.edit.assert_not_awaited()
    interaction.followup.send.assert_awaited_once_with("✅ You joined the LFG!", ephemeral=True)


@pytest.mark.asyncio
async def test_conflict_is_reported_without_touching_the_message(engine, platform, create) -> None:
    cog = make_cog(engine, platform)
    session = await create(user_id=1, capacity=3)
    interaction = button_interaction(f'lfg:leave:{session.id}', user_id=1)

    await cog.on_interaction(interaction)

    interaction.message.edit.assert_not_awaited()
    message = interaction.followup.send.await_args.args[0]
    assert message.startswith("⚠️ As the session creator, you cannot leave.")


@pytest.mark.asyncio
async def test_foreign_buttons_are_ignored(engine, platform) -> None:
    cog = make_cog(engine, platform)
    interaction = button_interaction('poll:vote:3')

    await cog.on_interaction(interaction)

    interaction.response.defer.assert_not_awaited()
    interaction.followup.send.assert_not_awaited()


@pytest.mark.asyncio
async def test_setchannel_saves_through_the_settings_store(engine, platform, settings) -> None:
    cog = make_cog(engine, platform)
    staff = SimpleNamespace(guild_permissions=SimpleNamespace(administrator=False, manage_channels=True))
    interaction = SimpleNamespace(
        guild=SimpleNamespace(id=GUILD_ID, get_member=lambda user_id: staff),
        user=SimpleNamespace(id=5),
        response=SimpleNamespace(send_message=AsyncMock()),
    )
    channel = SimpleNamespace(id=321, mention="<#321>")

    await cog.setchannel.callback(cog, interaction, channel)

    assert settings.get_lfg_channel(GUILD_ID) == 321
    embed = interaction.response.send_message.await_args.kwargs['embed']
    assert embed.title == "✅ LFG Channel Set"
