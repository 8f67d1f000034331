"""
Permission helpers for LFG staff commands
"""

import discord


def has_lfg_staff_permissions(interaction: discord.Interaction) -> bool:
    """Check if user can configure LFG (Administrator OR Manage Channels permission)"""
    if not interaction.guild:
        return False

    member = interaction.guild.get_member(interaction.user.id)
    if not member:
        return False

    permissions = member.guild_permissions
    return permissions.administrator or permissions.manage_channels
