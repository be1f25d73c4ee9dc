"""
Slash commands for viewing and editing per-guild settings from Discord.
"""
import logging

import discord
from discord import app_commands


logger = logging.getLogger(__name__)

EMBED_COLOR = 0x22C55E


def build_settings_embed(guild: discord.Guild, settings: dict, overrides: dict) -> discord.Embed:
    embed = discord.Embed(title=f"Settings for {guild.name}", color=EMBED_COLOR)
    for key, value in settings.items():
        marker = " (custom)" if key in overrides else ""
        embed.add_field(name=f"{key}{marker}", value=str(value)[:1024] or "​", inline=False)
    return embed


def setup_settings_commands(bot):
    """Setup settings and dashboard slash commands"""

    settings_group = app_commands.Group(
        name="settings",
        description="View or change this server's bot settings",
        guild_only=True,
        default_permissions=discord.Permissions(manage_guild=True),
        extras={"category": "Settings"},
    )

    @settings_group.command(name="view", description="Show the current settings")
    async def settings_view(interaction: discord.Interaction):
        guild = interaction.guild
        embed = build_settings_embed(guild, bot.settings.get(guild.id), bot.settings.overrides(guild.id))
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @settings_group.command(name="set", description="Change one setting")
    @app_commands.describe(key="Setting name", value="New value")
    async def settings_set(interaction: discord.Interaction, key: str, value: str):
        guild = interaction.guild
        if key not in bot.settings.defaults:
            await interaction.response.send_message(f"❌ Unknown setting `{key}`.", ephemeral=True)
            return
        bot.settings.write(guild.id, {key: value})
        logger.info("%s set %s for guild %s", interaction.user, key, guild.id)
        await interaction.response.send_message(f"✅ `{key}` is now `{value}`.", ephemeral=True)

    @settings_set.autocomplete("key")
    async def settings_key_autocomplete(interaction: discord.Interaction, current: str):
        return [
            app_commands.Choice(name=key, value=key)
            for key in bot.settings.defaults
            if current.lower() in key.lower()
        ][:25]

    @settings_group.command(name="reset", description="Reset every setting to its default")
    async def settings_reset(interaction: discord.Interaction):
        bot.settings.delete(interaction.guild.id)
        logger.info("%s reset settings for guild %s", interaction.user, interaction.guild.id)
        await interaction.response.send_message("✅ Settings reset to defaults.", ephemeral=True)

    bot.tree.add_command(settings_group)

    @bot.tree.command(name="dashboard", description="Get a link to the web dashboard", extras={"category": "General"})
    async def dashboard_command(interaction: discord.Interaction):
        url = bot.config.public_url
        if interaction.guild:
            url += f"/dashboard/{interaction.guild.id}/manage"
        await interaction.response.send_message(f"🌐 Dashboard: {url}", ephemeral=True)

    @bot.tree.command(name="ping", description="Check the bot's latency", extras={"category": "General"})
    async def ping_command(interaction: discord.Interaction):
        await interaction.response.send_message(f"🏓 Pong! {round(bot.latency * 1000)}ms", ephemeral=True)
