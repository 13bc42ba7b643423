# shardmetrics/bot/modules/discord_bot/shim_runner.py
import logging
import os

import discord
from discord.ext import commands

from shardmetrics.config.metrics_conf import load_config

from .helpers.rest_tally import RestTally
from .helpers.token_filter import TokenFilter, install

log = logging.getLogger(__name__)

METRICS_EXT = "shardmetrics.bot.modules.discord_bot.cogs.metrics"

# ===== Intents =====
intents = discord.Intents.default()
intents.guilds = True

PREFIX = os.getenv("COMMAND_PREFIX", "!")


def _truthy(value: str) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def build_bot() -> commands.Bot:
    """Bot with a REST status tally hooked into discord.py's own HTTP session."""
    rest_tally = RestTally()
    cls = commands.AutoShardedBot if _truthy(os.getenv("SHARDED", "0")) else commands.Bot
    bot = cls(command_prefix=PREFIX, intents=intents, http_trace=rest_tally.trace_config)
    bot.rest_tally = rest_tally

    @bot.event
    async def on_ready():
        log.info("✅ Bot login as %s (%s), shards=%s", bot.user, bot.user.id if bot.user else "?", bot.shard_count or 1)

    async def setup_hook():
        # Can be turned off with METRICS_DISABLE=1
        if _truthy(os.getenv("METRICS_DISABLE", "0")):
            log.info("ℹ️ Metrics disabled via METRICS_DISABLE")
            return
        await bot.load_extension(METRICS_EXT)
        log.info("✅ Loaded metrics cog: %s", METRICS_EXT)

    bot.setup_hook = setup_hook
    return bot


def token_filter_for(token: str, secrets=()) -> TokenFilter:
    flt = TokenFilter({token: "%bot_token%"})
    for i, secret in enumerate(secrets):
        flt.add(secret, f"%metrics_token_{i}%")
    return flt


# ===== Entrypoint =====
async def start_bot():
    token = os.getenv("DISCORD_TOKEN") or os.getenv("BOT_TOKEN")
    if not token:
        raise RuntimeError("ENV DISCORD_TOKEN / BOT_TOKEN is not set")
    # a broken metrics config stops startup here, before any connection is made
    config = load_config()
    install(token_filter_for(token, config.secrets()))
    bot = build_bot()
    async with bot:
        await bot.start(token)
