from __future__ import annotations

import logging
import os
import random
import time
from typing import Callable, Dict, Optional

import discord
from discord import app_commands
from discord.ext import commands

from shardmetrics.config.metrics_conf import MetricsConfig, load_config
from ..helpers.counter_store import CounterStore
from ..helpers.cpu_sampler import CpuSampler
from ..helpers.influx_sink import InfluxSink
from ..helpers.periodic import PeriodicReporter
from ..helpers.report import ExtensionHook, build_influx_report, build_leaderboard_report
from ..helpers.rest_tally import RestTally
from ..helpers.snapshot import SnapshotCollector
from ..helpers.token_filter import sanitize
from ..helpers.topgg_sink import LeaderboardSink, TopggClient

log = logging.getLogger(__name__)

UNKNOWN_COMMAND = "Unknown"
SINKS = ("influxdb", "topgg")


class SinkUnavailableError(RuntimeError):
    """``report_now`` was asked for a sink that is not configured."""


def _base36(n: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    out = ""
    while True:
        n, r = divmod(n, 36)
        out = digits[r] + out
        if n == 0:
            return out


def make_error_id() -> str:
    return f"{_base36(random.randint(0, 1_000_000)).rjust(5, '0')}{_base36(int(time.time() * 1000))}".upper()


def _is_default_tree_handler(handler) -> bool:
    return getattr(handler, "__func__", None) is app_commands.CommandTree.on_error


class Metrics(commands.Cog):
    """Metrics controller.

    Tallies command use and errors, and reports process/shard stats to InfluxDB
    and the server count to Top.gg, each on its own interval. ``report_now`` runs
    a cycle by hand and lets errors propagate; scheduled cycles log them instead.
    """

    def __init__(
        self,
        bot: commands.Bot,
        config: MetricsConfig,
        *,
        rest_tally: Optional[RestTally] = None,
        command_counts: Optional[CounterStore] = None,
        command_errors: Optional[CounterStore] = None,
        sampler: Optional[CpuSampler] = None,
        influx_client_factory: Optional[Callable] = None,
        topgg_client: Optional[TopggClient] = None,
        extension_timeout: Optional[float] = None,
        support_server: Optional[str] = None,
    ):
        # configuration errors surface here, before anything is scheduled
        self.config = config.validate()
        self.bot = bot
        self.command_counts = command_counts if command_counts is not None else CounterStore()
        self.command_errors = command_errors if command_errors is not None else CounterStore()
        self.rest_tally = rest_tally or getattr(bot, "rest_tally", None) or RestTally()
        self.collector = SnapshotCollector(bot, self.rest_tally)
        self.sampler = sampler or CpuSampler()
        self.extension_timeout = extension_timeout
        self.support_server = support_server
        self._extension_hook: Optional[ExtensionHook] = None
        self._prev_tree_error = None

        self.influx: Optional[InfluxSink] = None
        self.topgg: Optional[LeaderboardSink] = None
        self.schedules: Dict[str, PeriodicReporter] = {}
        wait_ready = getattr(bot, "wait_until_ready", None)

        if config.influxdb is not None:
            self.influx = InfluxSink(config.influxdb, influx_client_factory)
            self.schedules["influxdb"] = PeriodicReporter(
                "influxdb", self.report_influxdb, config.influxdb.report_interval_ms, wait_ready=wait_ready
            )

        if config.topgg is not None:
            self.topgg = LeaderboardSink(config.topgg, topgg_client)
            self.schedules["topgg"] = PeriodicReporter(
                "topgg", self.report_topgg, config.topgg.report_interval_ms, wait_ready=wait_ready
            )

        for schedule in self.schedules.values():
            schedule.start()
        self._hook_tree_errors()

        log.debug("[metrics] Initialized metrics controller (sinks=%s)", ",".join(self.schedules) or "none")

    def cog_unload(self):
        for schedule in self.schedules.values():
            schedule.stop()
        tree = getattr(self.bot, "tree", None)
        if tree is not None and self._prev_tree_error is not None:
            tree.on_error = self._prev_tree_error
            self._prev_tree_error = None

    # ---- attribution ----

    def notify_command_invoked(self, name: str) -> None:
        self.command_counts.increment(name)

    def notify_command_errored(self, name: Optional[str] = None) -> None:
        self.command_errors.increment(name or UNKNOWN_COMMAND)

    @commands.Cog.listener()
    async def on_interaction(self, interaction: discord.Interaction):
        if interaction.type is not discord.InteractionType.application_command:
            return
        command = interaction.command
        if command is not None:
            self.notify_command_invoked(command.name)

    @commands.Cog.listener()
    async def on_command(self, ctx: commands.Context):
        if ctx.command is not None:
            self.notify_command_invoked(ctx.command.qualified_name)

    @commands.Cog.listener()
    async def on_command_error(self, ctx: commands.Context, error: Exception):
        # '!' typed by non-commands is not an error of any command
        if isinstance(error, commands.CommandNotFound):
            return
        name = ctx.command.qualified_name if ctx.command is not None else None
        self.notify_command_errored(name)
        log.error("[commands] %s when running %s: %s", type(error).__name__, name or UNKNOWN_COMMAND, error)

    def _hook_tree_errors(self) -> None:
        tree = getattr(self.bot, "tree", None)
        if tree is None:
            return
        self._prev_tree_error = tree.on_error
        tree.on_error = self.on_app_command_error

    async def on_app_command_error(self, interaction: discord.Interaction, error: app_commands.AppCommandError):
        command = interaction.command
        self.notify_command_errored(command.name if command is not None else None)

        unexpected = isinstance(error, app_commands.CommandInvokeError)
        original = getattr(error, "original", error)
        error_id = make_error_id()
        log.error(
            "[commands] %s%s (ID: %s) when running interaction %s: %s",
            "Unexpected " if unexpected else "",
            type(original).__name__,
            error_id,
            interaction.id,
            original,
            exc_info=original if unexpected else None,
        )

        message = sanitize(str(original), {interaction.token: "%interaction_token%"})
        description = f"```\n{message}\n```"
        if self.support_server:
            description += f"\n*Support Server: {self.support_server}*"
        embed = discord.Embed(title="Error", description=description, color=discord.Color.red())
        embed.set_footer(text=f"Error ID: {error_id}")
        embed.timestamp = discord.utils.utcnow()
        try:
            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException as e:
            log.warning("[commands] could not send error %s to the user: %r", error_id, e)

        prev = self._prev_tree_error
        if prev is not None and not _is_default_tree_handler(prev):
            await prev(interaction, error)

    # ---- reporting ----

    def set_influxdb_callback(self, callback: Optional[ExtensionHook]) -> None:
        """Set the function asked for extra points on every InfluxDB report (last one wins)."""
        self._extension_hook = callback

    register_extension_hook = set_influxdb_callback

    async def report_influxdb(self) -> int:
        if self.influx is None:
            raise SinkUnavailableError("Cannot post to InfluxDB; options not defined")
        report = await build_influx_report(
            self.sampler,
            self.collector,
            self.command_counts,
            self.command_errors,
            hook=self._extension_hook,
            hook_timeout=self.extension_timeout,
        )
        return await self.influx.send(report)

    async def report_topgg(self) -> Dict[str, int]:
        if self.topgg is None:
            raise SinkUnavailableError("Cannot post to Top.gg; options not defined")
        report = await build_leaderboard_report(self.collector)
        return await self.topgg.send(report, self.collector.application_id())

    async def report_now(self, sink: str):
        """Run one cycle for ``sink`` outside its schedule; errors propagate."""
        if sink == "influxdb":
            return await self.report_influxdb()
        if sink == "topgg":
            return await self.report_topgg()
        raise SinkUnavailableError(f"Unknown metrics sink {sink!r}; expected one of {', '.join(SINKS)}")


async def setup(bot: commands.Bot):
    await bot.add_cog(Metrics(bot, load_config(), support_server=os.getenv("SUPPORT_SERVER") or None))
