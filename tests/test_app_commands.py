from types import SimpleNamespace

import discord
import pytest
from discord import app_commands

from conftest import FakeBot, FakeTopggClient, InfluxRecorder
from shardmetrics.bot.modules.discord_bot.cogs.metrics import Metrics
from shardmetrics.config.metrics_conf import MetricsConfig


class DummyResponse:
    def __init__(self, done=False, fail=False):
        self.done = done
        self.fail = fail
        self.sent = []

    def is_done(self):
        return self.done

    async def send_message(self, **kwargs):
        if self.fail:
            raise discord.HTTPException(SimpleNamespace(status=500, reason="Server Error"), "unavailable")
        self.sent.append(kwargs)


class DummyFollowup:
    def __init__(self):
        self.sent = []

    async def send(self, **kwargs):
        self.sent.append(kwargs)


def _interaction(name="ping", kind=discord.InteractionType.application_command, done=False, fail=False):
    return SimpleNamespace(
        id=42,
        type=kind,
        token="interaction-secret",
        command=SimpleNamespace(name=name) if name else None,
        response=DummyResponse(done=done, fail=fail),
        followup=DummyFollowup(),
    )


def _cog(bot, fake_sampler, **kw):
    return Metrics(
        bot,
        MetricsConfig(),
        sampler=fake_sampler,
        influx_client_factory=InfluxRecorder(),
        topgg_client=FakeTopggClient(),
        **kw,
    )


@pytest.mark.asyncio
async def test_interaction_counts_only_resolved_app_commands(fake_sampler):
    cog = _cog(FakeBot(shards=[]), fake_sampler)

    await cog.on_interaction(_interaction("ping"))
    await cog.on_interaction(_interaction("ping"))
    await cog.on_interaction(_interaction(None))
    await cog.on_interaction(_interaction("ping", kind=discord.InteractionType.autocomplete))
    await cog.on_interaction(_interaction("ping", kind=discord.InteractionType.component))

    assert cog.command_counts.snapshot() == {"ping": 2}


@pytest.mark.asyncio
async def test_app_command_error_replies_with_sanitized_embed(fake_sampler):
    cog = _cog(FakeBot(shards=[]), fake_sampler, support_server="https://discord.gg/help")
    inter = _interaction("ping")

    await cog.on_app_command_error(inter, app_commands.CheckFailure("bad token interaction-secret"))

    assert cog.command_errors.snapshot() == {"ping": 1}
    sent = inter.response.sent[0]
    assert sent["ephemeral"] is True
    embed = sent["embed"]
    assert "interaction-secret" not in embed.description
    assert "%interaction_token%" in embed.description
    assert "Support Server: https://discord.gg/help" in embed.description
    assert embed.footer.text.startswith("Error ID: ")


@pytest.mark.asyncio
async def test_app_command_error_without_command_counts_unknown(fake_sampler):
    cog = _cog(FakeBot(shards=[]), fake_sampler)
    error = app_commands.CommandInvokeError(SimpleNamespace(name="ping"), RuntimeError("boom"))

    await cog.on_app_command_error(_interaction(None), error)

    assert cog.command_errors.snapshot() == {"Unknown": 1}


@pytest.mark.asyncio
async def test_app_command_error_uses_followup_when_already_responded(fake_sampler):
    cog = _cog(FakeBot(shards=[]), fake_sampler)
    inter = _interaction("ping", done=True)

    await cog.on_app_command_error(inter, app_commands.CheckFailure("nope"))

    assert inter.response.sent == []
    assert len(inter.followup.sent) == 1
    assert inter.followup.sent[0]["ephemeral"] is True


@pytest.mark.asyncio
async def test_app_command_error_send_failure_is_swallowed(fake_sampler, caplog):
    cog = _cog(FakeBot(shards=[]), fake_sampler)

    await cog.on_app_command_error(_interaction("ping", fail=True), app_commands.CheckFailure("nope"))

    assert cog.command_errors.snapshot() == {"ping": 1}
    assert any("could not send error" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_tree_error_handler_chains_to_previous(fake_sampler):
    calls = []

    async def previous(interaction, error):
        calls.append((interaction.id, str(error)))

    bot = FakeBot(shards=[])
    bot.tree = SimpleNamespace(on_error=previous)
    cog = _cog(bot, fake_sampler)
    assert bot.tree.on_error == cog.on_app_command_error

    inter = _interaction("ping")
    await bot.tree.on_error(inter, app_commands.CheckFailure("nope"))

    assert cog.command_errors.snapshot() == {"ping": 1}
    assert len(inter.response.sent) == 1
    assert calls == [(42, "nope")]

    cog.cog_unload()
    assert bot.tree.on_error is previous


@pytest.mark.asyncio
async def test_tree_default_handler_is_not_called_again(fake_sampler, monkeypatch):
    called = []

    async def default_on_error(self, interaction, error):
        called.append(1)

    monkeypatch.setattr(app_commands.CommandTree, "on_error", default_on_error)

    tree = SimpleNamespace()
    tree.on_error = default_on_error.__get__(tree)
    bot = FakeBot(shards=[])
    bot.tree = tree
    cog = _cog(bot, fake_sampler)

    await bot.tree.on_error(_interaction("ping"), app_commands.CheckFailure("nope"))

    assert called == []
    assert cog.command_errors.snapshot() == {"ping": 1}
