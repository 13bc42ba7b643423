import asyncio
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

from shardmetrics.config.metrics_conf import MetricsConfigError

from .modules.discord_bot.shim_runner import start_bot

log = logging.getLogger("shardmetrics.bot.main")


def _load_env() -> None:
    # .env.local wins during development; a real environment is never overridden by .env
    local_file = Path(".env.local")
    if local_file.exists():
        load_dotenv(local_file, override=True)
    load_dotenv(Path(".env"), override=False)


def main():
    _load_env()
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s:%(name)s:%(message)s",
    )
    backoff = 5  # seconds, doubles up to 60s

    async def _runner():
        nonlocal backoff
        while True:
            try:
                log.info("🤖 Starting Discord bot process...")
                await start_bot()
                log.warning("Bot returned gracefully; restarting in 3s...")
                await asyncio.sleep(3)
                backoff = 5
            except MetricsConfigError:
                # restarting will not fix a config file
                raise
            except Exception as e:
                log.error("Bot crashed: %s", e, exc_info=True)
                log.info("Restarting in %ss...", backoff)
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, 60)

    try:
        asyncio.run(_runner())
    except MetricsConfigError as e:
        log.critical("Invalid metrics configuration: %s", e)
        raise SystemExit(2)
    except KeyboardInterrupt:
        log.info("Interrupted, bye.")


if __name__ == "__main__":
    main()
