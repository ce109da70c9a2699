"""Feed sync runner.

Loads the viewer's feed from the HTTP document store, caches the first
page on disk and refreshes it every FEED_POLL_SECONDS.
"""

import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Set

from dotenv import load_dotenv

# Load .env file if it exists
env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)

# Imports after logging setup (required for proper logging configuration)
from feedsync.config import FeedConfig  # noqa: E402
from feedsync.engine.feed_engine import FeedEngine  # noqa: E402
from feedsync.models.feed import ReconciledFeedState  # noqa: E402
from feedsync.sources.http import HttpDocumentClient, HttpFeedSource  # noqa: E402
from feedsync.storage.cache_store import FeedSnapshotCache, FileCacheStore  # noqa: E402

# Global flag for graceful shutdown
shutdown = False


def signal_handler(sig, frame):
    """Handle shutdown signals gracefully."""
    global shutdown
    logger.info("\n🛑 Shutting down...")
    shutdown = True


def parse_ids(value: str) -> Set[str]:
    """Parse a comma-separated id list, ignoring blanks."""
    return {s.strip() for s in value.split(",") if s.strip()}


def log_state(state: ReconciledFeedState) -> None:
    for post in state.items[:3]:
        logger.debug(f"  {post}")


async def sleep_unless_shutdown(seconds: float) -> None:
    """Sleep in short steps so a shutdown signal is noticed promptly."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + seconds
    while not shutdown and loop.time() < deadline:
        await asyncio.sleep(min(0.5, deadline - loop.time()))


async def run(config: FeedConfig, viewer_id: str, followed: Set[str], blocked: Set[str]):
    poll_seconds = float(os.getenv("FEED_POLL_SECONDS", "60"))

    client = HttpDocumentClient(config.api_base_url, timeout=config.request_timeout)
    source = HttpFeedSource(client)
    cache = FeedSnapshotCache(FileCacheStore(config.cache_dir), ttl=config.cache_ttl)
    engine = FeedEngine(source, cache, config)
    engine.add_listener(log_state)
    logger.info("✅ Feed engine initialized")

    try:
        result = await engine.initialize(viewer_id, followed, blocked)
        logger.info(
            f"📰 Initial load: {result.status}, {len(result.state)} posts, "
            f"offline={result.state.offline}"
        )
        for error in result.errors:
            logger.warning(f"   - {error}")

        logger.info(f"📡 Refreshing every {poll_seconds:.0f}s")
        logger.info("   Press Ctrl+C to stop\n")

        while not shutdown:
            await sleep_unless_shutdown(poll_seconds)
            if shutdown:
                break
            try:
                result = await engine.refresh()
                logger.info(
                    f"🔄 Refresh: {result.status}, {len(result.state)} posts, "
                    f"has_more={result.state.has_more}"
                )
            except Exception as e:
                logger.error(f"Error in refresh loop: {e}", exc_info=True)
                await asyncio.sleep(1)
    finally:
        engine.close()
        await engine.wait_idle()


def main():
    """Main entry point for the feed sync runner."""
    logger.info("🚀 Starting feed sync...")

    try:
        config = FeedConfig.from_env()
        config.validate()
        logger.info("✅ Configuration loaded")
        logger.info(f"   - API: {config.api_base_url}")
        logger.info(f"   - Page size: {config.page_size}")
        logger.info(f"   - Cache dir: {config.cache_dir}")

        viewer_id = os.getenv("FEED_VIEWER_ID", "").strip()
        if not viewer_id:
            raise ValueError("No viewer configured. Set FEED_VIEWER_ID environment variable.")
        followed = parse_ids(os.getenv("FEED_FOLLOWED_IDS", ""))
        blocked = parse_ids(os.getenv("FEED_BLOCKED_IDS", ""))
        logger.info(f"   - Viewer: {viewer_id} ({len(followed)} followed, {len(blocked)} blocked)")

        # Register signal handlers
        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        asyncio.run(run(config, viewer_id, followed, blocked))

    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        logger.info("✅ Feed sync stopped")


if __name__ == "__main__":
    main()
