"""
Entry point for the workers.

    python -m outreach.workers campaigns [--once] [campaign_id ...]
"""
import asyncio
import signal
import sys
import logging

from outreach.core.logging import setup_logging
from outreach.services.http_client import close_http_client

logger = logging.getLogger(__name__)


async def run_campaigns(campaign_ids, once: bool = False):
    from outreach.workers.campaign_worker import CampaignWorker, build_engine

    worker = CampaignWorker(build_engine(), campaign_ids=campaign_ids)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(worker.stop()))
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops
            pass

    try:
        if once:
            await worker.run_cycle()
        else:
            await worker.start()
    finally:
        await close_http_client()


def main():
    """Run the worker named on the command line."""
    setup_logging()

    if len(sys.argv) < 2:
        print("Usage: python -m outreach.workers campaigns [--once] [campaign_id ...]")
        print("Available workers: campaigns")
        sys.exit(1)

    worker_name = sys.argv[1]
    args = sys.argv[2:]

    if worker_name == "campaigns":
        once = "--once" in args
        campaign_ids = [arg for arg in args if not arg.startswith("--")]
        logger.info("Starting campaign worker...")
        asyncio.run(run_campaigns(campaign_ids, once=once))
    else:
        logger.error(f"Unknown worker: {worker_name}")
        sys.exit(1)


if __name__ == "__main__":
    main()
