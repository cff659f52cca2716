"""
Approval Timeout Sweeper

Periodically calls the approval API's timeout check so overdue
pending/in_review requests are escalated. Stands in for a cron job or a
Logic Apps recurrence trigger.

Usage:
    invoice-timeout-sweeper --base-url http://127.0.0.1:8000 --interval 300
    invoice-timeout-sweeper --once
"""

import argparse
import time

import httpx
from loguru import logger

from .core.config import settings
from .core.logging import setup_logging


def sweep_once(base_url: str, client: httpx.Client | None = None) -> list[str]:
    """
    Run one timeout check.

    Returns:
        Ids of the requests escalated by this sweep (empty on failure)
    """
    url = f"{base_url.rstrip('/')}/approvals/timeouts/check"
    try:
        if client is not None:
            response = client.post(url)
        else:
            with httpx.Client(timeout=30) as c:
                response = c.post(url)
        response.raise_for_status()
    except httpx.HTTPError as e:
        logger.error("Timeout sweep failed", url=url, error=str(e))
        return []

    escalated = response.json()["data"]["escalated"]
    if escalated:
        logger.warning("Escalated overdue approval requests", count=len(escalated), request_ids=escalated)
    else:
        logger.debug("No overdue approval requests")
    return escalated


def main(argv: list[str] | None = None):
    parser = argparse.ArgumentParser(description="Escalate overdue invoice approval requests")
    parser.add_argument("--base-url", default=settings.api_base_url, help="Approval API base URL")
    parser.add_argument(
        "--interval",
        type=int,
        default=settings.sweeper_interval_seconds,
        help="Seconds between sweeps",
    )
    parser.add_argument("--once", action="store_true", help="Run a single sweep and exit")
    args = parser.parse_args(argv)

    setup_logging()
    logger.info("Timeout sweeper started", base_url=args.base_url, interval=args.interval)

    with httpx.Client(timeout=30) as client:
        if args.once:
            sweep_once(args.base_url, client)
            return
        try:
            while True:
                sweep_once(args.base_url, client)
                time.sleep(args.interval)
        except KeyboardInterrupt:
            logger.info("Timeout sweeper stopped")


if __name__ == "__main__":
    main()
