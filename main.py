"""
Workboard Core — Entry Point.

`python main.py` builds the services, seeds defaults and backfills any
missing recurring instances. Schedule it (cron, systemd timer) to keep
recurring tasks flowing.
"""

import asyncio
import logging

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from workboard.app import build_services, startup


def main() -> None:
    services = build_services()
    asyncio.run(startup(services))


if __name__ == "__main__":
    main()
