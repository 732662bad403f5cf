from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import NoReturn

import uvicorn

from .api.main import create_app
from .api.ws_manager import ws_manager
from .config import settings
from .service import MonitoringService

logger = logging.getLogger("pulsewatch.main")


async def run(host: str, port: int, db_path: str, with_storage: bool) -> None:
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _signal_handler(_signum, _frame) -> None:
        logger.info("Shutdown signal received")
        loop.call_soon_threadsafe(shutdown_event.set)

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    cfg = settings.model_copy(update={"DB_PATH": db_path})
    service = MonitoringService.from_settings(cfg, ws_manager=ws_manager, with_storage=with_storage)
    await service.start()

    app = create_app(service)
    uv_config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="warning",
        loop="none",
    )
    uv_server = uvicorn.Server(uv_config)
    api_task = asyncio.create_task(uv_server.serve(), name="api")

    logger.info(
        "PulseWatch — API=http://%s:%d storage=%s rules=%s",
        host, port, db_path if with_storage else "disabled",
        [r.id for r in service.engine.rules()],
    )

    await shutdown_event.wait()

    uv_server.should_exit = True
    await asyncio.gather(api_task, return_exceptions=True)
    await service.stop()
    logger.info("PulseWatch stopped cleanly")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="PulseWatch runtime monitoring service")
    parser.add_argument("--host", default=settings.API_HOST)
    parser.add_argument("--port", type=int, default=settings.API_PORT)
    parser.add_argument("--db", default=settings.DB_PATH, dest="db_path")
    parser.add_argument(
        "--no-storage", action="store_true",
        help="keep threat profiles in memory only",
    )
    parser.add_argument(
        "--log-level", default=settings.LOG_LEVEL.upper(),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    return parser.parse_args()


def main() -> NoReturn:
    args = _parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    if not 0 < args.port < 65536:
        print(f"ERROR: invalid --port: {args.port}", file=sys.stderr)
        sys.exit(1)

    asyncio.run(run(
        host=args.host,
        port=args.port,
        db_path=args.db_path,
        with_storage=not args.no_storage,
    ))
    sys.exit(0)


if __name__ == "__main__":
    main()
