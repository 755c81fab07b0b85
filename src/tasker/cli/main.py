# src/tasker/cli/main.py

"""
Process entrypoint.

Initializes logging, builds AppState, then runs until SIGINT/SIGTERM:
- notification dispatch worker (drains in-flight pushes on shutdown),
- change-bus subscription,
- WebSocket gateway (optional).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..core.state import AppState
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)


async def _shutdown(state: AppState) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    if state.gateway is not None:
        try:
            await state.gateway.shutdown()
        except Exception:
            logger.exception("Gateway shutdown failed.")

    try:
        await state.bus.stop()
    except Exception:
        logger.exception("Change bus stop failed.")

    try:
        await state.worker.stop()
    except Exception:
        logger.exception("Dispatch worker stop failed.")

    try:
        await state.pubsub.close()
    except Exception:
        logger.debug("Pub/sub close failed.", exc_info=True)

    aclose = getattr(state.push_sender, "aclose", None)
    if aclose is not None:
        try:
            await aclose()
        except Exception:
            logger.debug("Push sender close failed.", exc_info=True)

    # TaskStore and the queue use short-lived sqlite connections per call; no explicit close required.


async def serve(state: AppState) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _handle_signal(signum: int) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        # Some platforms do not support signal handlers on the loop.
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, _handle_signal, sig)

    try:
        await state.worker.start()
        await state.bus.start()
        if state.gateway is not None:
            await state.gateway.start()
        logger.info("Running. Press Ctrl+C to stop.")
        await stop.wait()
    finally:
        await _shutdown(state)


def main() -> None:
    settings = get_settings()

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.info("Starting %s...", settings.app_name)

    state = create_initial_state(settings=settings)

    try:
        asyncio.run(serve(state))
    except KeyboardInterrupt:
        pass
    logger.info("Bye.")


if __name__ == "__main__":
    main()
