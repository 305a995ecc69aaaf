# src/visa_compliance/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then runs the console REPL on an
asyncio event loop.
"""

from __future__ import annotations

import asyncio
import logging

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.console_connector import ConsoleNotifier, run_console_loop
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)


def main() -> None:
    settings = get_settings()

    log_file = setup_logging(
        log_dir=getattr(settings, "data_dir", ".local/visa"),
        console_level=getattr(settings, "log_level", "INFO"),
    )
    logger.info("Starting %s (full log: %s)", getattr(settings, "app_name", "visa-compliance"), log_file)

    # IMPORTANT: reuse same settings object
    state = create_initial_state(settings=settings, notifier=ConsoleNotifier())

    try:
        asyncio.run(run_console_loop(state))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down...")
    finally:
        logger.info("Bye.")


if __name__ == "__main__":
    main()
