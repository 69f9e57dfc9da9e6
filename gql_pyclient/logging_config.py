"""Logging setup for the command-line interface."""

import logging


def configure_logging(*, level: int = logging.INFO, force: bool = False) -> None:
    """Initialise the root logger with a terse format suitable for CLI output.

    The library itself only creates module loggers; handlers are configured
    here, by the entry point. Pass ``force=True`` to reconfigure in tests.
    """
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
        force=force,
    )
