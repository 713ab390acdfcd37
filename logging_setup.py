"""Logging helpers for the identity service."""

import logging


def configure_logging(level="INFO", force: bool = False) -> None:
    """Initialise the root logger once with a terse format.

    ``level`` accepts a level name or number. Pass ``force=True`` to
    reconfigure from tests or a second entry point.
    """

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
        force=force,
    )
