from __future__ import annotations

import logging
import sys


def setup_logging(level: str = "INFO") -> None:
    """Single stdout handler on the root logger; safe to call twice."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    for handler in list(root.handlers):
        if getattr(handler, "_gatekeeper", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        )
    )
    handler._gatekeeper = True  # type: ignore[attr-defined]
    root.addHandler(handler)

    # discord.py is chatty at INFO.
    logging.getLogger("discord").setLevel(logging.WARNING)
    logging.getLogger("discord.http").setLevel(logging.WARNING)
