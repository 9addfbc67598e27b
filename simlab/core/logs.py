"""
Console logging setup shared by the API and worker processes.
"""

from __future__ import annotations

import logging
import sys

LOGGERS = [
    "simlab",
    "simlab.api",
    "simlab.store",
    "simlab.queue",
    "simlab.dispatcher",
    "simlab.worker",
    "simlab.reconcile",
]


def configure_logging() -> None:
    """Ensure an INFO-level console handler exists (uvicorn may preconfigure logging)."""
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(logging.INFO)
    for name in LOGGERS:
        logging.getLogger(name).setLevel(logging.INFO)
