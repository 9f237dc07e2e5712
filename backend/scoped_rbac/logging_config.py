from __future__ import annotations

import logging
import sys

from scoped_rbac.settings import settings

_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | int | None = None) -> logging.Logger:
    """
    Configure the package logger once.

    Handlers are only attached to the `scoped_rbac` logger so that host
    applications keep control of the root logger.
    """

    root = logging.getLogger("scoped_rbac")
    resolved = level if level is not None else settings.log_level
    if isinstance(resolved, str):
        resolved = logging.getLevelName(resolved.upper())
        if not isinstance(resolved, int):
            resolved = logging.INFO
    root.setLevel(resolved)

    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(_FORMAT))
        root.addHandler(handler)
    return root


logger = configure_logging()
# 审计记录走独立的子 logger，方便下游单独采集
audit_logger = logging.getLogger("scoped_rbac.audit")


__all__ = ["audit_logger", "configure_logging", "logger"]
