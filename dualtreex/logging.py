from __future__ import annotations

import logging

_ROOT_NAME = "dualtreex"


def get_logger(name: str | None = None) -> logging.Logger:
    """Return the package logger or one of its children (``dualtreex.<name>``)."""

    if not name:
        return logging.getLogger(_ROOT_NAME)
    if name.startswith(_ROOT_NAME + ".") or name == _ROOT_NAME:
        return logging.getLogger(name)
    return logging.getLogger(f"{_ROOT_NAME}.{name}")


__all__ = ["get_logger"]
