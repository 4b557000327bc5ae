from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator

from dualtreex import config as dx_config


@dataclass
class OperationLog:
    """Timing and metadata collected for one logged operation."""

    name: str
    started: float = field(default_factory=time.perf_counter)
    metadata: Dict[str, Any] = field(default_factory=dict)
    elapsed_seconds: float = 0.0

    def add_metadata(self, **values: Any) -> None:
        self.metadata.update(values)

    def render(self) -> str:
        parts = [f"{self.name} took {self.elapsed_seconds * 1e3:.3f}ms"]
        for key in sorted(self.metadata):
            parts.append(f"{key}={self.metadata[key]}")
        return " ".join(parts)


@contextmanager
def log_operation(
    logger: logging.Logger,
    name: str,
    *,
    level: int = logging.DEBUG,
) -> Iterator[OperationLog]:
    """Time the wrapped block and emit a single summary line on exit.

    The summary is only emitted when diagnostics are enabled in the active
    runtime configuration. Exceptions raised inside the block propagate
    unchanged; the partial timing is still logged.
    """

    op_log = OperationLog(name=name)
    try:
        yield op_log
    finally:
        op_log.elapsed_seconds = time.perf_counter() - op_log.started
        if dx_config.runtime_config().enable_diagnostics and logger.isEnabledFor(level):
            logger.log(level, op_log.render())


__all__ = ["OperationLog", "log_operation"]
