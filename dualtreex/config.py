from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

_SUPPORTED_VP_SELECTION = {"random", "sampling"}
_SUPPORTED_KD_PIVOT = {"incremental", "variance"}
_DEFAULT_VP_SAMPLE_SIZE = 80
_DEFAULT_VP_SEARCH_ITERATIONS = 40
_DEFAULT_SCORE_TIE_EPS = 1e-13


def _bool_from_env(value: str | None, *, default: bool) -> bool:
    if value is None:
        return default
    value = value.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    return default


def _parse_optional_int(raw: str | None) -> int | None:
    if raw is None or raw.strip() == "":
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid integer value '{raw}'") from exc


def _parse_optional_float(raw: str | None, *, default: float) -> float:
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid float value '{raw}'") from exc


def _parse_choice(value: str | None, *, default: str, choices: set[str], label: str) -> str:
    if value is None or value.strip() == "":
        return default
    choice = value.strip().lower()
    if choice not in choices:
        raise ValueError(f"Unsupported {label} '{choice}'. Expected one of {choices}.")
    return choice


def _parse_workers(raw: str | None) -> int:
    workers = _parse_optional_int(raw)
    if workers is None:
        return os.cpu_count() or 1
    if workers <= 0:
        raise ValueError(f"Worker count must be positive, got {workers}.")
    return workers


def _parse_positive(raw: str | None, *, default: int, label: str) -> int:
    value = _parse_optional_int(raw)
    if value is None:
        return default
    if value <= 0:
        raise ValueError(f"{label} must be positive, got {value}.")
    return value


@dataclass(frozen=True)
class RuntimeConfig:
    log_level: str = "INFO"
    enable_diagnostics: bool = True
    enable_numba: bool = False
    metric: str = "euclidean"
    workers: int = 1
    seed: int | None = None
    vp_selection: str = "random"
    vp_sample_size: int = _DEFAULT_VP_SAMPLE_SIZE
    vp_search_iterations: int = _DEFAULT_VP_SEARCH_ITERATIONS
    kd_pivot_selection: str = "variance"
    improved_traversal: bool = True
    score_tie_eps: float = _DEFAULT_SCORE_TIE_EPS

    @classmethod
    def from_env(cls) -> "RuntimeConfig":
        log_level = os.getenv("DUALTREEX_LOG_LEVEL", "INFO").strip().upper() or "INFO"
        enable_diagnostics = _bool_from_env(
            os.getenv("DUALTREEX_ENABLE_DIAGNOSTICS"), default=True
        )
        enable_numba = _bool_from_env(os.getenv("DUALTREEX_ENABLE_NUMBA"), default=False)
        metric = os.getenv("DUALTREEX_METRIC", "euclidean").strip().lower() or "euclidean"
        workers = _parse_workers(os.getenv("DUALTREEX_WORKERS"))
        seed = _parse_optional_int(os.getenv("DUALTREEX_SEED"))
        vp_selection = _parse_choice(
            os.getenv("DUALTREEX_VP_SELECTION"),
            default="random",
            choices=_SUPPORTED_VP_SELECTION,
            label="vantage-point selection",
        )
        vp_sample_size = _parse_positive(
            os.getenv("DUALTREEX_VP_SAMPLE_SIZE"),
            default=_DEFAULT_VP_SAMPLE_SIZE,
            label="Vantage-point sample size",
        )
        vp_search_iterations = _parse_positive(
            os.getenv("DUALTREEX_VP_SEARCH_ITERATIONS"),
            default=_DEFAULT_VP_SEARCH_ITERATIONS,
            label="Vantage-point search iterations",
        )
        kd_pivot_selection = _parse_choice(
            os.getenv("DUALTREEX_KD_PIVOT"),
            default="variance",
            choices=_SUPPORTED_KD_PIVOT,
            label="KD pivot selection",
        )
        improved_traversal = _bool_from_env(
            os.getenv("DUALTREEX_IMPROVED_TRAVERSAL"), default=True
        )
        score_tie_eps = _parse_optional_float(
            os.getenv("DUALTREEX_SCORE_TIE_EPS"), default=_DEFAULT_SCORE_TIE_EPS
        )
        if score_tie_eps < 0.0:
            raise ValueError(f"Score tie epsilon must be non-negative, got {score_tie_eps}.")
        return cls(
            log_level=log_level,
            enable_diagnostics=enable_diagnostics,
            enable_numba=enable_numba,
            metric=metric,
            workers=workers,
            seed=seed,
            vp_selection=vp_selection,
            vp_sample_size=vp_sample_size,
            vp_search_iterations=vp_search_iterations,
            kd_pivot_selection=kd_pivot_selection,
            improved_traversal=improved_traversal,
            score_tie_eps=score_tie_eps,
        )


def _configure_logging(level: str) -> None:
    logger = logging.getLogger("dualtreex")
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(level)
        formatter = logging.Formatter("%(levelname)s %(name)s: %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)


@dataclass
class RuntimeContext:
    """Runtime configuration plus the one-time side effects it implies."""

    config: RuntimeConfig
    _activated: bool = field(default=False, init=False, repr=False)

    def activate(self) -> None:
        """Apply logging configuration once."""

        if self._activated:
            return
        _configure_logging(self.config.log_level)
        self._activated = True


_CONTEXT_CACHE: Optional[RuntimeContext] = None


def runtime_context() -> RuntimeContext:
    """Return the cached runtime context, constructing it if necessary."""

    global _CONTEXT_CACHE
    if _CONTEXT_CACHE is None:
        context = RuntimeContext(config=RuntimeConfig.from_env())
        context.activate()
        _CONTEXT_CACHE = context
    return _CONTEXT_CACHE


def runtime_config() -> RuntimeConfig:
    return runtime_context().config


def configure_runtime(config: RuntimeConfig) -> RuntimeContext:
    """Force the active runtime context to use ``config`` instead of env defaults."""

    global _CONTEXT_CACHE
    context = RuntimeContext(config=config)
    context.activate()
    _CONTEXT_CACHE = context
    return context


def reset_runtime_context() -> None:
    """Clear the cached runtime context (used in tests)."""

    global _CONTEXT_CACHE
    _CONTEXT_CACHE = None


def reset_runtime_config_cache() -> None:
    reset_runtime_context()


def describe_runtime() -> Dict[str, Any]:
    """Return a serialisable view of the active runtime configuration."""

    config = runtime_config()
    return {
        "log_level": config.log_level,
        "enable_diagnostics": config.enable_diagnostics,
        "enable_numba": config.enable_numba,
        "metric": config.metric,
        "workers": config.workers,
        "seed": config.seed,
        "vp_selection": config.vp_selection,
        "vp_sample_size": config.vp_sample_size,
        "vp_search_iterations": config.vp_search_iterations,
        "kd_pivot_selection": config.kd_pivot_selection,
        "improved_traversal": config.improved_traversal,
        "score_tie_eps": config.score_tie_eps,
    }


__all__ = [
    "RuntimeConfig",
    "RuntimeContext",
    "runtime_context",
    "runtime_config",
    "configure_runtime",
    "reset_runtime_context",
    "reset_runtime_config_cache",
    "describe_runtime",
]
