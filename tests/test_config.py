import pytest

from dualtreex import config as dx_config


def test_runtime_config_defaults(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("DUALTREEX_WORKERS", raising=False)
    monkeypatch.setattr(dx_config.os, "cpu_count", lambda: 6)
    dx_config.reset_runtime_config_cache()

    runtime = dx_config.runtime_config()

    assert runtime.log_level == "INFO"
    assert runtime.enable_diagnostics is True
    assert runtime.enable_numba is False
    assert runtime.metric == "euclidean"
    assert runtime.workers == 6
    assert runtime.seed is None
    assert runtime.vp_selection == "random"
    assert runtime.vp_sample_size == 80
    assert runtime.vp_search_iterations == 40
    assert runtime.kd_pivot_selection == "variance"
    assert runtime.improved_traversal is True
    assert runtime.score_tie_eps == pytest.approx(1e-13)


def test_runtime_config_reads_environment(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("DUALTREEX_LOG_LEVEL", "debug")
    monkeypatch.setenv("DUALTREEX_ENABLE_DIAGNOSTICS", "0")
    monkeypatch.setenv("DUALTREEX_ENABLE_NUMBA", "yes")
    monkeypatch.setenv("DUALTREEX_METRIC", "Manhattan")
    monkeypatch.setenv("DUALTREEX_WORKERS", "3")
    monkeypatch.setenv("DUALTREEX_SEED", "17")
    monkeypatch.setenv("DUALTREEX_VP_SELECTION", "sampling")
    monkeypatch.setenv("DUALTREEX_VP_SAMPLE_SIZE", "12")
    monkeypatch.setenv("DUALTREEX_VP_SEARCH_ITERATIONS", "7")
    monkeypatch.setenv("DUALTREEX_KD_PIVOT", "incremental")
    monkeypatch.setenv("DUALTREEX_IMPROVED_TRAVERSAL", "off")
    monkeypatch.setenv("DUALTREEX_SCORE_TIE_EPS", "1e-9")
    dx_config.reset_runtime_config_cache()

    runtime = dx_config.runtime_config()

    assert runtime.log_level == "DEBUG"
    assert runtime.enable_diagnostics is False
    assert runtime.enable_numba is True
    assert runtime.metric == "manhattan"
    assert runtime.workers == 3
    assert runtime.seed == 17
    assert runtime.vp_selection == "sampling"
    assert runtime.vp_sample_size == 12
    assert runtime.vp_search_iterations == 7
    assert runtime.kd_pivot_selection == "incremental"
    assert runtime.improved_traversal is False
    assert runtime.score_tie_eps == pytest.approx(1e-9)


@pytest.mark.parametrize(
    "key, value",
    [
        ("DUALTREEX_WORKERS", "0"),
        ("DUALTREEX_WORKERS", "many"),
        ("DUALTREEX_SEED", "abc"),
        ("DUALTREEX_VP_SELECTION", "median"),
        ("DUALTREEX_VP_SAMPLE_SIZE", "-1"),
        ("DUALTREEX_KD_PIVOT", "random"),
        ("DUALTREEX_SCORE_TIE_EPS", "-1e-3"),
        ("DUALTREEX_SCORE_TIE_EPS", "tiny"),
    ],
)
def test_runtime_config_rejects_invalid_values(monkeypatch: pytest.MonkeyPatch, key, value):
    monkeypatch.setenv(key, value)
    dx_config.reset_runtime_config_cache()

    with pytest.raises(ValueError):
        dx_config.runtime_config()


def test_runtime_context_is_cached_until_reset(monkeypatch: pytest.MonkeyPatch):
    dx_config.reset_runtime_context()
    first = dx_config.runtime_context()
    monkeypatch.setenv("DUALTREEX_METRIC", "chebyshev")

    assert dx_config.runtime_context() is first
    assert dx_config.runtime_config().metric == "euclidean"

    dx_config.reset_runtime_context()
    assert dx_config.runtime_config().metric == "chebyshev"


def test_configure_runtime_overrides_environment(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("DUALTREEX_METRIC", "manhattan")
    override = dx_config.RuntimeConfig(metric="chebyshev", workers=2)

    context = dx_config.configure_runtime(override)

    assert context.config is override
    assert dx_config.runtime_config().metric == "chebyshev"
    assert dx_config.runtime_config().workers == 2


def test_describe_runtime_is_serialisable(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("DUALTREEX_SEED", "5")
    dx_config.reset_runtime_context()

    summary = dx_config.describe_runtime()

    assert summary["seed"] == 5
    assert summary["workers"] == 4
    assert summary["vp_selection"] == "random"
    assert set(summary) >= {"metric", "kd_pivot_selection", "improved_traversal"}
