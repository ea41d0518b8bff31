import pytest

from checkpoint_inspector.config import InspectorConfig


def test_defaults():
    cfg = InspectorConfig.from_env({})
    assert cfg == InspectorConfig()
    assert cfg.module_delim == "."
    assert cfg.max_bin_count == 64
    assert cfg.histogram_auto_limit == 16 * 1024 * 1024
    assert cfg.spectrum_auto_limit == 4 * 1024 * 1024
    assert cfg.flatten is True


def test_env_overrides():
    cfg = InspectorConfig.from_env(
        {
            "CKPTI_MODULE_DELIM": "/",
            "CKPTI_MAX_BIN_COUNT": "128",
            "CKPTI_SPECTRUM_AUTO_LIMIT": "1_000",
            "CKPTI_FLATTEN": "no",
            "CKPTI_DEBUG": "1",
            "UNRELATED": "x",
        }
    )
    assert cfg.module_delim == "/"
    assert cfg.max_bin_count == 128
    assert cfg.spectrum_auto_limit == 1000
    assert cfg.flatten is False
    assert cfg.debug is True


@pytest.mark.parametrize(
    "key, value",
    [
        ("CKPTI_MAX_BIN_COUNT", "0"),
        ("CKPTI_MAX_BIN_COUNT", "many"),
        ("CKPTI_MODULE_DELIM", "::"),
        ("CKPTI_FLATTEN", "maybe"),
    ],
)
def test_invalid_env_values_name_the_variable(key, value):
    with pytest.raises(ValueError, match=key):
        InspectorConfig.from_env({key: value})


def test_from_process_environment(monkeypatch):
    monkeypatch.setenv("CKPTI_HISTOGRAM_AUTO_LIMIT", "42")
    assert InspectorConfig.from_env().histogram_auto_limit == 42


def test_with_overrides_skips_none():
    cfg = InspectorConfig().with_overrides(max_bin_count=None, module_delim="/", debug=None)
    assert cfg.max_bin_count == 64
    assert cfg.module_delim == "/"
    assert cfg.debug is False


def test_log_file_from_env():
    assert InspectorConfig.from_env({"CKPTI_LOG_FILE": "/tmp/ckpti.log"}).log_file == "/tmp/ckpti.log"
    assert InspectorConfig.from_env({"CKPTI_LOG_FILE": "  "}).log_file is None
