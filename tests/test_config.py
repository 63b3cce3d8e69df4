"""Tests for sshtop.config."""

from __future__ import annotations

import tomllib
from pathlib import Path

import pytest

from sshtop import config as config_module
from sshtop.config import DEFAULT_CONFIG, _deep_merge, apply_overrides, dump_default_config, load_config
from sshtop.exceptions import ConfigError


@pytest.fixture(autouse=True)
def no_user_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the default location at an empty temp dir so a real user file is never read."""
    default = tmp_path / "home" / "config.toml"
    monkeypatch.setattr(config_module, "_DEFAULT_PATH", default)
    return default


class TestLoadConfigDefaults:
    def test_defaults_returned_when_no_file(self) -> None:
        cfg = load_config(None)
        assert cfg["connection"]["port"] == 22
        assert cfg["connection"]["use_key"] is False
        assert cfg["monitor"]["poll_interval"] == 2.0
        assert cfg["monitor"]["history_size"] == 100

    def test_all_default_keys_present(self) -> None:
        cfg = load_config(None)
        assert set(cfg.keys()) == set(DEFAULT_CONFIG.keys())

    def test_defaults_not_mutated(self) -> None:
        cfg = load_config(None)
        cfg["connection"]["host"] = "changed"
        assert DEFAULT_CONFIG["connection"]["host"] == ""


class TestTomlOverlay:
    def test_overrides_connection(self, tmp_path: Path) -> None:
        toml_file = tmp_path / "config.toml"
        toml_file.write_text('[connection]\nhost = "box"\nusername = "ops"\n')
        cfg = load_config(toml_file)
        assert cfg["connection"]["host"] == "box"
        assert cfg["connection"]["username"] == "ops"
        # Other keys in the section remain at defaults
        assert cfg["connection"]["port"] == 22

    def test_omitted_sections_preserved(self, tmp_path: Path) -> None:
        toml_file = tmp_path / "config.toml"
        toml_file.write_text("[monitor]\npoll_interval = 5.0\n")
        cfg = load_config(toml_file)
        assert cfg["monitor"]["poll_interval"] == 5.0
        assert cfg["logging"] == DEFAULT_CONFIG["logging"]

    def test_default_location_used(self, no_user_config: Path) -> None:
        no_user_config.parent.mkdir(parents=True)
        no_user_config.write_text("[monitor]\nhistory_size = 50\n")
        cfg = load_config(None)
        assert cfg["monitor"]["history_size"] == 50

    def test_invalid_default_file_ignored(self, no_user_config: Path) -> None:
        no_user_config.parent.mkdir(parents=True)
        no_user_config.write_text("this is [not valid toml\n")
        cfg = load_config(None)
        assert cfg["monitor"]["history_size"] == 100


class TestExplicitPath:
    def test_missing_explicit_path_errors(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "nonexistent.toml")

    def test_invalid_toml_errors(self, tmp_path: Path) -> None:
        bad_file = tmp_path / "bad.toml"
        bad_file.write_text("this is [not valid toml\n")
        with pytest.raises(ConfigError, match="invalid TOML"):
            load_config(bad_file)


class TestValidation:
    @pytest.mark.parametrize(
        "body",
        [
            '[connection]\npassword = "hunter2"\n',
            "[connection]\nport = 0\n",
            "[connection]\nport = 70000\n",
            "[monitor]\npoll_interval = 0\n",
            "[monitor]\nhistory_size = 0\n",
            "[monitor]\npoll_interval = \"fast\"\n",
            "[monitor]\nhistory_size = 2.5\n",
            "[connection]\nport = \"22\"\n",
            "[connection]\nport = true\n",
            "[connection]\nuse_key = \"false\"\n",
            "[connection]\nhost = 42\n",
            "monitor = 5\n",
            "connection = \"box\"\n",
        ],
    )
    def test_rejected_values(self, tmp_path: Path, body: str) -> None:
        toml_file = tmp_path / "config.toml"
        toml_file.write_text(body)
        with pytest.raises(ConfigError):
            load_config(toml_file)


class TestOverrides:
    def test_none_values_skipped(self) -> None:
        cfg = apply_overrides(load_config(None), {"connection": {"host": "box", "port": None}})
        assert cfg["connection"]["host"] == "box"
        assert cfg["connection"]["port"] == 22

    def test_overrides_validated(self) -> None:
        with pytest.raises(ConfigError):
            apply_overrides(load_config(None), {"monitor": {"poll_interval": -1.0}})


class TestDeepMerge:
    def test_first_level_merge(self) -> None:
        base = {"a": {"x": 1, "y": 2}, "b": 3}
        merged = _deep_merge(base, {"a": {"y": 20}, "c": 4})
        assert merged == {"a": {"x": 1, "y": 20}, "b": 3, "c": 4}
        assert base["a"]["y"] == 2


class TestDumpDefaultConfig:
    def test_dump_is_valid_toml(self) -> None:
        parsed = tomllib.loads(dump_default_config())
        assert parsed == DEFAULT_CONFIG

    def test_dump_has_no_password(self) -> None:
        assert "password" not in dump_default_config()


class TestTypeErrors:
    def test_message_names_key_and_value(self, tmp_path: Path) -> None:
        toml_file = tmp_path / "config.toml"
        toml_file.write_text('[monitor]\npoll_interval = "fast"\n')
        with pytest.raises(ConfigError, match="monitor.poll_interval must be a number, got 'fast'"):
            load_config(toml_file)

    def test_section_must_be_table(self, tmp_path: Path) -> None:
        toml_file = tmp_path / "config.toml"
        toml_file.write_text("monitor = 5\n")
        with pytest.raises(ConfigError, match=r"\[monitor\] must be a table"):
            load_config(toml_file)

    def test_integer_accepted_for_float(self, tmp_path: Path) -> None:
        toml_file = tmp_path / "config.toml"
        toml_file.write_text("[monitor]\npoll_interval = 3\n[connection]\ntimeout = 5\n")
        cfg = load_config(toml_file)
        assert cfg["monitor"]["poll_interval"] == 3
        assert cfg["connection"]["timeout"] == 5

    def test_wrong_type_in_default_file_raises(self, no_user_config: Path) -> None:
        no_user_config.parent.mkdir(parents=True)
        no_user_config.write_text('[connection]\nuse_key = "false"\n')
        with pytest.raises(ConfigError, match="use_key must be true or false"):
            load_config(None)
