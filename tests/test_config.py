"""Tests for configuration loading and HookSystem.from_config."""

import asyncio
import re

import httpx
import pytest
import yaml

from hookline.config import (
    DEFAULT_TIMEOUT,
    HooklineConfig,
    Replacement,
    create_config_template,
    ensure_config_template,
    get_config_dir,
    get_config_file,
    load_config,
)
from hookline.errors import ConfigError
from hookline.hooks import HookChannel
from hookline.system import HookSystem


def _run(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


class TestConfigPaths:
    def test_hookline_home_wins(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HOOKLINE_HOME", str(tmp_path / "home"))
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
        assert get_config_dir() == tmp_path / "home"
        assert get_config_file() == tmp_path / "home" / "config.yaml"

    def test_xdg_config_home(self, tmp_path, monkeypatch):
        monkeypatch.delenv("HOOKLINE_HOME", raising=False)
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
        assert get_config_dir() == tmp_path / "hookline"

    def test_default_location(self, monkeypatch, tmp_path):
        monkeypatch.delenv("HOOKLINE_HOME", raising=False)
        monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
        monkeypatch.setenv("HOME", str(tmp_path))
        assert get_config_dir() == tmp_path / ".config" / "hookline"


class TestLoadConfig:
    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "nope.yaml")
        assert config.logging.enabled is False
        assert config.persistence.enabled is False
        assert config.persistence.max_size == 1000
        assert config.timeout == DEFAULT_TIMEOUT
        assert config.url_replacements == []

    def test_full_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            """\
logging:
  enabled: true
  detailed: true
persistence:
  enabled: true
  max_size: 5
  save_body: true
  path: /tmp/requests.json
timeout: 2.5
url_replacements:
  - from: "^https://old\\\\.example\\\\.com/(.+)$"
    to: "https://new.example.com/\\\\1"
    regex: true
text_replacements:
  - from: foo
    to: bar
"""
        )
        config = load_config(path)
        assert config.path == path
        assert config.logging.detailed is True
        assert config.persistence.max_size == 5
        assert config.persistence.save_body is True
        assert config.persistence.path == "/tmp/requests.json"
        assert config.timeout == 2.5

        rule = config.url_replacements[0]
        assert rule.regex is True
        assert isinstance(rule.compiled_matcher(), re.Pattern)
        assert config.text_replacements[0].compiled_matcher() == "foo"

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config(path).logging.enabled is False

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("{{invalid yaml")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="YAML dictionary"):
            load_config(path)

    def test_bad_values(self):
        with pytest.raises(ConfigError):
            HooklineConfig.from_dict({"timeout": "soon"})
        with pytest.raises(ConfigError):
            HooklineConfig.from_dict({"logging": ["enabled"]})

    def test_replacement_needs_from_and_to(self):
        with pytest.raises(ConfigError):
            Replacement.from_dict({"from": "x"})
        with pytest.raises(ConfigError):
            Replacement.from_dict("x -> y")


class TestTemplate:
    def test_template_is_valid_config(self):
        data = yaml.safe_load(create_config_template())
        config = HooklineConfig.from_dict(data)
        assert config.logging.enabled is True
        assert config.persistence.enabled is False
        assert config.timeout == 30

    def test_ensure_template(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HOOKLINE_HOME", str(tmp_path))
        path = ensure_config_template()
        assert path == tmp_path / "config.yaml"

        path.write_text("timeout: 1\n")
        ensure_config_template()
        assert path.read_text() == "timeout: 1\n"

        ensure_config_template(force=True)
        assert "hookline configuration" in path.read_text()


class TestFromConfig:
    def test_presets_are_registered(self, tmp_path):
        config = HooklineConfig.from_dict(
            {
                "logging": {"enabled": True},
                "persistence": {"enabled": True, "path": str(tmp_path / "state.json")},
                "url_replacements": [{"from": "https://a.example.com/", "to": "https://b.example.com/"}],
                "text_replacements": [{"from": "x", "to": "y"}],
            }
        )
        hooks = HookSystem.from_config(config)

        assert len(hooks.registry.list_hooks(HookChannel.URL_REPLACE)) == 1
        assert len(hooks.registry.list_hooks(HookChannel.DATA_TRANSFORM)) == 1
        assert hooks.registry.list_hooks(HookChannel.AFTER_REQUEST) == ["logger", "persistence", "auto-save"]

    def test_config_rules_apply_to_requests(self, capsys):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200, text="hello old world")

        config = HooklineConfig.from_dict(
            {
                "url_replacements": [
                    {"from": "^https://old\\.example\\.com/(.*)$", "to": r"https://new.example.com/\1", "regex": True}
                ],
                "text_replacements": [{"from": "old", "to": "new"}],
            }
        )

        async def main():
            async with HookSystem.from_config(config, transport=httpx.MockTransport(handler)) as hooks:
                return await hooks.fetch("https://old.example.com/page")

        response = _run(main())
        assert seen == ["https://new.example.com/page"]
        assert response.text == "hello new world"
        # Notices follow the logging setting
        assert capsys.readouterr().out == ""

    def test_declared_hooks_and_startup_are_loaded(self, tmp_path, monkeypatch):
        import sys

        monkeypatch.setattr(sys, "path", list(sys.path))
        (tmp_path / "cfg_hooks_mod.py").write_text(
            "def warm(ctx):\n    pass\n\n\ndef audit(exchange):\n    pass\n"
        )
        config = HooklineConfig.from_dict(
            {
                "python_path": [str(tmp_path)],
                "hooks": {"after_request": [{"name": "audit", "module": "cfg_hooks_mod", "function": "audit", "priority": 5}]},
                "startup": [{"name": "warm", "module": "cfg_hooks_mod", "function": "warm"}],
            }
        )
        try:
            hooks = HookSystem.from_config(config)
        finally:
            sys.modules.pop("cfg_hooks_mod", None)

        assert hooks.registry.list_hooks(HookChannel.AFTER_REQUEST) == ["audit", "auto-save"]
        assert [p.id for p in hooks.startup.processes] == ["warm"]

    def test_timeout_is_used(self):
        config = HooklineConfig.from_dict({"timeout": 3})
        hooks = HookSystem.from_config(config)
        client = hooks.client()
        try:
            assert client.timeout.read == 3
        finally:
            _run(client.aclose())
