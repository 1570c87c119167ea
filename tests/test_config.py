import logging

import pytest

from vwork.config import (
    Config,
    config_from_dict,
    get_config_path,
    init_config,
    load_config,
    resolve_model_alias,
    resolve_secret,
)
from vwork.errors import ConfigError
from vwork.mcp.registry import HttpServerEntry, StdioServerEntry, get_enabled_servers


def test_defaults():
    config = config_from_dict({})
    assert config.chat.max_rounds == 20
    assert config.chat.max_parallel_tools == 16
    assert config.chat.report_postprocess_enabled is False
    assert config.todo.enabled is True
    assert config.web.search_enabled is False


def test_lists_become_tuples_and_values_are_clamped():
    config = config_from_dict(
        {"github": {"enabled": True, "orgs": ["acme"]}, "chat": {"max_rounds": 0}, "report": {"lookback_days": -3}}
    )
    assert config.github.orgs == ("acme",)
    assert config.chat.max_rounds == 1
    assert config.report.lookback_days == 1


def test_unknown_keys_warn(caplog):
    with caplog.at_level(logging.WARNING, logger="vwork.config"):
        config_from_dict({"llm": {"model": "4o", "colour": "blue"}})
    assert "Ignoring unknown keys in [llm]: colour" in caplog.text


def test_section_must_be_mapping():
    with pytest.raises(ConfigError, match=r"\[chat\] must be a mapping"):
        config_from_dict({"chat": ["nope"]})


def test_custom_server_needs_command_or_url():
    with pytest.raises(ConfigError, match="needs either a command or a url"):
        config_from_dict({"servers": [{"name": "broken"}]})


def test_load_config_missing(vwork_home):
    with pytest.raises(ConfigError, match="vwork init"):
        load_config()


def test_load_config_invalid_yaml(vwork_home):
    get_config_path().write_text("llm: [unclosed", encoding="utf-8")
    with pytest.raises(ConfigError, match="Invalid YAML"):
        load_config()


def test_init_then_load(vwork_home):
    assert "Config created" in init_config()
    assert "already exists" in init_config()
    assert (vwork_home / "reports").is_dir()

    config = load_config()
    assert isinstance(config, Config)
    assert config.llm.model == "claude-sonnet-4-5-20250929"


def test_resolve_secret(monkeypatch):
    monkeypatch.setenv("MY_TOKEN", "t0k")
    assert resolve_secret("MY_TOKEN") == "t0k"
    assert resolve_secret("ghp_literalValue") == "ghp_literalValue"
    assert resolve_secret("UNSET_TOKEN_NAME") is None
    assert resolve_secret(None) is None


def test_model_aliases():
    assert resolve_model_alias("Sonnet") == "claude-sonnet-4-5-20250929"
    assert resolve_model_alias("gpt-4o-mini") == "gpt-4o-mini"


def test_enabled_servers(monkeypatch):
    monkeypatch.setenv("GH", "ghtoken")
    monkeypatch.setenv("API_KEY", "secret")
    config = config_from_dict(
        {
            "github": {"enabled": True, "token_env": "GH"},
            "jira": {"enabled": True},
            "servers": [
                {"name": "notes", "command": "notes-server", "args": ["--stdio"], "env": {"KEY": "API_KEY"}},
                {"name": "remote", "url": "https://tools.example.com/mcp", "headers": {"X-Team": "a"}},
            ],
        }
    )

    servers = get_enabled_servers(config)

    assert [s.name for s in servers] == ["github", "jira", "notes", "remote"]
    github = servers[0]
    assert isinstance(github, StdioServerEntry)
    assert github.env == {"GITHUB_PERSONAL_ACCESS_TOKEN": "ghtoken"}
    assert isinstance(servers[1], HttpServerEntry)
    assert servers[2].args == ("--stdio",) and servers[2].env == {"KEY": "secret"}
    assert servers[3].headers == {"X-Team": "a"}


def test_enabled_integration_without_token_fails(monkeypatch):
    monkeypatch.delenv("SLACK_BOT_TOKEN", raising=False)
    with pytest.raises(ConfigError, match="Slack enabled but token not configured"):
        get_enabled_servers(config_from_dict({"slack": {"enabled": True}}))


@pytest.mark.parametrize(
    "data, key",
    [
        ({"report": {"lookback_days": "a week"}}, "report.lookback_days"),
        ({"chat": {"max_rounds": "lots"}}, "chat.max_rounds"),
        ({"chat": {"max_parallel_tools": None}}, "chat.max_parallel_tools"),
    ],
)
def test_non_numeric_values_are_config_errors(data, key):
    with pytest.raises(ConfigError, match=rf"\[{key}\] must be a number"):
        config_from_dict(data)
