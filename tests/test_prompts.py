from datetime import date

from vwork.prompts import build_chat_system_prompt, build_report_prompt


def test_chat_prompt_without_integrations(config):
    prompt = build_chat_system_prompt(config, [], today=date(2026, 3, 2))

    assert "Today is 2026-03-02." in prompt
    assert "No external tools are connected yet." in prompt
    assert "vwork__todo_read" in prompt
    assert "vwork__web_search" not in prompt


def test_chat_prompt_lists_sources_and_scoping(make_config, monkeypatch):
    config = make_config(
        github={"enabled": True, "orgs": ["acme"]},
        slack={"enabled": True, "channels": ["eng"]},
        web={"search_enabled": True},
    )

    prompt = build_chat_system_prompt(config, ["github", "slack", "notes"])

    assert "You have access to: GitHub, Slack, notes." in prompt
    assert "scoped to orgs: acme" in prompt
    assert "github__get_the_authenticated_user" in prompt
    assert "in:#channel" in prompt
    assert "vwork__web_search" in prompt


def test_report_prompt(make_config):
    config = make_config(
        jira={"enabled": True},
        servers=[{"name": "notes", "command": "notes-server"}],
    )

    prompt = build_report_prompt(config, "weekly", 7, today=date(2026, 3, 2))

    assert "concise weekly work report" in prompt
    assert "gathering data from Jira" in prompt
    assert "last 7 day(s)" in prompt
    assert "Jira: search for recently updated issues" in prompt
    assert "GitHub:" not in prompt
    assert "tools from these servers: notes" in prompt
