from vwork.llm.provider import LLMTool
from vwork.tools.registry import (
    BuiltinTool,
    build_catalog,
    builtin_tools,
    filter_tools,
    is_allowed,
    namespace_of,
)


def _tool(name: str) -> LLMTool:
    return LLMTool(name=name, input_schema={"type": "object", "properties": {}})


def test_filter_keeps_allow_listed_and_drops_the_rest_silently():
    candidates = [
        _tool("github__search_issues"),
        _tool("github__merge_pull_request"),
        _tool("slack__slack_get_channel_history"),
        _tool("slack__slack_post_message"),
        _tool("jira__search"),
        _tool("vwork__read_file"),
    ]

    kept = [t.name for t in filter_tools(candidates)]

    assert kept == [
        "github__search_issues",
        "slack__slack_get_channel_history",
        "jira__search",
        "vwork__read_file",
    ]


def test_first_party_always_allowed():
    assert is_allowed("vwork__anything")
    assert is_allowed("demo__echo")
    assert not is_allowed("github__delete_repository")


def test_namespace_of():
    assert namespace_of("github__get_me") == "github"
    assert namespace_of("plain") is None
    assert namespace_of("__weird") is None


def test_builtin_lookup_is_closed():
    assert BuiltinTool.lookup("vwork__grep") is BuiltinTool.GREP
    assert BuiltinTool.lookup("vwork__bash") is None


def test_builtin_tools_follow_config(make_config):
    default = [t.name for t in builtin_tools(make_config())]
    assert "vwork__todo_read" in default
    assert "vwork__web_search" not in default
    assert default[-1] == "vwork__generate_report"

    toggled = [
        t.name
        for t in builtin_tools(make_config(todo={"enabled": False}, web={"search_enabled": True}))
    ]
    assert "vwork__todo_read" not in toggled
    assert "vwork__todo_write" not in toggled
    assert "vwork__web_search" in toggled


def test_every_builtin_definition_matches_its_enum_value(make_config):
    config = make_config(web={"search_enabled": True})
    names = {t.name for t in builtin_tools(config)}
    assert names == {member.value for member in BuiltinTool}


def test_catalog_puts_remote_tools_first(config):
    catalog = build_catalog(config, [_tool("github__get_me"), _tool("github__fork_repository")])
    names = [t.name for t in catalog]
    assert names[0] == "github__get_me"
    assert "github__fork_repository" not in names
    assert names[1].startswith("vwork__")
