from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from vwork.errors import ConfigError

logger = logging.getLogger(__name__)

MODEL_ALIASES = {
    "sonnet": "claude-sonnet-4-5-20250929",
    "opus": "claude-opus-4-1-20250805",
    "haiku": "claude-3-5-haiku-20241022",
    "4o": "gpt-4o",
    "4": "gpt-4-turbo",
    "flash": "gemini/gemini-2.5-flash",
    "deepseek": "deepseek/deepseek-chat",
}

ENV_NAME_RE = re.compile(r"^[A-Z_][A-Z0-9_]*$")


def resolve_model_alias(name: str) -> str:
    return MODEL_ALIASES.get(name.lower(), name)


def get_optional_env(name: str, default: str) -> str:
    return os.environ.get(name, default)


def get_vwork_home() -> Path:
    return Path(get_optional_env("VWORK_HOME", "~/vwork")).expanduser()


def get_config_path() -> Path:
    return get_vwork_home() / "config.yaml"


def resolve_secret(value: str | None) -> str | None:
    """Env var names (UPPER_SNAKE) are looked up; anything else is the secret itself."""
    if not value:
        return None
    if ENV_NAME_RE.match(value):
        return os.environ.get(value) or None
    return value


def _expand(path: str) -> str:
    return str(Path(path).expanduser())


@dataclass(frozen=True)
class LLMConfig:
    model: str = "claude-sonnet-4-5-20250929"
    api_key_env: str | None = None
    temperature: float = 0.0
    max_tokens: int = 16384


@dataclass(frozen=True)
class GitHubConfig:
    enabled: bool = False
    token_env: str | None = None
    orgs: tuple[str, ...] = ()


@dataclass(frozen=True)
class JiraConfig:
    enabled: bool = False
    url: str = "https://mcp.atlassian.com/v1/mcp"


@dataclass(frozen=True)
class SlackConfig:
    enabled: bool = False
    token_env: str | None = None
    channels: tuple[str, ...] = ()


@dataclass(frozen=True)
class ReportConfig:
    lookback_days: int = 1
    output_dir: str = field(default_factory=lambda: str(get_vwork_home() / "reports"))


@dataclass(frozen=True)
class TodoConfig:
    enabled: bool = True
    dir: str = field(default_factory=lambda: str(get_vwork_home() / "todos"))


@dataclass(frozen=True)
class WebConfig:
    search_enabled: bool = False


@dataclass(frozen=True)
class ChatConfig:
    max_rounds: int = 20
    max_parallel_tools: int = 16
    report_postprocess_enabled: bool = False


@dataclass(frozen=True)
class ServerConfig:
    name: str
    command: str | None = None
    args: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict)
    url: str | None = None
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Config:
    llm: LLMConfig = field(default_factory=LLMConfig)
    github: GitHubConfig = field(default_factory=GitHubConfig)
    jira: JiraConfig = field(default_factory=JiraConfig)
    slack: SlackConfig = field(default_factory=SlackConfig)
    report: ReportConfig = field(default_factory=ReportConfig)
    todo: TodoConfig = field(default_factory=TodoConfig)
    web: WebConfig = field(default_factory=WebConfig)
    chat: ChatConfig = field(default_factory=ChatConfig)
    servers: tuple[ServerConfig, ...] = ()

    @property
    def home(self) -> Path:
        return get_vwork_home()

    @property
    def custom_server_names(self) -> list[str]:
        return [server.name for server in self.servers]


def _positive_int(value: Any, key: str) -> int:
    try:
        return max(1, int(value))
    except (TypeError, ValueError) as e:
        raise ConfigError(f"[{key}] must be a number, got {value!r}") from e


def _section(cls, data: Any, name: str):
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ConfigError(f"[{name}] must be a mapping, got {type(data).__name__}")

    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        logger.warning(f"Ignoring unknown keys in [{name}]: {', '.join(unknown)}")

    values = {}
    for key in known & set(data):
        value = data[key]
        if isinstance(value, list):
            value = tuple(value)
        values[key] = value
    try:
        return cls(**values)
    except TypeError as e:
        raise ConfigError(f"Invalid [{name}] section: {e}") from e


def config_from_dict(data: dict[str, Any] | None) -> Config:
    data = data or {}
    if not isinstance(data, dict):
        raise ConfigError("Config root must be a mapping")

    report = _section(ReportConfig, data.get("report"), "report")
    report = ReportConfig(
        lookback_days=_positive_int(report.lookback_days, "report.lookback_days"),
        output_dir=_expand(report.output_dir),
    )
    todo = _section(TodoConfig, data.get("todo"), "todo")
    todo = TodoConfig(enabled=bool(todo.enabled), dir=_expand(todo.dir))
    chat = _section(ChatConfig, data.get("chat"), "chat")
    chat = ChatConfig(
        max_rounds=_positive_int(chat.max_rounds, "chat.max_rounds"),
        max_parallel_tools=_positive_int(chat.max_parallel_tools, "chat.max_parallel_tools"),
        report_postprocess_enabled=bool(chat.report_postprocess_enabled),
    )

    raw_servers = data.get("servers") or []
    if not isinstance(raw_servers, list):
        raise ConfigError("[servers] must be a list")
    servers = []
    for idx, entry in enumerate(raw_servers):
        server = _section(ServerConfig, entry, f"servers[{idx}]")
        if not server.command and not server.url:
            raise ConfigError(f"Server '{server.name}' needs either a command or a url")
        servers.append(server)

    return Config(
        llm=_section(LLMConfig, data.get("llm"), "llm"),
        github=_section(GitHubConfig, data.get("github"), "github"),
        jira=_section(JiraConfig, data.get("jira"), "jira"),
        slack=_section(SlackConfig, data.get("slack"), "slack"),
        report=report,
        todo=todo,
        web=_section(WebConfig, data.get("web"), "web"),
        chat=chat,
        servers=tuple(servers),
    )


def load_config(path: str | Path | None = None) -> Config:
    config_path = Path(path) if path else get_config_path()
    if not config_path.exists():
        raise ConfigError(f'Config not found at {config_path}. Run "vwork init" first.')

    try:
        data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    return config_from_dict(data)


DEFAULT_CONFIG = """\
llm:
  # Any litellm model id; aliases such as sonnet, opus, 4o are accepted.
  model: claude-sonnet-4-5-20250929
  # Env var name (e.g. ANTHROPIC_API_KEY) or the key itself.
  # api_key_env: ANTHROPIC_API_KEY

github:
  enabled: false
  # token_env: GITHUB_TOKEN
  orgs: []

jira:
  enabled: false
  url: https://mcp.atlassian.com/v1/mcp

slack:
  enabled: false
  # token_env: SLACK_BOT_TOKEN
  channels: []

report:
  lookback_days: 1
  # Defaults to $VWORK_HOME/reports.
  # output_dir: ~/vwork/reports

todo:
  enabled: true
  # Defaults to $VWORK_HOME/todos.
  # dir: ~/vwork/todos

web:
  # Requires TAVILY_API_KEY and the `search` extra.
  search_enabled: false

chat:
  max_rounds: 20
  max_parallel_tools: 16
  report_postprocess_enabled: false

# Extra tool servers, either stdio (command/args/env) or http (url/headers).
servers: []
"""


def init_config() -> str:
    home = get_vwork_home()
    for sub in ("", "reports", "auth", "todos"):
        (home / sub).mkdir(parents=True, exist_ok=True)

    config_path = get_config_path()
    if config_path.exists():
        return f"Config already exists at {config_path}"

    config_path.write_text(DEFAULT_CONFIG, encoding="utf-8")
    return f"Config created at {config_path}\nEdit it to add your API keys and preferences."
