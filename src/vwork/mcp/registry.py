from __future__ import annotations

from dataclasses import dataclass, field

from vwork.config import Config, resolve_secret
from vwork.errors import ConfigError


@dataclass(frozen=True)
class StdioServerEntry:
    name: str
    command: str
    args: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class HttpServerEntry:
    name: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)


ServerEntry = StdioServerEntry | HttpServerEntry


def get_enabled_servers(config: Config) -> list[ServerEntry]:
    servers: list[ServerEntry] = []

    if config.github.enabled:
        token = resolve_secret(config.github.token_env) or resolve_secret("GITHUB_TOKEN")
        if not token:
            raise ConfigError("GitHub enabled but token not configured; set github.token_env or GITHUB_TOKEN")
        servers.append(
            StdioServerEntry(
                name="github",
                command="npx",
                args=("-y", "@modelcontextprotocol/server-github"),
                env={"GITHUB_PERSONAL_ACCESS_TOKEN": token},
            )
        )

    if config.jira.enabled:
        servers.append(HttpServerEntry(name="jira", url=config.jira.url))

    if config.slack.enabled:
        token = resolve_secret(config.slack.token_env) or resolve_secret("SLACK_BOT_TOKEN")
        if not token:
            raise ConfigError("Slack enabled but token not configured; set slack.token_env or SLACK_BOT_TOKEN")
        servers.append(
            StdioServerEntry(
                name="slack",
                command="npx",
                args=("-y", "@modelcontextprotocol/server-slack"),
                env={"SLACK_BOT_TOKEN": token},
            )
        )

    for custom in config.servers:
        if custom.url:
            servers.append(HttpServerEntry(name=custom.name, url=custom.url, headers=dict(custom.headers)))
        else:
            servers.append(
                StdioServerEntry(
                    name=custom.name,
                    command=custom.command or "",
                    args=tuple(custom.args),
                    env={k: resolve_secret(v) or "" for k, v in custom.env.items()},
                )
            )

    return servers
