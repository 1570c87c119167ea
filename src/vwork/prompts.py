from __future__ import annotations

from datetime import date

from vwork.config import Config


class Prompts:
    chat_system = """You are vwork, an AI assistant for work. Today is {today}.

{sources_line}

## What you can do
- Answer questions about recent work activity (PRs, issues, messages, etc.)
- Generate work reports (daily, weekly, or custom)
- Read and write files in {home}/ (reports, notes, todos)
- Search across connected tools to find specific information
- Correlate activity across tools (e.g. link a Jira ticket to its GitHub PR)

## How to behave
- Be concise and direct.
- When the user asks a question, gather relevant data from tools, then answer.
- When asked for a report, use the structure: What Happened / Decision Trail / Needs Attention.
- If you need to call tools, do so without asking permission.
- Prefer bullet points over paragraphs.
- When showing tool results, summarize. Don't dump raw JSON.

## Tool usage
- Tool names are prefixed with their source (e.g. github__, jira__, slack__, vwork__).
- Prefer vwork__glob and vwork__grep for finding files and text.
"""

    chat_builtins = """
## Built-in tools (vwork__*)
- vwork__read_file: read any file. Supports absolute paths and ~/. Use offset/limit for large files.
- vwork__write_file / vwork__list_files: write and list files under {home}/.
- vwork__glob / vwork__grep: find files by pattern and search file contents.
- vwork__webfetch: fetch a web page as text.
- vwork__generate_report: run the report generator and save the result.
"""

    chat_todos = """- vwork__todo_read / vwork__todo_write: today's todo list. Write the full list each time.
"""

    chat_search = """- vwork__web_search: search the web.
"""

    report_system = """You are a work report generator. Today is {today}.

Your job: generate a concise {kind} work report by gathering data from {sources}.

## Instructions

1. Gather data: use the available tools to fetch activity from the last {lookback_days} day(s).
{source_instructions}
2. Correlate: link events across tools. If a Jira ticket ID (e.g. PROJ-123) appears in a GitHub PR title,
   commit message, or Slack thread, connect them.

3. Generate report: output a Markdown report with exactly these three sections:

### What Happened
Cross-tool event timeline grouped by theme or project. Each item references its source
(GitHub PR #X, JIRA-123, Slack #channel).

### Decision Trail
What was resolved, what decisions were made, what carries forward.

### Needs Attention
Blockers, stale PRs (open > 3 days with no review), unanswered questions, failing CI.

## Rules
- Be concise. Use bullet points, not paragraphs.
- If a section has nothing meaningful, write "Nothing notable." and move on.
- Output ONLY the Markdown report. No preamble.
- Tool names are prefixed with the source (e.g. github__*, jira__*, slack__*).
{extra_servers}"""

    report_postprocess = """Rewrite the work report below as a short list of bullets a person can read in under a minute.
Keep every blocker and action item. Drop anything that is not actionable or notable.
Output ONLY the bullets."""


def _enabled_sources(config: Config, extra_names: list[str] | None = None) -> list[str]:
    sources = []
    if config.github.enabled:
        sources.append("GitHub")
    if config.jira.enabled:
        sources.append("Jira")
    if config.slack.enabled:
        sources.append("Slack")
    sources.extend(extra_names or [])
    return sources


def _scoping_rules(config: Config) -> list[str]:
    rules = []
    if config.github.enabled:
        if config.github.orgs:
            rules.append(
                f"- GitHub searches MUST be scoped to orgs: {', '.join(config.github.orgs)}. "
                "Always include org: qualifiers."
            )
        rules.append("- Start GitHub queries by calling github__get_the_authenticated_user to learn the username.")
    if config.slack.enabled and config.slack.channels:
        rules.append(
            f"- Slack searches MUST be scoped to these channels: {', '.join(config.slack.channels)}. "
            "Use `in:#channel` syntax."
        )
    return rules


def build_chat_system_prompt(
    config: Config,
    server_names: list[str] | None = None,
    today: date | None = None,
) -> str:
    known = {"github", "jira", "slack"}
    extra = [name for name in (server_names or []) if name not in known and name != "vwork"]
    sources = _enabled_sources(config, extra)
    sources_line = (
        f"You have access to: {', '.join(sources)}." if sources else "No external tools are connected yet."
    )
    home = str(config.home)

    prompt = Prompts.chat_system.format(
        today=(today or date.today()).isoformat(),
        sources_line=sources_line,
        home=home,
    )
    rules = _scoping_rules(config)
    if rules:
        prompt += "\n".join(rules) + "\n"

    prompt += Prompts.chat_builtins.format(home=home)
    if config.todo.enabled:
        prompt += Prompts.chat_todos
    if config.web.search_enabled:
        prompt += Prompts.chat_search
    return prompt


def build_report_prompt(
    config: Config,
    kind: str,
    lookback_days: int,
    today: date | None = None,
) -> str:
    instructions = []
    if config.github.enabled:
        orgs = ", ".join(config.github.orgs) or "any org"
        instructions.append(
            "   - GitHub: call github__get_the_authenticated_user first, then search only within "
            f"{orgs} for PRs authored or reviewed, issues assigned or created, and recent commits."
        )
    if config.jira.enabled:
        instructions.append("   - Jira: search for recently updated issues assigned to or involving the user.")
    if config.slack.enabled:
        channels = ", ".join(config.slack.channels) or "the user's channels"
        instructions.append(f"   - Slack: search for relevant messages in {channels}.")

    extra = config.custom_server_names
    extra_servers = ""
    if extra:
        extra_servers = (
            f"\n## Additional Tools\nYou also have tools from these servers: {', '.join(extra)}. "
            "Use their <server-name>__* tools when relevant.\n"
        )

    return Prompts.report_system.format(
        today=(today or date.today()).isoformat(),
        kind=kind,
        sources=", ".join(_enabled_sources(config)) or "the available tools",
        lookback_days=lookback_days,
        source_instructions="\n".join(instructions) + ("\n" if instructions else ""),
        extra_servers=extra_servers,
    )
