from __future__ import annotations

import argparse
import logging
import sys

from dotenv import load_dotenv

from vwork import __version__
from vwork.agent.oneshot import OneShotAgent
from vwork.agent.session import ChatSession
from vwork.config import Config, init_config, load_config
from vwork.errors import AbortedError, ConfigError, ProviderError
from vwork.llm.litellm_provider import LiteLLMProvider
from vwork.mcp.client import ToolServerManager
from vwork.mcp.registry import get_enabled_servers
from vwork.prompts import build_chat_system_prompt
from vwork.runtime.repl import VworkREPL
from vwork.tools.context import ToolContext
from vwork.tools.registry import build_catalog
from vwork.tools.report import KINDS, normalize_request, run_report

QUIET_LOGGERS = ("LiteLLM", "litellm", "httpx", "httpcore")


def main() -> int:
    load_dotenv()
    return _main(sys.argv[1:])


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="vwork", description="vwork - AI assistant for work")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", default=None, help="Path to config.yaml (default: $VWORK_HOME/config.yaml)")
    parser.add_argument(
        "--model",
        default=None,
        help="Override the configured model (supports aliases: sonnet, opus, haiku, 4o, flash, deepseek)",
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    subparsers = parser.add_subparsers(dest="command", required=False)

    chat = subparsers.add_parser("chat", help="Start interactive chat (default)")
    chat.add_argument("--message", "-m", help="First message to send")

    ask = subparsers.add_parser("ask", help="Ask a single question (non-interactive)")
    ask.add_argument("prompt")

    report = subparsers.add_parser("report", help="Generate a work report")
    report.add_argument("--kind", default="daily", choices=list(KINDS))
    report.add_argument("--days", type=int, default=None, help="Days of history to include")
    report.add_argument("--prompt", default=None, help="Custom report instruction")
    report.add_argument("--no-save", action="store_true", help="Print the report without saving it")

    subparsers.add_parser("init", help="Create $VWORK_HOME and a default config")
    return parser


def _main(argv: list[str]) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    if args.command == "init":
        print(init_config())
        return 0

    try:
        config = load_config(args.config)
        servers = get_enabled_servers(config)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    provider = LiteLLMProvider(config.llm)
    if args.model:
        provider.set_model(args.model)

    manager = ToolServerManager(github_orgs=config.github.orgs)
    try:
        manager.connect(servers)
        if args.command == "ask":
            return _cmd_ask(args, config, provider, manager)
        if args.command == "report":
            return _cmd_report(args, config, provider, manager)
        return _cmd_chat(args, config, provider, manager)
    finally:
        manager.close()


def _cmd_chat(args, config: Config, provider: LiteLLMProvider, manager: ToolServerManager) -> int:
    session = ChatSession(provider, config, manager)
    VworkREPL(session).run(initial_message=getattr(args, "message", None))
    return 0


def _cmd_ask(args, config: Config, provider: LiteLLMProvider, manager: ToolServerManager) -> int:
    agent = OneShotAgent(
        provider,
        config,
        system_prompt=build_chat_system_prompt(config, manager.server_names),
        tools=build_catalog(config, manager.get_all_tools()),
        tool_server=manager,
    )
    try:
        print(agent.run(args.prompt))
    except (ProviderError, AbortedError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


def _cmd_report(args, config: Config, provider: LiteLLMProvider, manager: ToolServerManager) -> int:
    request = normalize_request(
        {
            "kind": args.kind,
            "lookback_days": args.days,
            "prompt": args.prompt,
            "save": not args.no_save,
        },
        config.report.lookback_days,
        source="cli",
    )
    ctx = ToolContext(config=config, provider=provider, tool_server=manager)
    try:
        result = run_report(request, ctx)
        summary = ChatSession(provider, config, manager).postprocess_report(result.content)
    except (ProviderError, AbortedError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(result.content)
    if summary != result.content:
        print("\n---\n")
        print(summary)
    if result.saved_path:
        print(f"\nSaved: {result.saved_path}", file=sys.stderr)
    if result.save_error:
        print(f"Error: could not save report: {result.save_error}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
