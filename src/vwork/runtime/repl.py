from __future__ import annotations

import logging
import threading
import traceback

from common.cancel import CancelToken
from vwork.agent.loop import TurnResult
from vwork.agent.session import ChatSession
from vwork.errors import AbortedError, ProviderError
from vwork.llm.provider import StreamCallbacks, ToolCall
from vwork.runtime.builtins import BuiltinCommands

logger = logging.getLogger(__name__)

JOIN_INTERVAL_S = 0.1


def _print_tool_start(call: ToolCall) -> None:
    print(f"\n🔧 {call.name}", flush=True)


def _print_tool_end(call: ToolCall, content: str, is_error: bool) -> None:
    if is_error:
        print(f"   ❌ {content[:200]}", flush=True)


def repl_callbacks() -> StreamCallbacks:
    return StreamCallbacks(
        on_text=lambda delta: print(delta, end="", flush=True),
        on_tool_start=_print_tool_start,
        on_tool_end=_print_tool_end,
    )


class VworkREPL:
    def __init__(self, session: ChatSession):
        self.session = session
        self.builtins = BuiltinCommands(session)

    def run(self, initial_message: str | None = None) -> None:
        print(f"🤖 vwork started (model: {self.session.model})")
        print("Commands: /help for all commands")
        print()

        if initial_message:
            self.process_user_message(initial_message)

        while True:
            try:
                user_input = input("\n> ").strip()
                if not user_input:
                    continue

                if user_input.startswith("/"):
                    parts = user_input.split(maxsplit=1)
                    cmd = parts[0].lstrip("/")
                    args = parts[1] if len(parts) > 1 else ""
                    if not self.builtins.has_command(cmd):
                        print(f"Unknown command: /{cmd}. Type /help for available commands.")
                        continue
                    if not self.builtins.handle(cmd, args):
                        break
                    continue

                self.process_user_message(user_input)

            except KeyboardInterrupt:
                print("\n\n⚠️  Interrupted")
                break
            except EOFError:
                break
            except Exception as e:
                print(f"\n❌ Error: {e}")
                traceback.print_exc()

    def process_user_message(self, text: str) -> TurnResult | None:
        """Run one turn on a worker thread so Ctrl-C cancels the turn, not the REPL."""
        cancel = CancelToken()
        outcome: dict[str, object] = {}

        def worker() -> None:
            try:
                outcome["result"] = self.session.send(text, repl_callbacks(), cancel)
            except BaseException as e:
                outcome["error"] = e

        thread = threading.Thread(target=worker, name="vwork-turn", daemon=True)
        thread.start()
        while thread.is_alive():
            try:
                thread.join(JOIN_INTERVAL_S)
            except KeyboardInterrupt:
                if not cancel.cancelled:
                    print("\n⚠️  Cancelling...", flush=True)
                    cancel.cancel()
        print()

        error = outcome.get("error")
        if isinstance(error, AbortedError):
            print("⚠️  Aborted")
            return None
        if isinstance(error, ProviderError):
            print(f"❌ Error: {error}")
            return None
        if error is not None:
            raise error

        result = outcome["result"]
        if result.error is not None:
            print(f"⚠️  {result.error}. The answer above may be incomplete.")
        return result
