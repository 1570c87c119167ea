from __future__ import annotations

import json

import tiktoken

from vwork.agent.session import ChatSession
from vwork.config import resolve_model_alias


class BuiltinCommands:
    def __init__(self, session: ChatSession):
        self.session = session
        self._handlers = {
            "quit": self.cmd_quit,
            "exit": self.cmd_quit,
            "q": self.cmd_quit,
            "clear": self.cmd_clear,
            "model": self.cmd_model,
            "tools": self.cmd_tools,
            "tokens": self.cmd_tokens,
            "help": self.cmd_help,
        }

    def list_commands(self) -> list[str]:
        return sorted(self._handlers.keys())

    def has_command(self, name: str) -> bool:
        return name in self._handlers

    def handle(self, name: str, args: str) -> bool:
        """Run a command. Returns False when the REPL should exit."""
        handler = self._handlers.get(name)
        if not handler:
            return True
        return handler(args)

    def cmd_quit(self, args: str) -> bool:
        print("👋 Goodbye!")
        return False

    def cmd_clear(self, args: str) -> bool:
        self.session.clear()
        print("✅ Cleared chat history")
        return True

    def cmd_model(self, args: str) -> bool:
        if not args:
            print(f"Current model: {self.session.model}")
            return True
        self.session.set_model(resolve_model_alias(args.strip()))
        print(f"✅ Switched to model: {self.session.model}")
        return True

    def cmd_tools(self, args: str) -> bool:
        if not self.session.tools:
            print("No tools available")
            return True
        print(f"Tools ({len(self.session.tools)}):")
        for tool in self.session.tools:
            print(f"  • {tool.name}")
        return True

    def cmd_tokens(self, args: str) -> bool:
        enc = tiktoken.encoding_for_model("gpt-4o")
        texts = [self.session.system_prompt]
        for message in self.session.messages:
            content = message.content
            texts.append(content if isinstance(content, str) else json.dumps(content, default=str))
        total = sum(len(enc.encode(text)) for text in texts)
        print(f"📊 Estimated tokens: ~{total:,} ({len(self.session.messages)} messages)")
        return True

    def cmd_help(self, args: str) -> bool:
        print("\nCommands:")
        for name in self.list_commands():
            print(f"  /{name}")
        print()
        return True
