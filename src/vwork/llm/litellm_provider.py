from __future__ import annotations

import json
import logging
from typing import Any

from common import llm
from common.cancel import CancelToken, is_cancelled
from vwork.config import LLMConfig, resolve_model_alias
from vwork.errors import AbortedError, ProviderError
from vwork.llm.credentials import CredentialCache
from vwork.llm.provider import (
    LLMProvider,
    LLMResponse,
    LLMTool,
    Message,
    StopReason,
    StreamCallbacks,
    ToolCall,
    ToolResult,
)

logger = logging.getLogger(__name__)

FINISH_REASONS = {
    "stop": StopReason.END_TURN,
    "end_turn": StopReason.END_TURN,
    "tool_calls": StopReason.TOOL_USE,
    "function_call": StopReason.TOOL_USE,
    "tool_use": StopReason.TOOL_USE,
    "length": StopReason.MAX_TOKENS,
    "max_tokens": StopReason.MAX_TOKENS,
}


def _stop_reason(finish_reason: str | None, tool_calls: list[ToolCall]) -> StopReason | str:
    if not finish_reason:
        return StopReason.TOOL_USE if tool_calls else StopReason.END_TURN
    return FINISH_REASONS.get(finish_reason, finish_reason)


def _parse_arguments(raw: str | None, tool_name: str) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Model sent invalid JSON arguments for {tool_name}: {raw[:200]}")
        return {}
    return parsed if isinstance(parsed, dict) else {"value": parsed}


def _close_on_cancel(stream: Any) -> None:
    try:
        llm.close_stream(stream)
    except Exception as e:
        logger.debug(f"Closing cancelled stream raised: {e}")


def tools_to_api(tools: list[LLMTool]) -> list[dict]:
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.input_schema,
            },
        }
        for tool in tools
    ]


def messages_to_api(system_prompt: str, messages: list[Message]) -> list[dict]:
    """Flatten content-block messages into the OpenAI chat format litellm expects."""
    api: list[dict] = []
    if system_prompt:
        api.append({"role": "system", "content": system_prompt})

    for message in messages:
        if isinstance(message.content, str):
            api.append({"role": message.role, "content": message.content})
            continue

        blocks = list(message.content or [])
        if message.role == "assistant":
            text = "".join(b.get("text", "") for b in blocks if b.get("type") == "text")
            tool_calls = [
                {
                    "id": b["id"],
                    "type": "function",
                    "function": {"name": b["name"], "arguments": json.dumps(b.get("input") or {})},
                }
                for b in blocks
                if b.get("type") == "tool_use"
            ]
            entry: dict[str, Any] = {"role": "assistant", "content": text or None}
            if tool_calls:
                entry["tool_calls"] = tool_calls
            api.append(entry)
            continue

        texts = []
        for block in blocks:
            if block.get("type") == "tool_result":
                api.append(
                    {
                        "role": "tool",
                        "tool_call_id": block["tool_use_id"],
                        "content": block.get("content", ""),
                    }
                )
            elif block.get("type") == "text":
                texts.append(block.get("text", ""))
        if texts:
            api.append({"role": "user", "content": "\n".join(texts)})

    return api


class LiteLLMProvider(LLMProvider):
    """LLM provider backed by litellm, so any model litellm routes to works here."""

    def __init__(self, config: LLMConfig, credentials: CredentialCache | None = None):
        self.config = config
        self.model = resolve_model_alias(config.model)
        self.credentials = credentials or CredentialCache(config, self.model)

    @property
    def provider_name(self) -> str:
        return self.credentials.backend

    def set_model(self, model: str) -> None:
        self.model = resolve_model_alias(model)
        self.credentials.set_model(self.model)

    def _request(self, system_prompt: str, messages: list[Message], tools: list[LLMTool], stream: bool) -> Any:
        try:
            credential = self.credentials.refresh()
            return llm.completion(
                model=self.model,
                messages=messages_to_api(system_prompt, messages),
                stream=stream,
                tools=tools_to_api(tools) or None,
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
                api_key=credential.api_key,
            )
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(f"{self.model}: {e}") from e

    def chat(self, system_prompt: str, messages: list[Message], tools: list[LLMTool]) -> LLMResponse:
        completion = self._request(system_prompt, messages, tools, stream=False)
        try:
            choice = completion.choices[0]
        except (AttributeError, IndexError) as e:
            raise ProviderError(f"{self.model}: empty response") from e

        message = choice.message
        tool_calls = [
            ToolCall(
                id=tc.id,
                name=tc.function.name,
                input=_parse_arguments(tc.function.arguments, tc.function.name),
            )
            for tc in (getattr(message, "tool_calls", None) or [])
        ]
        return LLMResponse(
            stop_reason=_stop_reason(getattr(choice, "finish_reason", None), tool_calls),
            text=message.content or "",
            tool_calls=tuple(tool_calls),
        )

    def chat_stream(
        self,
        system_prompt: str,
        messages: list[Message],
        tools: list[LLMTool],
        callbacks: StreamCallbacks,
        cancel: CancelToken | None = None,
    ) -> LLMResponse:
        if is_cancelled(cancel):
            raise AbortedError("aborted before request")

        try:
            stream = self._request(system_prompt, messages, tools, stream=True)
        except ProviderError as e:
            callbacks.on_error(e)
            raise
        if cancel is not None:
            # Unblocks a read that is waiting on the server.
            cancel.on_cancel(lambda: _close_on_cancel(stream))

        accumulated_content = ""
        accumulated_tool_calls: dict[int, dict[str, Any]] = {}
        announced: set[int] = set()
        finish_reason: str | None = None

        try:
            for chunk in llm.iter_chunks(stream):
                if is_cancelled(cancel):
                    raise AbortedError("aborted during stream")

                choice = chunk.choices[0]
                finish_reason = getattr(choice, "finish_reason", None) or finish_reason
                delta = choice.delta

                if getattr(delta, "content", None):
                    accumulated_content += delta.content
                    callbacks.on_text(delta.content)

                for tc in getattr(delta, "tool_calls", None) or []:
                    idx = getattr(tc, "index", None)
                    if idx is None:
                        idx = len(accumulated_tool_calls)
                    entry = accumulated_tool_calls.setdefault(idx, {"id": "", "name": "", "arguments": ""})
                    if tc.id:
                        entry["id"] = tc.id
                    function = getattr(tc, "function", None)
                    if function is not None:
                        if function.name:
                            entry["name"] = function.name
                        if function.arguments:
                            entry["arguments"] += function.arguments
                    if idx not in announced and entry["id"] and entry["name"]:
                        announced.add(idx)
                        callbacks.on_tool_start(ToolCall(id=entry["id"], name=entry["name"]))
        except AbortedError:
            raise
        except Exception as e:
            if is_cancelled(cancel):
                raise AbortedError("aborted during stream") from e
            err = ProviderError(f"{self.model}: {e}")
            callbacks.on_error(err)
            raise err from e

        if is_cancelled(cancel):
            raise AbortedError("aborted during stream")

        tool_calls = [
            ToolCall(id=tc["id"], name=tc["name"], input=_parse_arguments(tc["arguments"], tc["name"]))
            for _, tc in sorted(accumulated_tool_calls.items())
        ]
        return LLMResponse(
            stop_reason=_stop_reason(finish_reason, tool_calls),
            text=accumulated_content,
            tool_calls=tuple(tool_calls),
        )

    def make_assistant_message(self, response: LLMResponse) -> Message:
        if not response.tool_calls:
            return Message(role="assistant", content=response.text)
        content: list[dict[str, Any]] = []
        if response.text:
            content.append({"type": "text", "text": response.text})
        for tc in response.tool_calls:
            content.append({"type": "tool_use", "id": tc.id, "name": tc.name, "input": dict(tc.input)})
        return Message(role="assistant", content=content)

    def make_tool_result_message(self, results: list[ToolResult]) -> Message:
        return Message(
            role="user",
            content=[
                {
                    "type": "tool_result",
                    "tool_use_id": r.tool_call_id,
                    "content": r.content,
                    "is_error": r.is_error,
                }
                for r in results
            ],
        )
