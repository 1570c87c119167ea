import warnings
from typing import Any, Iterator

import litellm
from litellm import completion as litellm_completion

warnings.filterwarnings("ignore", message="Pydantic serializer warnings")
litellm.drop_params = True


def completion(
    model: str,
    messages: list[dict],
    stream: bool = False,
    tools: list[dict] | None = None,
    tool_choice: str | None = None,
    temperature: float = 0.0,
    max_tokens: int = 4096,
    api_key: str | None = None,
    **kwargs,
) -> Any:
    params = {
        "model": model,
        "messages": messages,
        "stream": stream,
        "temperature": temperature,
        "max_tokens": max_tokens,
        **kwargs,
    }

    if tools:
        params["tools"] = tools
        params["tool_choice"] = tool_choice or "auto"
    if api_key:
        params["api_key"] = api_key

    return litellm_completion(**params)


def iter_chunks(stream: Any) -> Iterator[Any]:
    for chunk in stream:
        if not getattr(chunk, "choices", None):
            continue
        yield chunk


def close_stream(stream: Any) -> None:
    close = getattr(stream, "close", None)
    if callable(close):
        close()
