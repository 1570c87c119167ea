from vwork.llm.credentials import CredentialCache
from vwork.llm.litellm_provider import LiteLLMProvider
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

__all__ = [
    "CredentialCache",
    "LiteLLMProvider",
    "LLMProvider",
    "LLMResponse",
    "LLMTool",
    "Message",
    "StopReason",
    "StreamCallbacks",
    "ToolCall",
    "ToolResult",
]
