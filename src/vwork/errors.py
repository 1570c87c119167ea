from common.cancel import CancelledError


class VworkError(Exception):
    pass


class ConfigError(VworkError):
    pass


class ProviderError(VworkError):
    """Transport, auth or rate-limit failure talking to the LLM backend."""


class AbortedError(VworkError, CancelledError):
    pass


class ToolExecutionError(VworkError):
    pass


class ToolServerError(ToolExecutionError):
    pass


class MaxRoundsExceeded(VworkError):
    def __init__(self, max_rounds: int):
        super().__init__(f"max rounds reached ({max_rounds}) without a final answer")
        self.max_rounds = max_rounds
