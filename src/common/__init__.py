from common import llm
from common.cancel import CancelToken, CancelledError
from common.jsonio import load_json, atomic_write_json
from common.parallel import ParallelExecutor, TaskOutcome

__all__ = [
    "llm",
    "CancelToken",
    "CancelledError",
    "load_json",
    "atomic_write_json",
    "ParallelExecutor",
    "TaskOutcome",
]
