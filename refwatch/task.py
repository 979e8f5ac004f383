"""
Task - Unit of retryable work

Defines the contract between the watcher and whatever schedules it:
- Result: Outcome of one invocation (DONE or RETRY)
- Retryable: Zero-argument callable returning a Result

Design principles:
- The watcher never decides when it runs again
- Executors own delay and backoff policy
- A RETRY is expected and recoverable, never an error
"""

from enum import Enum
from typing import Callable


class Result(Enum):
    """Terminal value of one decision-engine invocation."""
    DONE = "done"      # Nothing more to do for this reference
    RETRY = "retry"    # Could not decide yet, run again later


Retryable = Callable[[], Result]
