"""Invocation audit logging.

A run reports itself once, at the end, through an injected recorder.
Recording is best effort: a failure is logged and the result still goes out.
"""

import getpass
import logging
from typing import Protocol


logger = logging.getLogger(__name__)


class InvocationRecorder(Protocol):
    def record_invocation(self, command: str, user: str) -> None:
        ...


class NullRecorder:
    """Recorder for runs without a database."""

    def record_invocation(self, command: str, user: str) -> None:
        logger.debug(f"Not recording invocation of {user}: {command}")


def current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return 'unknown'


def record_safely(recorder: InvocationRecorder, command: str, user: str) -> bool:
    """Record an invocation, returning False instead of raising on failure."""
    try:
        recorder.record_invocation(command, user)
    except Exception as e:
        logger.warning(f"Could not record invocation: {e}")
        return False
    return True
