# Cube Query MCP Server
# File: errors.py
# Version: v1

"""Exception types and the single error-surfacing channel.

Remote failures are routine (network, backend) and are reported through
:class:`ErrorChannel` instead of unwinding controller state. Invariant
violations are programming defects and are raised.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)


class CubeQueryError(RuntimeError):
    """Base class for errors raised by this package."""


class EngineError(CubeQueryError):
    """A remote engine call failed (transport, HTTP or engine status)."""

    def __init__(self, operation: str, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.operation = operation
        self.message = message
        self.status = status

    def __str__(self) -> str:
        if self.status is None:
            return f"{self.operation}: {self.message}"
        return f"{self.operation} (status {self.status}): {self.message}"


class InvalidSelectionError(CubeQueryError, AssertionError):
    """A dimension selection does not fit the current hierarchy."""


class ErrorKind(str, Enum):
    LOAD = "load"
    MUTATION = "mutation"
    QUERY = "query"


@dataclass
class ErrorEvent:
    kind: ErrorKind
    operation: str
    message: str
    status: Optional[int] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "operation": self.operation,
            "message": self.message,
            "status": self.status,
            "timestamp": self.timestamp.isoformat(),
        }


class ErrorChannel:
    """Holds the last surfaced error (message + open flag) and a short history."""

    def __init__(
        self,
        history_size: int = 20,
        on_report: Optional[Callable[[ErrorEvent], None]] = None,
    ) -> None:
        self.error_message: str = ""
        self.is_error_open: bool = False
        self.last: Optional[ErrorEvent] = None
        self._history: Deque[ErrorEvent] = deque(maxlen=history_size)
        self._on_report = on_report

    def report(self, kind: ErrorKind, exc: EngineError) -> ErrorEvent:
        event = ErrorEvent(
            kind=kind,
            operation=exc.operation,
            message=exc.message,
            status=exc.status,
        )
        logger.warning("Engine call %s failed: %s", exc.operation, exc.message)

        self.error_message = event.message
        self.is_error_open = True
        self.last = event
        self._history.append(event)
        if self._on_report is not None:
            self._on_report(event)
        return event

    def dismiss(self) -> None:
        self.is_error_open = False

    @property
    def history(self) -> List[ErrorEvent]:
        return list(self._history)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_message": self.error_message,
            "is_error_open": self.is_error_open,
            "last": self.last.to_dict() if self.last else None,
        }
