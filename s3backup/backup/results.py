"""
Run result messages.

Every notable step of a backup run is recorded as a ResultMessage. The
ResultLog keeps them in the order they happened (the notification email
relies on this) and mirrors each one to the operational log.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterator, List, Optional


logger = logging.getLogger(__name__)

INFO = 'info'
SUCCESS = 'success'
ERROR = 'error'

MESSAGE_KINDS = (INFO, SUCCESS, ERROR)

TIMESTAMP_FORMAT = '%Y/%m/%d %H:%M:%S'


@dataclass(frozen=True)
class ResultMessage:
    """A single typed, timestamped status message."""

    kind: str
    text: str
    timestamp: datetime

    def render(self) -> str:
        """Render as '<timestamp> <KIND>: <text>'."""
        return f"{self.timestamp.strftime(TIMESTAMP_FORMAT)} {self.kind.upper()}: {self.text}"


class ResultLog:
    """Ordered collection of ResultMessage for one backup run."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or datetime.now
        self._messages: List[ResultMessage] = []

    def record(self, kind: str, text: str) -> ResultMessage:
        """
        Append a message stamped with the current time.

        Args:
            kind: One of 'info', 'success', 'error'
            text: Message text

        Returns:
            The recorded ResultMessage

        Raises:
            ValueError: If kind is unknown
        """
        if kind not in MESSAGE_KINDS:
            raise ValueError(f"Invalid message kind: {kind}. Valid options: {list(MESSAGE_KINDS)}")

        message = ResultMessage(kind=kind, text=text, timestamp=self._clock())
        self._messages.append(message)

        if kind == ERROR:
            logger.error(text)
        else:
            logger.info(text)

        return message

    def info(self, text: str) -> ResultMessage:
        return self.record(INFO, text)

    def success(self, text: str) -> ResultMessage:
        return self.record(SUCCESS, text)

    def error(self, text: str) -> ResultMessage:
        return self.record(ERROR, text)

    def all(self) -> List[ResultMessage]:
        """Return all messages in recording order."""
        return list(self._messages)

    def has_kind(self, kind: str) -> bool:
        return any(m.kind == kind for m in self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[ResultMessage]:
        return iter(list(self._messages))
