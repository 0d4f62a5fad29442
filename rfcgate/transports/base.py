"""Transport interfaces."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

CloseCallback = Callable[[Exception | None], None]


class SerialLink(Protocol):
    """Line-oriented connection to one device.

    Received lines are delivered without their ``\\r\\n`` terminator.
    """

    port: str
    on_close: CloseCallback | None

    @property
    def is_open(self) -> bool:
        """Whether the link is currently open."""

    async def open(self) -> None:
        """Open the underlying port."""

    async def close(self) -> None:
        """Close the underlying port; closing a closed link is a no-op."""

    async def write(self, data: bytes) -> None:
        """Write raw bytes to the port."""

    async def flush(self) -> None:
        """Discard any received input that was not consumed yet."""

    async def readline(self) -> str:
        """Wait for the next received line."""


LinkFactory = Callable[[str, int], SerialLink]
