from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Union


@dataclass(frozen=True)
class LiveMessage:
    audio: Optional[Union[bytes, str]] = None  # raw PCM16 bytes or base64 text
    interrupted: bool = False
    turn_complete: bool = False


class LiveConnection(ABC):
    @abstractmethod
    async def send_audio(self, pcm: bytes, mime_type: str) -> None:
        """Forward one captured frame of 16-bit PCM."""

    @abstractmethod
    def messages(self) -> AsyncIterator[LiveMessage]:
        """
        Yield inbound messages until the remote side closes.
        Raising ends the session just like a clean close.
        """

    @abstractmethod
    async def close(self) -> None:
        pass


class LiveConnector(ABC):
    @abstractmethod
    async def connect(self) -> LiveConnection:
        """Open one streaming connection; raise on failure."""
