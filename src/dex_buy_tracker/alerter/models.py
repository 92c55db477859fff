"""Data models for the alerter module."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum


class MediaKind(str, Enum):
    """How a rendered alert is delivered to Telegram."""

    TEXT = "text"
    PHOTO = "photo"
    ANIMATION = "animation"


@dataclass(frozen=True)
class InlineButton:
    """A URL button shown under the alert."""

    text: str
    url: str

    def to_dict(self) -> dict[str, str]:
        return {"text": self.text, "url": self.url}


@dataclass(frozen=True)
class RenderedAlert:
    """A formatted alert ready for delivery to one group.

    Attributes:
        text: Telegram HTML body (message text or media caption).
        buttons: One row of inline URL buttons.
        media_kind: Which Bot API method to use.
        media: File id or URL for photo/animation alerts.
    """

    text: str
    buttons: tuple[InlineButton, ...] = ()
    media_kind: MediaKind = MediaKind.TEXT
    media: str | None = None

    def reply_markup(self) -> dict[str, object] | None:
        if not self.buttons:
            return None
        return {"inline_keyboard": [[b.to_dict() for b in self.buttons]]}


@dataclass(frozen=True)
class AlertJob:
    """A unit of dispatch work: a target group and a zero-argument coroutine factory."""

    group_id: int
    run: Callable[[], Awaitable[None]] = field(repr=False)
