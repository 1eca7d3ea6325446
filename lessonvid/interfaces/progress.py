"""Render progress event interfaces for observers and UI callbacks."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import time
from typing import Any, Callable, Protocol


class RenderEventType(str, Enum):
    """Enumerates the different event categories emitted by a render."""

    RENDER_STARTED = "render_started"
    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"
    STEP_FAILED = "step_failed"
    FRAME_PROGRESS = "frame_progress"
    FRAME_DEGRADED = "frame_degraded"
    RENDER_COMPLETED = "render_completed"
    RENDER_CANCELLED = "render_cancelled"


@dataclass(slots=True)
class RenderEvent:
    """Represents an event dispatched from the capture pipeline."""

    type: RenderEventType
    message: str | None = None
    step: str | None = None
    data: dict[str, Any] | None = None
    timestamp: float = field(default_factory=time.time)

    def to_payload(self) -> dict[str, Any]:
        """Return a JSON-serialisable representation of the event."""

        payload: dict[str, Any] = {
            "type": self.type.value,
            "timestamp": self.timestamp,
        }
        if self.message is not None:
            payload["message"] = self.message
        if self.step is not None:
            payload["step"] = self.step
        if self.data:
            payload["data"] = self.data
        return payload


class RenderObserver(Protocol):
    """Protocol for consumers interested in render events."""

    def handle_event(self, event: RenderEvent) -> None:
        """Handle a render event dispatched by the pipeline."""
        raise NotImplementedError


# Receives ``current_time / total_duration`` on every tick; advisory only.
ProgressCallback = Callable[[float], None]

__all__ = ["RenderEventType", "RenderEvent", "RenderObserver", "ProgressCallback"]
