"""
Value types shared by the frame tree, console and capture code.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class BoundingBox:
    """Rectangle in CSS pixels."""
    x: float
    y: float
    width: float
    height: float

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> BoundingBox:
        return cls(
            x=float(data.get("x", 0)),
            y=float(data.get("y", 0)),
            width=float(data.get("width", 0)),
            height=float(data.get("height", 0)),
        )

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def center(self) -> Tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)

    def area(self) -> float:
        return self.width * self.height

    def translate(self, dx: float, dy: float) -> BoundingBox:
        return BoundingBox(self.x + dx, self.y + dy, self.width, self.height)

    def enclosing_int_rect(self) -> BoundingBox:
        """
        Smallest integer rectangle covering this box.

        Edges within 1e-3 of an integer snap to it, so 10.0004 stays 10
        instead of growing the capture by a whole pixel.
        """
        x1 = math.floor(self.x + 1e-3)
        y1 = math.floor(self.y + 1e-3)
        x2 = math.ceil(self.x + self.width - 1e-3)
        y2 = math.ceil(self.y + self.height - 1e-3)
        return BoundingBox(x1, y1, x2 - x1, y2 - y1)

    def to_clip(self, scale: float = 1.0) -> Dict[str, float]:
        """Format as a Page.captureScreenshot clip."""
        return {
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "scale": scale,
        }


@dataclass(frozen=True)
class SourceLocation:
    """Where a console message came from (0-based line and column)."""
    url: str
    line_number: int = 0
    column_number: int = 0

    @classmethod
    def from_stack_trace(cls, stack_trace: Optional[Dict[str, Any]]) -> Optional[SourceLocation]:
        if not stack_trace:
            return None
        call_frames = stack_trace.get("callFrames") or []
        if not call_frames:
            return None
        top = call_frames[0]
        return cls(
            url=top.get("url", ""),
            line_number=int(top.get("lineNumber", 0)),
            column_number=int(top.get("columnNumber", 0)),
        )

    def __str__(self) -> str:
        return f"{self.url}:{self.line_number}:{self.column_number}"
