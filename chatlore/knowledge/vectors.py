"""Vector helpers for libSQL's native vector column.

Vectors cross the driver boundary as JSON-style text: ``vector32(?)`` takes
``[1.0,0.0,...]`` and ``vector_extract(...)`` returns the same shape.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence


def to_text(vector: Sequence[float]) -> str:
    """Render *vector* as the text literal ``vector32()`` accepts."""
    return json.dumps([float(x) for x in vector])


def from_text(text: str) -> list[float]:
    """Parse a ``vector_extract()`` result back into floats."""
    return [float(x) for x in json.loads(text)]


def similarity(distance: float) -> float:
    """Convert a cosine distance to the similarity used for thresholds."""
    return 1.0 - distance


def check_dimension(vector: Sequence[float], expected: int) -> None:
    """Raise ``ValueError`` unless *vector* has exactly *expected* components."""
    if len(vector) != expected:
        msg = f"Expected a {expected}-dimensional embedding, got {len(vector)}"
        raise ValueError(msg)
