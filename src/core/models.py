"""Immutable dataclasses shared by the retrieval client, service and tools.

ContextKey addresses a cached retrieval; ContextPassage and DeviceContext
describe what the retrieval backend returned for it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True, slots=True)
class ContextKey:
    # Cache key: one retrieval per device + query + result count
    device_id: str
    query: str
    top_k: int


@dataclass(frozen=True, slots=True)
class ContextPassage:
    text: str
    score: float
    source: Optional[str] = None


@dataclass(frozen=True)
class DeviceContext:
    """Retrieved context for one device query.

    Field groups:
    - Request: device_id, query
    - Result: passages (ordered as returned by the backend)
    """

    device_id: str
    query: str
    passages: Tuple[ContextPassage, ...] = ()

    def as_dict(self) -> Dict[str, Any]:
        return {
            "device_id": self.device_id,
            "query": self.query,
            "passages": [
                {"text": p.text, "score": p.score, "source": p.source}
                for p in self.passages
            ],
        }
