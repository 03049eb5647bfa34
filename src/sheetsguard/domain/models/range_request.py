"""RangeRequest and Batch models - units of work for batched remote calls"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Hashable, Optional, Tuple


class RequestKind(str, Enum):
    """Direction of a range request"""

    READ = "read"
    WRITE = "write"


@dataclass(frozen=True)
class RangeRequest:
    """A single logical read or write against one target.

    ``target`` is opaque: it is compared for equality and never parsed.
    """

    target: str  # Opaque identifier (e.g., "Sheet1!A1:B10")
    kind: RequestKind = RequestKind.READ
    payload: Any = None  # Write data, untouched by planning
    resource_id: Optional[str] = None  # Parent resource (e.g., spreadsheet id)

    def __post_init__(self):
        """Validate request data"""
        if not self.target:
            raise ValueError("RangeRequest target must not be empty")
        if self.kind == RequestKind.READ and self.payload is not None:
            raise ValueError("Read requests cannot carry a payload")

    @property
    def is_write(self) -> bool:
        """Check if request modifies remote data"""
        return self.kind == RequestKind.WRITE


@dataclass(frozen=True)
class Batch:
    """Requests that will travel in one remote call"""

    requests: Tuple[RangeRequest, ...]
    key: Hashable = None  # Compatibility key shared by every request

    def __len__(self) -> int:
        return len(self.requests)

    def __iter__(self):
        return iter(self.requests)

    @property
    def targets(self) -> Tuple[str, ...]:
        """Targets in batch order"""
        return tuple(r.target for r in self.requests)

    @property
    def resource_id(self) -> Optional[str]:
        return self.requests[0].resource_id if self.requests else None

    @property
    def kind(self) -> Optional[RequestKind]:
        return self.requests[0].kind if self.requests else None


@dataclass(frozen=True)
class BatchStats:
    """Statistics about a batch plan"""

    original_count: int
    batch_count: int
    estimated_improvement: float = field(init=False)

    def __post_init__(self):
        # Share of remote calls saved versus one call per request
        if self.original_count > 0:
            improvement = max(0.0, (self.original_count - self.batch_count) / self.original_count * 100)
        else:
            improvement = 0.0
        object.__setattr__(self, "estimated_improvement", improvement)
