"""
Data model shared by the grouping engine and its callers.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

from mailclean.gmail.mutator import BatchResult


class MessageFilter(NamedTuple):
    """Gmail listing scope: a search query, label ids, or both."""
    query: str = ""
    label_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Group:
    """
    A named partition of messages (a label, a sender, a subscription source).

    Groups do not own messages; they only say how to find them.
    """
    identifier: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GroupSummary:
    """Result of one fetch cycle for one group."""
    identifier: str
    metadata: Dict[str, Any]
    count: int
    ids: List[str]

    def __post_init__(self) -> None:
        if self.count != len(self.ids):
            raise ValueError(
                f"GroupSummary for '{self.identifier}': count {self.count} != {len(self.ids)} ids"
            )


class GroupState(str, Enum):
    UNKNOWN = "unknown"
    COUNTED = "counted"
    DELETING = "deleting"
    EMPTIED = "emptied"
    STALE = "stale"


class DeleteStatus(str, Enum):
    DELETED = "deleted"
    NOTHING_TO_DELETE = "nothing_to_delete"
    PARTIAL = "partial"


@dataclass(frozen=True)
class GroupDeletion:
    """Outcome of deleting one group. Truthy only when everything was deleted."""
    identifier: str
    status: DeleteStatus
    result: Optional[BatchResult] = None

    def __bool__(self) -> bool:
        return self.status is DeleteStatus.DELETED


@dataclass(frozen=True)
class MessageTable:
    """Tabular view of a group's messages for a presentation layer."""
    title: str
    columns: List[str]
    rows: List[Dict[str, str]]
