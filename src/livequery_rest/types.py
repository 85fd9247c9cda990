"""Data model shared by the pull and push paths.

A query's consumer only ever sees QueryStreamItem values. Each item carries
either a batch of change events (with paging when it came from a baseline
pull) or an error describing why a pull failed.
"""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ChangeType(str, Enum):
    """Kind of mutation a change event describes."""

    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


class FilterOperator(str, Enum):
    """Filter operators understood by the REST backend."""

    EQUAL = "=="
    NOT_EQUAL = "!="
    LESS_THAN = "<"
    LESS_OR_EQUAL = "<="
    GREATER_THAN = ">"
    GREATER_OR_EQUAL = ">="
    IN_ARRAY = "in-array"
    NOT_IN_ARRAY = "not-in-array"
    CONTAINS = "contains"
    LIKE = "like"


class ConnectionState(IntEnum):
    """Signal observed by queries to gate baseline pulls."""

    DISCONNECTED = 0
    OPEN = 1


class ChangeEvent(BaseModel):
    """One mutation to one record.

    Example:
        {"ref": "posts", "data": {"id": "3", "title": "x"}, "type": "added"}
    """

    ref: str
    data: dict[str, Any] = Field(default_factory=dict)
    type: ChangeType = ChangeType.ADDED

    @property
    def record_id(self) -> str | None:
        """Identity of the changed record, if the payload carries one."""
        value = self.data.get("id")
        return None if value is None else str(value)


class Paging(BaseModel):
    """Server paging metadata.

    ``n`` is a counter owned by the consumer; the transport resets it to 0
    on every baseline pull and never touches it otherwise. Any extra paging
    fields the server sends are kept.
    """

    model_config = ConfigDict(extra="allow")

    cursor: str | int | None = None
    n: int = 0


class QueryData(BaseModel):
    """A batch of changes, plus paging when it came from a baseline pull."""

    changes: list[ChangeEvent] = Field(default_factory=list)
    paging: Paging | None = None


class QueryError(BaseModel):
    """Error carried by a stream item when a pull failed."""

    code: str
    message: str | None = None
    status: int | None = None


class QueryStreamItem(BaseModel):
    """Unit emitted to a query's consumer."""

    data: QueryData | None = None
    error: QueryError | None = None

    @property
    def changes(self) -> list[ChangeEvent]:
        return self.data.changes if self.data else []


class QueryOptions(BaseModel):
    """Options for a live query.

    ``filters`` is a list of ``(field, operator, value)`` triples. Operators are
    validated when the request is encoded, not here.
    """

    cursor: str | None = None
    limit: int = 20
    order_by: str | None = None
    sort: Literal["asc", "desc"] = "desc"
    filters: list[tuple[str, FilterOperator | str, Any]] = Field(default_factory=list)
