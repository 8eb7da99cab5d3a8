"""Core timeline engine: attribute resolution, activity building, filtering, merging and refresh."""

from activity_timeline.core.attributes import AttributeResolver, HeldToken, TokenHolder
from activity_timeline.core.builder import ActivityBuilder, BuiltActivity, TokenNotFoundError
from activity_timeline.core.filters import (
    ActivitiesFilterStrategy,
    TransactionsFilterStrategy,
    filter_activities,
)
from activity_timeline.core.merger import TimelineMerger, sort_rows
from activity_timeline.core.models import (
    ActivitiesViewModel,
    Activity,
    ActivityRowModel,
    EventActivity,
    LocalizedOperation,
    OperationType,
    RowKind,
    Token,
    TokenScriptCard,
    TokenScriptDefinition,
    TokenSnapshot,
    TokenType,
    TransactionInstance,
)
from activity_timeline.core.service import ActivitiesService
from activity_timeline.core.values import AttributeKind, AttributeValue

__all__ = [
    "ActivitiesFilterStrategy",
    "ActivitiesService",
    "ActivitiesViewModel",
    "Activity",
    "ActivityBuilder",
    "ActivityRowModel",
    "AttributeKind",
    "AttributeResolver",
    "AttributeValue",
    "BuiltActivity",
    "EventActivity",
    "HeldToken",
    "LocalizedOperation",
    "OperationType",
    "RowKind",
    "TimelineMerger",
    "Token",
    "TokenHolder",
    "TokenNotFoundError",
    "TokenScriptCard",
    "TokenScriptDefinition",
    "TokenSnapshot",
    "TokenType",
    "TransactionInstance",
    "TransactionsFilterStrategy",
    "filter_activities",
    "sort_rows",
]
