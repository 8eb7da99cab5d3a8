"""In-memory collaborator stores and the YAML fixture loader."""

from activity_timeline.stores.fixtures import TimelineDocument, TimelineFixture, load_fixture
from activity_timeline.stores.memory import (
    InMemoryEventStore,
    InMemoryTokenStore,
    InMemoryTransactionStore,
    SimpleWalletSession,
    StaticCardProvider,
    StaticTokenHolderAdaptor,
)

__all__ = [
    "InMemoryEventStore",
    "InMemoryTokenStore",
    "InMemoryTransactionStore",
    "SimpleWalletSession",
    "StaticCardProvider",
    "StaticTokenHolderAdaptor",
    "TimelineDocument",
    "TimelineFixture",
    "load_fixture",
]
