"""YAML fixture loader wiring the in-memory stores from one document."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from activity_timeline.core.attributes import AttributeSource
from activity_timeline.core.filters import ActivitiesFilterStrategy, TransactionsFilterStrategy
from activity_timeline.core.models import (
    EventActivity,
    Token,
    TokenScriptDefinition,
    TransactionInstance,
)
from activity_timeline.core.observable import Subscribable
from activity_timeline.core.service import ActivitiesService
from activity_timeline.core.values import AttributeValue
from activity_timeline.data.loader import Settings, load_settings
from activity_timeline.stores.memory import (
    InMemoryEventStore,
    InMemoryTokenStore,
    InMemoryTransactionStore,
    SimpleWalletSession,
    StaticCardProvider,
    StaticTokenHolderAdaptor,
)


class HolderFixture(BaseModel):
    """
    Holder attributes of one token.

    Attributes
    ----------
    contract : str
        Token contract
    server : str
        Server name
    values : dict[str, AttributeValue]
        Resolved attribute values
    pending : list[str]
        Attribute names that stay unresolved

    """

    contract: str
    server: str
    values: dict[str, AttributeValue] = Field(default_factory=dict)
    pending: list[str] = Field(default_factory=list)


class DefinitionFixture(TokenScriptDefinition):
    """TokenScript definition bound to a token contract."""

    contract: str


class TimelineDocument(BaseModel):
    """
    Validated fixture document.

    Attributes
    ----------
    wallet : str
        Wallet address used for every enabled server
    settings : dict[str, Any]
        Overrides applied on top of the loaded settings
    tokens : list[Token]
        Tokens of the wallet
    definitions : list[DefinitionFixture]
        TokenScript definitions
    events : list[EventActivity]
        Raw events
    transactions : list[TransactionInstance]
        Wallet transactions
    holders : list[HolderFixture]
        Holder attribute values

    """

    wallet: str
    settings: dict[str, Any] = Field(default_factory=dict)
    tokens: list[Token] = Field(default_factory=list)
    definitions: list[DefinitionFixture] = Field(default_factory=list)
    events: list[EventActivity] = Field(default_factory=list)
    transactions: list[TransactionInstance] = Field(default_factory=list)
    holders: list[HolderFixture] = Field(default_factory=list)


class TimelineFixture:
    """
    In-memory stores populated from a fixture document.

    Parameters
    ----------
    document : TimelineDocument
        Validated document
    settings : Settings
        Settings with the document overrides applied

    """

    def __init__(self, document: TimelineDocument, settings: Settings) -> None:
        self.document = document
        self.settings = settings
        self.sessions = {
            server: SimpleWalletSession(server, document.wallet) for server in settings.enabled_servers
        }
        self.token_store = InMemoryTokenStore(document.tokens)
        self.event_store = InMemoryEventStore(limit=settings.recent_events_limit)
        self.transaction_store = InMemoryTransactionStore()
        self.card_provider = StaticCardProvider()
        self.holder_adaptor = StaticTokenHolderAdaptor()

        self.event_store.add(*document.events)
        self.transaction_store.add(*document.transactions)
        for definition in document.definitions:
            self.card_provider.register(
                definition.contract,
                TokenScriptDefinition(server=definition.server, activity_cards=definition.activity_cards),
            )
        for holder in document.holders:
            token = self.token_store.token(holder.contract, holder.server)
            if token is None:
                msg = f"Holder references unknown token {holder.contract} on {holder.server}"
                raise KeyError(msg)
            values: dict[str, AttributeSource] = dict(holder.values)
            for name in holder.pending:
                values[name] = Subscribable()
            self.holder_adaptor.register_values(token, values)

    @property
    def wallet_address(self) -> str:
        return self.document.wallet

    def service(
        self,
        activities_filter: ActivitiesFilterStrategy | None = None,
        transactions_filter: TransactionsFilterStrategy | None = None,
    ) -> ActivitiesService:
        """Create an activities service over the fixture stores."""
        return ActivitiesService(
            self.settings,
            self.sessions,
            self.token_store,
            self.event_store,
            self.transaction_store,
            self.card_provider,
            self.holder_adaptor,
            activities_filter=activities_filter,
            transactions_filter=transactions_filter,
        )


def load_fixture(path: str | Path, settings_path: str | Path | None = None) -> TimelineFixture:
    """
    Load a YAML fixture into in-memory stores.

    Parameters
    ----------
    path : str | Path
        Fixture file
    settings_path : str | Path | None
        Settings file, see :func:`activity_timeline.data.load_settings`

    Returns
    -------
    TimelineFixture
        Populated stores

    Raises
    ------
    FileNotFoundError
        If the fixture file does not exist
    pydantic.ValidationError
        If the document is malformed

    """
    path = Path(path)
    if not path.exists():
        msg = f"Fixture file not found: {path}"
        raise FileNotFoundError(msg)
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    document = TimelineDocument.model_validate(data)
    settings = load_settings(settings_path, **document.settings)
    return TimelineFixture(document, settings)
