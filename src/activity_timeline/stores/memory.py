"""In-memory implementations of the stores and providers consumed by the service."""

import logging
import threading
from concurrent.futures import Future

from activity_timeline.core.attributes import AttributeSource, HeldToken, TokenHolder
from activity_timeline.core.filters import TransactionsFilterStrategy
from activity_timeline.core.models import (
    EventActivity,
    Token,
    TokenScriptDefinition,
    TransactionInstance,
    same_address,
)
from activity_timeline.core.observable import Signal

logger = logging.getLogger(__name__)

DEFAULT_RECENT_EVENTS_LIMIT = 100


class SimpleWalletSession:
    """
    Wallet session holding only a server and an address.

    Parameters
    ----------
    server : str
        Server name
    address : str
        Wallet address

    """

    def __init__(self, server: str, address: str) -> None:
        self.server = server
        self.address = address
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True

    def __repr__(self) -> str:
        return f"SimpleWalletSession(server={self.server!r}, address={self.address!r})"


class InMemoryEventStore:
    """
    Event store backed by a list.

    Parameters
    ----------
    limit : int
        Maximum number of events returned per lookup

    """

    def __init__(self, limit: int = DEFAULT_RECENT_EVENTS_LIMIT) -> None:
        self.limit = limit
        self.changed = Signal()
        self._events: list[EventActivity] = []
        self._lock = threading.Lock()

    def add(self, *events: EventActivity) -> None:
        """Store events and notify observers."""
        with self._lock:
            self._events.extend(events)
        self.changed.emit()

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
        self.changed.emit()

    def recent_events(
        self,
        contract: str,
        server: str,
        event_name: str,
        interpolated_filter: str,
    ) -> list[EventActivity]:
        with self._lock:
            events = [
                event
                for event in self._events
                if same_address(event.contract, contract)
                and event.server == server
                and event.event_name == event_name
                and event.filter.lower() == interpolated_filter.lower()
            ]
        events.sort(key=lambda event: event.block_number, reverse=True)
        if len(events) > self.limit:
            logger.debug("Truncating %d %s events to %d", len(events), event_name, self.limit)
        return events[: self.limit]


class InMemoryTransactionStore:
    """Transaction store backed by a list, fetches complete immediately."""

    def __init__(self) -> None:
        self.changed = Signal()
        self._transactions: list[TransactionInstance] = []
        self._lock = threading.Lock()

    def add(self, *transactions: TransactionInstance) -> None:
        """Store transactions and notify observers."""
        with self._lock:
            self._transactions.extend(transactions)
        self.changed.emit()

    def fetch_transactions(
        self,
        filter_strategy: TransactionsFilterStrategy,
        servers: list[str],
        oldest_block_number: int | None,
    ) -> Future:
        with self._lock:
            transactions = [
                transaction
                for transaction in self._transactions
                if transaction.server in servers
                and (oldest_block_number is None or transaction.block_number >= oldest_block_number)
                and filter_strategy.matches(transaction)
            ]
        transactions.sort(key=lambda transaction: transaction.block_number, reverse=True)

        future: Future = Future()
        future.set_result(transactions)
        return future


class InMemoryTokenStore:
    """Token store keyed by contract and server."""

    def __init__(self, tokens: list[Token] | None = None) -> None:
        self.changed = Signal()
        self._tokens: dict[str, Token] = {token.primary_key: token for token in tokens or []}
        self._lock = threading.Lock()

    def add(self, *tokens: Token) -> None:
        with self._lock:
            for token in tokens:
                self._tokens[token.primary_key] = token
        self.changed.emit()

    def remove(self, contract: str, server: str) -> None:
        with self._lock:
            self._tokens.pop(f"{contract.lower()}-{server}", None)
        self.changed.emit()

    def set_enabled(self, contract: str, server: str, enabled: bool) -> None:
        with self._lock:
            token = self._tokens.get(f"{contract.lower()}-{server}")
            if token is None:
                msg = f"Unknown token {contract} on {server}"
                raise KeyError(msg)
            self._tokens[token.primary_key] = token.model_copy(update={"enabled": enabled})
        self.changed.emit()

    def token(self, contract: str, server: str) -> Token | None:
        with self._lock:
            return self._tokens.get(f"{contract.lower()}-{server}")

    def enabled_tokens(self, servers: list[str]) -> list[Token]:
        with self._lock:
            return [token for token in self._tokens.values() if token.enabled and token.server in servers]


class StaticCardProvider:
    """
    Card definitions keyed by token contract.

    Parameters
    ----------
    definitions : dict[str, TokenScriptDefinition] | None
        Definitions by contract address

    """

    def __init__(self, definitions: dict[str, TokenScriptDefinition] | None = None) -> None:
        self._definitions = {contract.lower(): definition for contract, definition in (definitions or {}).items()}

    def register(self, contract: str, definition: TokenScriptDefinition) -> None:
        self._definitions[contract.lower()] = definition

    def definition_for(self, token: Token) -> TokenScriptDefinition | None:
        return self._definitions.get(token.contract_address.lower())


def _single_holder(token: Token, values: dict[str, AttributeSource] | None = None) -> TokenHolder:
    return TokenHolder(
        tokens=[HeldToken(token_id=0, token_type=token.token_type, symbol=token.symbol, name=token.name)],
        contract_address=token.contract_address,
        has_asset_definition=True,
        values=values,
    )


class StaticTokenHolderAdaptor:
    """
    Token holder adaptor returning registered holders.

    Tokens without registered holders get a single default holder, created on
    first request and reused afterwards.

    """

    def __init__(self) -> None:
        self._holders: dict[str, list[TokenHolder]] = {}
        self._lock = threading.Lock()

    def register(self, token: Token, holders: list[TokenHolder]) -> None:
        with self._lock:
            self._holders[token.primary_key] = holders

    def register_values(self, token: Token, values: dict[str, AttributeSource]) -> TokenHolder:
        """Register a single holder of ``token`` with the given attribute values."""
        holder = _single_holder(token, values)
        self.register(token, [holder])
        return holder

    def token_holders(self, token: Token, wallet_address: str) -> list[TokenHolder]:
        with self._lock:
            holders = self._holders.get(token.primary_key)
            if holders is None:
                logger.debug("Creating default holder of %s for %s", token.symbol, wallet_address)
                holders = [_single_holder(token)]
                self._holders[token.primary_key] = holders
            return list(holders)
