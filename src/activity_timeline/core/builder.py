"""Activity builder: turns matching events into candidate activities."""

import hashlib
import logging
import threading
from typing import NamedTuple

from activity_timeline.core.attributes import AttributeResolver, HeldToken, TokenHolder
from activity_timeline.core.interfaces import EventStore, TokenHolderAdaptor, TokenStore
from activity_timeline.core.models import (
    Activity,
    ActivityState,
    ActivityValues,
    ContractCardFilter,
    EventActivity,
    RowType,
    TokenScriptCard,
    TokenSnapshot,
    TokenType,
    same_address,
)
from activity_timeline.core.values import AttributeMap

logger = logging.getLogger(__name__)

# (card name, attribute) pairs whose zero value marks a degenerate native-currency event
DEGENERATE_NATIVE_EVENTS: tuple[tuple[str, str], ...] = (("aETHMinted", "amount"),)


class TokenNotFoundError(LookupError):
    """Raised when the token store has no token for a contract/server pair."""


class BuiltActivity(NamedTuple):
    """Activity together with the token snapshot and holder it was built from."""

    activity: Activity
    token: TokenSnapshot
    holder: TokenHolder


def make_activity_id(server: str, contract: str, transaction_id: str, log_index: int, card_name: str) -> str:
    """
    Deterministic activity identifier.

    The same event interpreted by the same card yields the same id on every
    rebuild.

    Parameters
    ----------
    server : str
        Server name
    contract : str
        Contract emitting the event
    transaction_id : str
        Transaction hash
    log_index : int
        Log position in the transaction
    card_name : str
        Card interpreting the event

    Returns
    -------
    str
        Hex digest

    """
    key = f"{server}:{contract.lower()}:{transaction_id.lower()}:{log_index}:{card_name}"
    return hashlib.sha256(key.encode()).hexdigest()[:32]


class ActivityBuilder:
    """
    Builds candidate activities for contract/card/filter tuples.

    Owns the token snapshot cache and the token holder cache. Both persist
    across reloads until :meth:`invalidate` is called; holders must survive
    between reloads so that their pending attribute resolutions stay attached.

    Parameters
    ----------
    event_store : EventStore
        Source of recent events
    token_store : TokenStore
        Source of tokens
    holder_adaptor : TokenHolderAdaptor
        Resolves wallet holdings
    resolver : AttributeResolver
        Attribute resolver
    wallet_address : str
        Wallet whose holdings are resolved
    native_crypto_address : str
        Contract address of native-currency tokens

    """

    def __init__(
        self,
        event_store: EventStore,
        token_store: TokenStore,
        holder_adaptor: TokenHolderAdaptor,
        resolver: AttributeResolver,
        wallet_address: str,
        native_crypto_address: str,
    ) -> None:
        self.event_store = event_store
        self.token_store = token_store
        self.holder_adaptor = holder_adaptor
        self.resolver = resolver
        self.wallet_address = wallet_address
        self.native_crypto_address = native_crypto_address
        self._tokens: dict[tuple[str, str], TokenSnapshot] = {}
        self._holders: dict[tuple[str, str], tuple[TokenSnapshot, list[TokenHolder]]] = {}
        self._lock = threading.Lock()

    def build_activities(self, item: ContractCardFilter) -> list[BuiltActivity]:
        """
        Build the activities of one contract/card/filter tuple.

        Events whose token cannot be found are skipped.

        Parameters
        ----------
        item : ContractCardFilter
            Unit of work

        Returns
        -------
        list[BuiltActivity]
            Candidates in event order

        """
        origin = item.card.event_origin
        events = self.event_store.recent_events(origin.contract, item.server, origin.event_name, item.interpolated_filter)

        results = []
        for event in events:
            try:
                built = self._build(item, event)
            except TokenNotFoundError as e:
                logger.debug("Skipping event %s log %d: %s", event.transaction_id, event.log_index, e)
                continue
            if built is not None:
                results.append(built)
        return results

    def cached(self, contract: str, server: str) -> tuple[TokenSnapshot, list[TokenHolder]] | None:
        """Cached token snapshot and holders for a contract, if any."""
        with self._lock:
            return self._holders.get(self._key(contract, server))

    def invalidate(self) -> None:
        """Drop the token and holder caches."""
        with self._lock:
            self._tokens.clear()
            self._holders.clear()

    def is_native_crypto(self, contract: str) -> bool:
        return same_address(contract, self.native_crypto_address)

    def _build(self, item: ContractCardFilter, event: EventActivity) -> BuiltActivity | None:
        card = item.card
        token = self._token_snapshot(item.contract, item.server)

        token_attributes = self.resolver.token_attributes(item.contract, item.server, token.symbol)
        card_attributes = self.resolver.card_attributes(card, event)

        token, holders = self._token_and_holders(item.contract, item.server, token)
        if not holders:
            logger.debug("No token holder for %s on %s", item.contract, item.server)
            return None
        holder = holders[0]

        if self._is_degenerate(card, token, card_attributes):
            logger.debug("Dropping degenerate %s event %s", card.name, event.transaction_id)
            return None

        activity = Activity(
            id=make_activity_id(event.server, event.contract, event.transaction_id, event.log_index, card.name),
            row_type=RowType.STANDALONE,
            token=token,
            server=event.server,
            name=card.name,
            event_name=event.event_name,
            block_number=event.block_number,
            transaction_id=event.transaction_id,
            transaction_index=event.transaction_index,
            log_index=event.log_index,
            date=event.date,
            values=ActivityValues(token=token_attributes, card=card_attributes),
            view=card.view,
            item_view=card.item_view,
            is_base_card=card.is_base,
            state=ActivityState.COMPLETED,
        )
        return BuiltActivity(activity=activity, token=token, holder=holder)

    def _token_snapshot(self, contract: str, server: str) -> TokenSnapshot:
        key = self._key(contract, server)
        with self._lock:
            cached = self._tokens.get(key)
        if cached is not None:
            return cached

        token = self.token_store.token(contract, server)
        if token is None:
            msg = f"No token for contract {contract} on {server}"
            raise TokenNotFoundError(msg)
        snapshot = TokenSnapshot.from_token(token)
        with self._lock:
            self._tokens[key] = snapshot
        return snapshot

    def _token_and_holders(
        self,
        contract: str,
        server: str,
        token: TokenSnapshot,
    ) -> tuple[TokenSnapshot, list[TokenHolder]]:
        key = self._key(contract, server)
        with self._lock:
            cached = self._holders.get(key)
        if cached is not None:
            return cached

        if self.is_native_crypto(token.contract_address):
            unit = HeldToken(token_id=1, token_type=TokenType.NATIVE_CRYPTOCURRENCY, index=0)
            holders = [TokenHolder(tokens=[unit], contract_address=token.contract_address, has_asset_definition=True)]
        else:
            live_token = self.token_store.token(contract, server)
            if live_token is None:
                msg = f"No token for contract {contract} on {server}"
                raise TokenNotFoundError(msg)
            holders = self.holder_adaptor.token_holders(live_token, self.wallet_address)

        with self._lock:
            self._holders[key] = (token, holders)
        return token, holders

    def _is_degenerate(self, card: TokenScriptCard, token: TokenSnapshot, card_attributes: AttributeMap) -> bool:
        if not self.is_native_crypto(token.contract_address):
            return False
        for card_name, attribute in DEGENERATE_NATIVE_EVENTS:
            value = card_attributes.get(attribute)
            if card.name == card_name and value is not None and value.uint_value == 0:
                return True
        return False

    @staticmethod
    def _key(contract: str, server: str) -> tuple[str, str]:
        return contract.lower(), server
