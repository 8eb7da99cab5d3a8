"""Attribute resolution for token/event pairs."""

import logging
import re
import threading
from collections.abc import Callable, Mapping
from enum import StrEnum

from pydantic import BaseModel, Field

from activity_timeline.core.interfaces import WalletSession
from activity_timeline.core.models import EventActivity, TokenScriptCard, TokenType
from activity_timeline.core.observable import Subscribable
from activity_timeline.core.values import AttributeMap, AttributeValue, SolidityType, merge_attributes

logger = logging.getLogger(__name__)

_IMPLICIT_REFERENCE = re.compile(r"^\$\{(\w+)\}$")

AttributeSource = AttributeValue | Subscribable[AttributeValue]


class ImplicitAttribute(StrEnum):
    """Attributes derivable from context rather than event data."""

    TOKEN_ID = "tokenId"
    OWNER_ADDRESS = "ownerAddress"
    LABEL = "label"
    CONTRACT_ADDRESS = "contractAddress"
    SYMBOL = "symbol"


def parse_implicit_attribute(text: str) -> ImplicitAttribute | None:
    """
    Parse an implicit attribute reference such as ``${ownerAddress}``.

    Parameters
    ----------
    text : str
        Filter value template

    Returns
    -------
    ImplicitAttribute | None
        Referenced attribute, None when ``text`` is not an implicit reference

    """
    match = _IMPLICIT_REFERENCE.match(text.strip())
    if not match:
        return None
    try:
        return ImplicitAttribute(match.group(1))
    except ValueError:
        return None


def interpolate_filter(card: TokenScriptCard, wallet_address: str) -> str | None:
    """
    Build the event filter string for ``card``.

    Only owner-address filters are supported; filters on token id, label,
    contract address, symbol or on literal values yield None.

    Parameters
    ----------
    card : TokenScriptCard
        Activity card
    wallet_address : str
        Current wallet address

    Returns
    -------
    str | None
        Filter such as 'to=0x...', or None when the card is not supported

    """
    filter_name, filter_value = card.event_origin.event_filter
    implicit_attribute = parse_implicit_attribute(filter_value)
    if implicit_attribute is ImplicitAttribute.OWNER_ADDRESS:
        return f"{filter_name}={wallet_address}"
    return None


class HeldToken(BaseModel):
    """Individual token (unit or NFT) within a token holder."""

    token_id: int
    token_type: TokenType
    index: int = 0
    name: str = ""
    symbol: str = ""
    status: str = "available"
    values: AttributeMap = Field(default_factory=dict)


class TokenHolder:
    """
    Ownership and attribute view of a token under a wallet.

    Attribute values may still be resolving; those are held as
    :class:`Subscribable` instances that publish once computed. A holder must be
    reused while its resolutions are pending, recreating it orphans them.

    Parameters
    ----------
    tokens : list[HeldToken]
        Held units
    contract_address : str
        Token contract
    has_asset_definition : bool
        Whether a TokenScript definition backs the holder
    values : dict[str, AttributeSource] | None
        Holder attributes, resolved or pending

    """

    def __init__(
        self,
        tokens: list[HeldToken],
        contract_address: str,
        has_asset_definition: bool,
        values: dict[str, AttributeSource] | None = None,
    ) -> None:
        self.tokens = tokens
        self.contract_address = contract_address
        self.has_asset_definition = has_asset_definition
        self.values: dict[str, AttributeSource] = dict(values or {})

    def __repr__(self) -> str:
        return f"TokenHolder(contract_address={self.contract_address!r}, tokens={len(self.tokens)})"


def _subscribe_once(
    subscribable: Subscribable[AttributeValue],
    name: str,
    on_update: Callable[[str], None],
) -> Callable[[], None]:
    fired = False
    key: int | None = None
    lock = threading.Lock()

    def callback(_value: AttributeValue) -> None:
        nonlocal fired
        with lock:
            if fired:
                return
            fired = True
        if key is not None:
            subscribable.unsubscribe(key)
        on_update(name)

    def cancel() -> None:
        nonlocal fired
        with lock:
            fired = True
        if key is not None:
            subscribable.unsubscribe(key)

    key = subscribable.subscribe(callback)
    if fired:
        subscribable.unsubscribe(key)
    return cancel


def resolve_attribute_values(
    values: Mapping[str, AttributeSource],
    on_update: Callable[[str], None] | None,
    cancellations: list[Callable[[], None]] | None = None,
) -> AttributeMap:
    """
    Return the attribute values available now and watch the pending ones.

    Parameters
    ----------
    values : Mapping[str, AttributeSource]
        Holder attributes, resolved or pending
    on_update : Callable[[str], None] | None
        Called with the attribute name when a pending value resolves, at most
        once per pending attribute. None leaves pending values unwatched
    cancellations : list[Callable[[], None]] | None
        Receives one callable per watched value that drops its subscription

    Returns
    -------
    AttributeMap
        Values that are already resolved

    """
    resolved: AttributeMap = {}
    for name, source in values.items():
        if isinstance(source, Subscribable):
            current = source.value
            if current is not None:
                resolved[name] = current
            elif on_update is not None:
                cancel = _subscribe_once(source, name, on_update)
                if cancellations is not None:
                    cancellations.append(cancel)
        else:
            resolved[name] = source
    return resolved


def generate_implicit_card_attributes(event: EventActivity) -> AttributeMap:
    """Implicit card attributes of ``event``, currently only its timestamp."""
    return {"timestamp": AttributeValue.generalised_time(event.date)}


class AttributeResolver:
    """
    Resolves implicit and declared attributes for token/event pairs.

    Parameters
    ----------
    sessions : Mapping[str, WalletSession]
        Wallet sessions by server name, source of the owner address

    """

    def __init__(self, sessions: Mapping[str, WalletSession]) -> None:
        self.sessions = sessions
        self._pending: dict[str, list[Callable[[], None]]] = {}
        self._pending_lock = threading.Lock()

    def token_attributes(self, contract: str, server: str, symbol: str) -> AttributeMap:
        """
        Implicit token attributes: owner address, symbol and contract address.

        Token id and label are not known at this layer and are left out.

        Parameters
        ----------
        contract : str
            Token contract
        server : str
            Server name
        symbol : str
            Token symbol

        Returns
        -------
        AttributeMap
            Attributes keyed by their implicit attribute name

        """
        results: AttributeMap = {}
        session = self.sessions.get(server)
        if session is not None:
            results[ImplicitAttribute.OWNER_ADDRESS.value] = AttributeValue.address(session.address)
        else:
            logger.debug("No wallet session for %s, omitting %s", server, ImplicitAttribute.OWNER_ADDRESS.value)
        results[ImplicitAttribute.SYMBOL.value] = AttributeValue.string(symbol)
        results[ImplicitAttribute.CONTRACT_ADDRESS.value] = AttributeValue.address(contract)
        return results

    def card_attributes(self, card: TokenScriptCard, event: EventActivity) -> AttributeMap:
        """
        Card attributes of ``event``: implicit ones overridden by event data.

        Declared parameters are coerced to their Solidity type; parameters with
        an unrecognised type keep their raw value.

        Parameters
        ----------
        card : TokenScriptCard
            Card interpreting the event
        event : EventActivity
            Raw event

        Returns
        -------
        AttributeMap
            Card attributes

        """
        attributes = merge_attributes(generate_implicit_card_attributes(event), event.data)
        for parameter in card.event_origin.parameters:
            original = attributes.get(parameter.name)
            if original is None:
                continue
            solidity_type = SolidityType.parse(parameter.type)
            if solidity_type is None:
                continue
            attributes[parameter.name] = solidity_type.coerce(original)
        return attributes

    def resolve(
        self,
        holder: TokenHolder,
        on_update: Callable[[str], None] | None,
        owner: str | None = None,
    ) -> AttributeMap:
        """
        Resolved attribute values of ``holder``, see :func:`resolve_attribute_values`.

        With an ``owner``, the pending values watched for that owner by an
        earlier call are released first, so an owner holds at most one
        subscription per pending value.

        Parameters
        ----------
        holder : TokenHolder
            Holder whose attributes to resolve
        on_update : Callable[[str], None] | None
            Called when a pending value resolves
        owner : str | None
            Key the subscriptions are registered under, usually an activity id

        Returns
        -------
        AttributeMap
            Values that are already resolved

        """
        if owner is not None:
            self.release(owner)
        cancellations: list[Callable[[], None]] = []
        resolved = resolve_attribute_values(holder.values, on_update, cancellations)
        if owner is not None and cancellations:
            with self._pending_lock:
                self._pending.setdefault(owner, []).extend(cancellations)
        return resolved

    def release(self, owner: str | None = None) -> None:
        """Drop the pending subscriptions of ``owner``, or of every owner."""
        with self._pending_lock:
            if owner is None:
                released = [cancel for cancellations in self._pending.values() for cancel in cancellations]
                self._pending.clear()
            else:
                released = self._pending.pop(owner, [])
        for cancel in released:
            cancel()

    def retain(self, owners: set[str]) -> None:
        """Drop the pending subscriptions of every owner not in ``owners``."""
        with self._pending_lock:
            stale = [owner for owner in self._pending if owner not in owners]
        for owner in stale:
            self.release(owner)

    @property
    def pending_owners(self) -> set[str]:
        with self._pending_lock:
            return set(self._pending)
