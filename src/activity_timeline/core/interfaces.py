"""Interfaces of the stores and providers the timeline engine consumes."""

from concurrent.futures import Future
from typing import TYPE_CHECKING, Protocol

from activity_timeline.core.models import (
    EventActivity,
    Token,
    TokenScriptDefinition,
)
from activity_timeline.core.observable import Signal

if TYPE_CHECKING:
    from activity_timeline.core.attributes import TokenHolder
    from activity_timeline.core.filters import TransactionsFilterStrategy


class WalletSession(Protocol):
    """
    Wallet session on one server.

    Attributes
    ----------
    server : str
        Server name
    address : str
        Wallet address on that server

    """

    server: str
    address: str

    def stop(self) -> None:
        """Release network resources held by the session."""
        ...


class EventStore(Protocol):
    """
    Store of raw on-chain events matched against activity cards.

    Attributes
    ----------
    changed : Signal
        Emitted when new events are stored

    """

    changed: Signal

    def recent_events(
        self,
        contract: str,
        server: str,
        event_name: str,
        interpolated_filter: str,
    ) -> list[EventActivity]:
        """
        Fetch the most recent matching events, newest first.

        The result is bounded; older matching events may be omitted.

        Parameters
        ----------
        contract : str
            Contract emitting the event
        server : str
            Server name
        event_name : str
            Event name
        interpolated_filter : str
            Filter such as 'to=0x...'

        Returns
        -------
        list[EventActivity]
            Matching events sorted by block number, descending

        """
        ...


class TransactionStore(Protocol):
    """
    Store of wallet transactions.

    Attributes
    ----------
    changed : Signal
        Emitted when the stored transactions change

    """

    changed: Signal

    def fetch_transactions(
        self,
        filter_strategy: "TransactionsFilterStrategy",
        servers: list[str],
        oldest_block_number: int | None,
    ) -> Future:
        """
        Start fetching transactions.

        Parameters
        ----------
        filter_strategy : TransactionsFilterStrategy
            Which transactions to include
        servers : list[str]
            Servers to include
        oldest_block_number : int | None
            Only transactions at or after this block, None for all

        Returns
        -------
        Future
            Resolves to ``list[TransactionInstance]``; may be cancelled

        """
        ...


class TokenStore(Protocol):
    """
    Store of the wallet's tokens.

    Attributes
    ----------
    changed : Signal
        Emitted on token membership or enabled-server changes

    """

    changed: Signal

    def token(self, contract: str, server: str) -> Token | None:
        """Look up a token by contract and server."""
        ...

    def enabled_tokens(self, servers: list[str]) -> list[Token]:
        """Return enabled tokens on the given servers."""
        ...


class CardDefinitionProvider(Protocol):
    """Provides resolved TokenScript definitions for tokens."""

    def definition_for(self, token: Token) -> TokenScriptDefinition | None:
        """
        Return the TokenScript definition of ``token``.

        Parameters
        ----------
        token : Token
            Token to look up

        Returns
        -------
        TokenScriptDefinition | None
            Definition, or None when the token has no TokenScript

        """
        ...


class TokenHolderAdaptor(Protocol):
    """Resolves wallet holdings of a token into token holders."""

    def token_holders(self, token: Token, wallet_address: str) -> list["TokenHolder"]:
        """
        Return the holders of ``token`` owned by ``wallet_address``.

        Parameters
        ----------
        token : Token
            Token to resolve
        wallet_address : str
            Owning wallet

        Returns
        -------
        list[TokenHolder]
            Holders, possibly empty

        """
        ...
