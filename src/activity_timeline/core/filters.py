"""Filter strategies for activities and transactions."""

from collections.abc import Sequence
from enum import StrEnum
from typing import TYPE_CHECKING, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from activity_timeline.core.models import (
    OperationType,
    Token,
    TokenSnapshot,
    TransactionInstance,
    TransactionPredicate,
    same_address,
)

if TYPE_CHECKING:
    from activity_timeline.core.interfaces import TokenStore


class ActivitiesFilterKind(StrEnum):
    """Activity filter strategy tag."""

    NONE = "none"
    CONTRACT = "contract"
    OPERATION_TYPES = "operation_types"
    NATIVE_CRYPTOCURRENCY = "native_cryptocurrency"


class ActivitiesFilterStrategy(BaseModel):
    """
    Declarative filter applied to built activities.

    Attributes
    ----------
    kind : ActivitiesFilterKind
        Strategy tag
    contract : str | None
        Contract for the ``contract`` and ``operation_types`` strategies
    operation_types : list[OperationType]
        Operation types for the ``operation_types`` strategy
    primary_key : str | None
        Token identity for the ``native_cryptocurrency`` strategy

    """

    model_config = ConfigDict(frozen=True)

    kind: ActivitiesFilterKind = ActivitiesFilterKind.NONE
    contract: str | None = None
    operation_types: list[OperationType] = Field(default_factory=list)
    primary_key: str | None = None

    @classmethod
    def none(cls) -> "ActivitiesFilterStrategy":
        return cls()

    @classmethod
    def for_contract(cls, contract: str) -> "ActivitiesFilterStrategy":
        return cls(kind=ActivitiesFilterKind.CONTRACT, contract=contract)

    @classmethod
    def for_operation_types(cls, operation_types: list[OperationType], contract: str) -> "ActivitiesFilterStrategy":
        return cls(kind=ActivitiesFilterKind.OPERATION_TYPES, contract=contract, operation_types=operation_types)

    @classmethod
    def for_native_cryptocurrency(cls, primary_key: str) -> "ActivitiesFilterStrategy":
        return cls(kind=ActivitiesFilterKind.NATIVE_CRYPTOCURRENCY, primary_key=primary_key)

    def keeps(self, token: TokenSnapshot) -> bool:
        """Whether an activity on ``token`` passes this strategy."""
        if self.kind == ActivitiesFilterKind.NONE:
            return True
        if self.kind in (ActivitiesFilterKind.CONTRACT, ActivitiesFilterKind.OPERATION_TYPES):
            return same_address(token.contract_address, self.contract)
        return token.primary_key == self.primary_key


T = TypeVar("T")


def filter_activities(candidates: Sequence[T], strategy: ActivitiesFilterStrategy) -> list[T]:
    """
    Keep the candidates whose token passes ``strategy``.

    Pure and order preserving.

    Parameters
    ----------
    candidates : Sequence[T]
        Items exposing a ``token`` snapshot, e.g. built activities
    strategy : ActivitiesFilterStrategy
        Filter to apply

    Returns
    -------
    list[T]
        Kept candidates in input order

    """
    if strategy.kind == ActivitiesFilterKind.NONE:
        return list(candidates)
    return [candidate for candidate in candidates if strategy.keeps(candidate.token)]


class TransactionsFilterKind(StrEnum):
    """Transaction filter strategy tag."""

    ALL = "all"
    FILTER = "filter"
    PREDICATE = "predicate"


class TransactionsFilterStrategy(BaseModel):
    """
    Selects the transactions (and the tokens) a timeline covers.

    Attributes
    ----------
    kind : TransactionsFilterKind
        Strategy tag
    strategy : ActivitiesFilterStrategy | None
        Token-scoped strategy for ``filter``
    token : Token | None
        Token for ``filter``
    predicate : TransactionPredicate | None
        Custom predicate for ``predicate``

    """

    model_config = ConfigDict(frozen=True)

    kind: TransactionsFilterKind = TransactionsFilterKind.ALL
    strategy: ActivitiesFilterStrategy | None = None
    token: Token | None = None
    predicate: TransactionPredicate | None = None

    @classmethod
    def all(cls) -> "TransactionsFilterStrategy":
        return cls()

    @classmethod
    def for_token(cls, strategy: ActivitiesFilterStrategy, token: Token) -> "TransactionsFilterStrategy":
        return cls(kind=TransactionsFilterKind.FILTER, strategy=strategy, token=token)

    @classmethod
    def for_predicate(cls, predicate: TransactionPredicate) -> "TransactionsFilterStrategy":
        return cls(kind=TransactionsFilterKind.PREDICATE, predicate=predicate)

    def tokens(self, token_store: "TokenStore", servers: list[str]) -> list[Token]:
        """
        Tokens whose activities a reload should build.

        Parameters
        ----------
        token_store : TokenStore
            Token store
        servers : list[str]
            Enabled servers

        Returns
        -------
        list[Token]
            All enabled tokens for ``all``, the filtered token for ``filter``,
            nothing for ``predicate``

        """
        if self.kind == TransactionsFilterKind.ALL:
            return token_store.enabled_tokens(servers)
        if self.kind == TransactionsFilterKind.FILTER and self.token is not None:
            return [self.token]
        return []

    def matches(self, transaction: TransactionInstance) -> bool:
        """Whether ``transaction`` belongs to the filtered timeline."""
        if self.kind == TransactionsFilterKind.ALL:
            return True
        if self.kind == TransactionsFilterKind.PREDICATE:
            return self.predicate is not None and self.predicate(transaction)

        if self.token is None or transaction.server != self.token.server:
            return False
        strategy = self.strategy or ActivitiesFilterStrategy.none()
        operations = transaction.localized_operations

        if strategy.kind == ActivitiesFilterKind.NATIVE_CRYPTOCURRENCY:
            return not operations
        if strategy.kind == ActivitiesFilterKind.CONTRACT:
            return any(same_address(operation.contract, strategy.contract) for operation in operations)
        if strategy.kind == ActivitiesFilterKind.OPERATION_TYPES:
            return any(
                operation.operation_type in strategy.operation_types
                and same_address(operation.contract, strategy.contract)
                for operation in operations
            )
        return True
