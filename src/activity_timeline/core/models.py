"""Data models for tokens, events, activities, transactions and timeline rows."""

from collections.abc import Callable
from datetime import date, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from activity_timeline.core.values import AttributeMap


def same_address(first: str | None, second: str | None) -> bool:
    """Case-insensitive address comparison, False when either side is missing."""
    if not first or not second:
        return False
    return first.lower() == second.lower()


class TokenType(StrEnum):
    """Token standard."""

    NATIVE_CRYPTOCURRENCY = "native_cryptocurrency"
    ERC20 = "erc20"
    ERC721 = "erc721"
    ERC721_FOR_TICKETS = "erc721_for_tickets"
    ERC875 = "erc875"
    ERC1155 = "erc1155"


class RowType(StrEnum):
    """Position of an activity within a timeline group."""

    STANDALONE = "standalone"
    GROUP = "group"
    ITEM = "item"


class ActivityState(StrEnum):
    """Lifecycle of an activity."""

    PENDING = "pending"
    COMPLETED = "completed"


class TransactionState(StrEnum):
    """Lifecycle of a wallet transaction."""

    COMPLETED = "completed"
    PENDING = "pending"
    FAILED = "failed"
    ERROR = "error"
    UNKNOWN = "unknown"


class OperationType(StrEnum):
    """Kind of a localized transaction operation."""

    NATIVE_CURRENCY_TOKEN_TRANSFER = "native_currency_token_transfer"
    ERC20_TOKEN_TRANSFER = "erc20_token_transfer"
    ERC20_TOKEN_APPROVE = "erc20_token_approve"
    ERC721_TOKEN_TRANSFER = "erc721_token_transfer"
    ERC875_TOKEN_TRANSFER = "erc875_token_transfer"
    ERC1155_TOKEN_TRANSFER = "erc1155_token_transfer"
    UNKNOWN = "unknown"


class NativeViewType(StrEnum):
    """Built-in presentation of an activity, derived from card name and token type."""

    NATIVE_CRYPTO_SENT = "native_crypto_sent"
    NATIVE_CRYPTO_RECEIVED = "native_crypto_received"
    ERC20_SENT = "erc20_sent"
    ERC20_RECEIVED = "erc20_received"
    ERC20_OWNER_APPROVED = "erc20_owner_approved"
    ERC20_APPROVAL_OBTAINED = "erc20_approval_obtained"
    ERC721_SENT = "erc721_sent"
    ERC721_RECEIVED = "erc721_received"
    ERC721_OWNER_APPROVED = "erc721_owner_approved"
    ERC721_APPROVAL_OBTAINED = "erc721_approval_obtained"
    NONE = "none"


_NATIVE_VIEW_TYPES: dict[str, dict[str, NativeViewType]] = {
    "native": {
        "sent": NativeViewType.NATIVE_CRYPTO_SENT,
        "received": NativeViewType.NATIVE_CRYPTO_RECEIVED,
    },
    "erc20": {
        "sent": NativeViewType.ERC20_SENT,
        "received": NativeViewType.ERC20_RECEIVED,
        "ownerApproved": NativeViewType.ERC20_OWNER_APPROVED,
        "approvalObtained": NativeViewType.ERC20_APPROVAL_OBTAINED,
    },
    "erc721": {
        "sent": NativeViewType.ERC721_SENT,
        "received": NativeViewType.ERC721_RECEIVED,
        "ownerApproved": NativeViewType.ERC721_OWNER_APPROVED,
        "approvalObtained": NativeViewType.ERC721_APPROVAL_OBTAINED,
    },
}

_VIEW_FAMILY_BY_TOKEN_TYPE = {
    TokenType.NATIVE_CRYPTOCURRENCY: "native",
    TokenType.ERC20: "erc20",
    TokenType.ERC721: "erc721",
    TokenType.ERC721_FOR_TICKETS: "erc721",
    TokenType.ERC1155: "erc721",
}


class Token(BaseModel):
    """
    Token as held by the token store.

    Attributes
    ----------
    contract_address : str
        Token contract address
    server : str
        Server (chain) name, e.g. 'ethereum'
    symbol : str
        Token symbol
    name : str
        Full token name
    decimals : int
        Number of decimal places
    token_type : TokenType
        Token standard
    enabled : bool
        Whether the token is shown in the wallet

    """

    contract_address: str
    server: str
    symbol: str
    name: str = ""
    decimals: int = 18
    token_type: TokenType = TokenType.ERC20
    enabled: bool = True

    @property
    def primary_key(self) -> str:
        return f"{self.contract_address.lower()}-{self.server}"


class TokenSnapshot(BaseModel):
    """
    Point-in-time copy of a token, decoupled from the live token store.

    Attributes
    ----------
    primary_key : str
        Token identity, ``<contract>-<server>``
    contract_address : str
        Token contract address
    server : str
        Server name
    symbol : str
        Token symbol
    name : str
        Token name
    decimals : int
        Number of decimal places
    token_type : TokenType
        Token standard

    """

    model_config = ConfigDict(frozen=True)

    primary_key: str
    contract_address: str
    server: str
    symbol: str
    name: str = ""
    decimals: int = 18
    token_type: TokenType = TokenType.ERC20

    @classmethod
    def from_token(cls, token: Token) -> "TokenSnapshot":
        return cls(
            primary_key=token.primary_key,
            contract_address=token.contract_address,
            server=token.server,
            symbol=token.symbol,
            name=token.name,
            decimals=token.decimals,
            token_type=token.token_type,
        )


class EventParameter(BaseModel):
    """Declared event parameter of a card: name and Solidity type."""

    name: str
    type: str


class EventOrigin(BaseModel):
    """
    Event a card is bound to.

    Attributes
    ----------
    contract : str
        Contract emitting the event
    event_name : str
        Event name, e.g. 'Transfer'
    event_filter : tuple[str, str]
        Filter field name and value template, e.g. ('to', '${ownerAddress}')
    parameters : list[EventParameter]
        Declared parameters used to coerce event data

    """

    contract: str
    event_name: str
    event_filter: tuple[str, str]
    parameters: list[EventParameter] = Field(default_factory=list)


class TokenScriptCard(BaseModel):
    """
    Activity card declared by a TokenScript definition.

    Attributes
    ----------
    name : str
        Card name, e.g. 'sent' or 'received'
    event_origin : EventOrigin
        Event the card interprets
    view : str
        Presentation template identifier
    item_view : str
        Presentation template identifier for list items
    is_base : bool
        Whether this is a base (built-in) card

    """

    name: str
    event_origin: EventOrigin
    view: str = ""
    item_view: str = ""
    is_base: bool = False


class TokenScriptDefinition(BaseModel):
    """
    Resolved TokenScript definition for a token.

    Attributes
    ----------
    server : str | None
        Target server, 'any' for every enabled server, None when unspecified
    activity_cards : list[TokenScriptCard]
        Cards turning events into activities

    """

    server: str | None = None
    activity_cards: list[TokenScriptCard] = Field(default_factory=list)

    def matches_server(self, server: str) -> bool:
        if self.server is None:
            return False
        return self.server == "any" or self.server == server


class EventActivity(BaseModel):
    """
    Raw on-chain event as kept by the event store.

    Attributes
    ----------
    contract : str
        Emitting contract
    token_contract : str
        Token the event belongs to
    server : str
        Server name
    event_name : str
        Event name
    block_number : int
        Block containing the event
    transaction_id : str
        Transaction hash
    transaction_index : int
        Index of the transaction in its block
    log_index : int
        Index of the log in its transaction
    filter : str
        Interpolated filter the event was fetched with, e.g. 'to=0x...'
    date : datetime
        Block timestamp
    data : AttributeMap
        Event parameters by name

    """

    contract: str
    token_contract: str
    server: str
    event_name: str
    block_number: int
    transaction_id: str
    transaction_index: int = 0
    log_index: int = 0
    filter: str = ""
    date: datetime
    data: AttributeMap = Field(default_factory=dict)


class ActivityValues(BaseModel):
    """Token-level and card-level attribute maps of an activity."""

    model_config = ConfigDict(frozen=True)

    token: AttributeMap = Field(default_factory=dict)
    card: AttributeMap = Field(default_factory=dict)


class Activity(BaseModel):
    """
    One interpreted on-chain event for one token under one card.

    Instances are never mutated, updates produce a copy with the same ``id``.

    Attributes
    ----------
    id : str
        Stable identifier of the logical activity
    row_type : RowType
        Standalone or part of a group
    token : TokenSnapshot
        Shared token snapshot
    server : str
        Server name
    name : str
        Card name
    event_name : str
        Event name
    block_number : int
        Primary ordering key
    transaction_id : str
        Transaction hash
    transaction_index : int
        Transaction position in block
    log_index : int
        Log position in transaction
    date : datetime
        Block timestamp
    values : ActivityValues
        Token and card attribute maps
    view : str
        Presentation template identifier
    item_view : str
        Presentation template identifier for list items
    is_base_card : bool
        Whether the card is a base card
    state : ActivityState
        Pending or completed

    """

    model_config = ConfigDict(frozen=True)

    id: str
    row_type: RowType = RowType.STANDALONE
    token: TokenSnapshot
    server: str
    name: str
    event_name: str
    block_number: int
    transaction_id: str
    transaction_index: int = 0
    log_index: int = 0
    date: datetime
    values: ActivityValues = Field(default_factory=ActivityValues)
    view: str = ""
    item_view: str = ""
    is_base_card: bool = False
    state: ActivityState = ActivityState.COMPLETED

    @property
    def native_view_type(self) -> NativeViewType:
        family = _VIEW_FAMILY_BY_TOKEN_TYPE.get(self.token.token_type)
        if family is None:
            return NativeViewType.NONE
        return _NATIVE_VIEW_TYPES[family].get(self.name, NativeViewType.NONE)

    @property
    def is_send(self) -> bool:
        return self.name == "sent"

    @property
    def is_receive(self) -> bool:
        return self.name == "received"


class LocalizedOperation(BaseModel):
    """
    Single transfer or approval performed within a transaction.

    Attributes
    ----------
    from_address : str
        Sender
    to_address : str
        Recipient
    contract : str | None
        Token contract, None for native currency
    operation_type : OperationType
        Kind of operation
    value : str
        Amount in the token's smallest unit, as a decimal string
    symbol : str | None
        Token symbol
    name : str | None
        Token name
    decimals : int
        Token decimals
    token_id : str
        Token id for non-fungible transfers

    """

    from_address: str
    to_address: str
    contract: str | None = None
    operation_type: OperationType = OperationType.UNKNOWN
    value: str = "0"
    symbol: str | None = None
    name: str | None = None
    decimals: int = 18
    token_id: str = ""

    def is_send(self, wallet_address: str) -> bool:
        return same_address(self.from_address, wallet_address)

    def is_received(self, wallet_address: str) -> bool:
        return same_address(self.to_address, wallet_address)


class TransactionInstance(BaseModel):
    """
    Wallet transaction with its localized operations.

    Attributes
    ----------
    id : str
        Transaction hash
    server : str
        Server name
    block_number : int
        Block containing the transaction
    transaction_index : int
        Position in block
    from_address : str
        Sender
    to_address : str
        Recipient
    value : str
        Native amount in the smallest unit, as a decimal string
    date : datetime
        Block timestamp
    state : TransactionState
        Transaction lifecycle state
    localized_operations : list[LocalizedOperation]
        Transfers and approvals contained in the transaction
    gas : str
        Gas limit
    gas_price : str
        Gas price
    gas_used : str
        Gas used
    nonce : str
        Sender nonce

    """

    id: str
    server: str
    block_number: int
    transaction_index: int = 0
    from_address: str
    to_address: str
    value: str = "0"
    date: datetime
    state: TransactionState = TransactionState.COMPLETED
    localized_operations: list[LocalizedOperation] = Field(default_factory=list)
    gas: str = "0"
    gas_price: str = "0"
    gas_used: str = "0"
    nonce: str = "0"


class ContractCardFilter(BaseModel):
    """Unit of work for event lookup: contract, server, card and interpolated filter."""

    model_config = ConfigDict(frozen=True)

    contract: str
    server: str
    card: TokenScriptCard
    interpolated_filter: str


class RowKind(StrEnum):
    """Shape of a timeline row."""

    STANDALONE_ACTIVITY = "standalone_activity"
    STANDALONE_TRANSACTION = "standalone_transaction"
    PARENT_TRANSACTION = "parent_transaction"
    CHILD_ACTIVITY = "child_activity"
    CHILD_TRANSACTION = "child_transaction"


class ActivityRowModel(BaseModel):
    """
    One row of the published timeline.

    Attributes
    ----------
    kind : RowKind
        Row shape
    activity : Activity | None
        Activity shown by the row, a pseudo-activity for transaction rows
    transaction : TransactionInstance | None
        Owning transaction
    operation : LocalizedOperation | None
        Operation of a child transaction row
    is_swap : bool
        Parent rows only: group shows both a send and a receive
    activities : list[Activity]
        Parent rows only: real activities grouped under the transaction

    """

    kind: RowKind
    activity: Activity | None = None
    transaction: TransactionInstance | None = None
    operation: LocalizedOperation | None = None
    is_swap: bool = False
    activities: list[Activity] = Field(default_factory=list)

    @classmethod
    def standalone_activity(cls, activity: Activity) -> "ActivityRowModel":
        return cls(kind=RowKind.STANDALONE_ACTIVITY, activity=activity)

    @classmethod
    def standalone_transaction(cls, transaction: TransactionInstance, activity: Activity) -> "ActivityRowModel":
        return cls(kind=RowKind.STANDALONE_TRANSACTION, transaction=transaction, activity=activity)

    @classmethod
    def parent_transaction(
        cls,
        transaction: TransactionInstance,
        is_swap: bool,
        activities: list[Activity],
    ) -> "ActivityRowModel":
        return cls(
            kind=RowKind.PARENT_TRANSACTION,
            transaction=transaction,
            is_swap=is_swap,
            activities=list(activities),
        )

    @classmethod
    def child_activity(cls, transaction: TransactionInstance, activity: Activity) -> "ActivityRowModel":
        return cls(kind=RowKind.CHILD_ACTIVITY, transaction=transaction, activity=activity)

    @classmethod
    def child_transaction(
        cls,
        transaction: TransactionInstance,
        operation: LocalizedOperation,
        activity: Activity,
    ) -> "ActivityRowModel":
        return cls(
            kind=RowKind.CHILD_TRANSACTION,
            transaction=transaction,
            operation=operation,
            activity=activity,
        )

    @property
    def block_number(self) -> int:
        if self.transaction is not None:
            return self.transaction.block_number
        if self.activity is not None:
            return self.activity.block_number
        return 0

    @property
    def date(self) -> datetime | None:
        if self.transaction is not None:
            return self.transaction.date
        if self.activity is not None:
            return self.activity.date
        return None


class ActivitiesViewModel(BaseModel):
    """
    Publishable timeline, replaced wholesale on every publish.

    Attributes
    ----------
    rows : list[ActivityRowModel]
        Rows ordered by block number, newest first

    """

    rows: list[ActivityRowModel] = Field(default_factory=list)

    def sections(self) -> list[tuple[date, list[ActivityRowModel]]]:
        """
        Group rows by calendar day, newest day first.

        Returns
        -------
        list[tuple[date, list[ActivityRowModel]]]
            Day and its rows, rows keep their published order

        """
        by_day: dict[date, list[ActivityRowModel]] = {}
        for row in self.rows:
            row_date = row.date
            if row_date is None:
                continue
            by_day.setdefault(row_date.date(), []).append(row)
        return sorted(by_day.items(), key=lambda item: item[0], reverse=True)


TransactionPredicate = Callable[[TransactionInstance], bool]
