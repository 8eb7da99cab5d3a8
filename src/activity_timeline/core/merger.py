"""Timeline merger: reconciles activities with wallet transactions into rows."""

import logging
from collections.abc import Iterable, Sequence

from activity_timeline.core.builder import make_activity_id
from activity_timeline.core.interfaces import TokenStore
from activity_timeline.core.models import (
    Activity,
    ActivityRowModel,
    ActivityState,
    ActivityValues,
    LocalizedOperation,
    NativeViewType,
    OperationType,
    TokenSnapshot,
    TokenType,
    TransactionInstance,
    TransactionState,
    same_address,
)
from activity_timeline.core.values import AttributeMap, AttributeValue
from activity_timeline.data.loader import Settings

logger = logging.getLogger(__name__)

_NATIVE_VIEWS = {NativeViewType.NATIVE_CRYPTO_SENT, NativeViewType.NATIVE_CRYPTO_RECEIVED}
_ERC20_TRANSFER_VIEWS = {NativeViewType.ERC20_SENT, NativeViewType.ERC20_RECEIVED}
_APPROVAL_VIEWS = {
    NativeViewType.ERC20_OWNER_APPROVED,
    NativeViewType.ERC20_APPROVAL_OBTAINED,
    NativeViewType.ERC721_OWNER_APPROVED,
    NativeViewType.ERC721_APPROVAL_OBTAINED,
}
_ERC721_TRANSFER_VIEWS = {NativeViewType.ERC721_SENT, NativeViewType.ERC721_RECEIVED}

_TOKEN_TYPE_BY_OPERATION = {
    OperationType.NATIVE_CURRENCY_TOKEN_TRANSFER: TokenType.NATIVE_CRYPTOCURRENCY,
    OperationType.ERC20_TOKEN_TRANSFER: TokenType.ERC20,
    OperationType.ERC20_TOKEN_APPROVE: TokenType.ERC20,
    OperationType.ERC721_TOKEN_TRANSFER: TokenType.ERC721,
    OperationType.ERC875_TOKEN_TRANSFER: TokenType.ERC875,
    OperationType.ERC1155_TOKEN_TRANSFER: TokenType.ERC1155,
}


def _same_transfer(activity: Activity, operation: LocalizedOperation) -> bool:
    card = activity.values.card
    sender = card.get("from")
    recipient = card.get("to")
    amount = card.get("amount")
    if sender is None or not same_address(sender.address_value, operation.from_address):
        return False
    if recipient is None or not same_address(recipient.address_value, operation.to_address):
        return False
    if amount is None or amount.uint_value is None:
        return False
    return str(amount.uint_value) == operation.value


def activity_matches_operation(activity: Activity, operation: LocalizedOperation) -> bool:
    """
    Whether ``activity`` and ``operation`` describe the same on-chain event.

    Symbols must match and the operation type must correspond to the
    activity's view type. Transfers additionally compare the ``from``, ``to``
    and ``amount`` card attributes. ERC-875 and unknown operations never match.

    Parameters
    ----------
    activity : Activity
        Activity built from an event
    operation : LocalizedOperation
        Operation of a wallet transaction

    Returns
    -------
    bool
        True when the activity duplicates the operation

    """
    symbol = activity.values.token.get("symbol")
    if symbol is None or symbol.string_value is None or symbol.string_value != operation.symbol:
        return False

    view_type = activity.native_view_type
    operation_type = operation.operation_type
    if operation_type == OperationType.NATIVE_CURRENCY_TOKEN_TRANSFER:
        return view_type in _NATIVE_VIEWS
    if operation_type == OperationType.ERC20_TOKEN_TRANSFER:
        return view_type in _ERC20_TRANSFER_VIEWS and _same_transfer(activity, operation)
    if operation_type == OperationType.ERC20_TOKEN_APPROVE:
        return view_type in _APPROVAL_VIEWS
    if operation_type in (OperationType.ERC721_TOKEN_TRANSFER, OperationType.ERC1155_TOKEN_TRANSFER):
        return view_type in _ERC721_TRANSFER_VIEWS and _same_transfer(activity, operation)
    return False


def is_swap(activities: Iterable[Activity], operations: Iterable[LocalizedOperation], wallet_address: str) -> bool:
    """
    Whether a group shows both an outgoing and an incoming transfer.

    Groups may contain approvals as well, so a swap only needs at least one
    send and at least one receive.

    """
    activities = list(activities)
    operations = list(operations)
    has_send = any(activity.is_send for activity in activities) or any(
        operation.is_send(wallet_address) for operation in operations
    )
    has_receive = any(activity.is_receive for activity in activities) or any(
        operation.is_received(wallet_address) for operation in operations
    )
    return has_send and has_receive


def _parse_amount(value: str) -> int:
    try:
        amount = int(value, 0) if value.lower().startswith("0x") else int(value)
    except ValueError:
        logger.debug("Unparseable amount %r, using 0", value)
        return 0
    return max(amount, 0)


def sort_rows(rows: Sequence[ActivityRowModel]) -> list[ActivityRowModel]:
    """
    Order merged rows by block number, newest first.

    The sort is stable, so a parent row keeps preceding its children.

    """
    return sorted(rows, key=lambda row: row.block_number, reverse=True)


class TimelineMerger:
    """
    Combines activities and transactions into timeline rows.

    Parameters
    ----------
    token_store : TokenStore
        Used to look up tokens of transaction operations
    wallet_address : str
        Wallet the timeline belongs to
    settings : Settings
        Source of native currency metadata per server

    """

    def __init__(self, token_store: TokenStore, wallet_address: str, settings: Settings) -> None:
        self.token_store = token_store
        self.wallet_address = wallet_address
        self.settings = settings

    def merge(
        self,
        activities: Sequence[Activity],
        transactions: Sequence[TransactionInstance],
    ) -> list[ActivityRowModel]:
        """
        Group activities and transactions by block and classify each group.

        The returned rows are not globally ordered; use :func:`sort_rows`.

        Parameters
        ----------
        activities : Sequence[Activity]
            Built activities
        transactions : Sequence[TransactionInstance]
            Wallet transactions

        Returns
        -------
        list[ActivityRowModel]
            Rows of every block group

        """
        items: list[Activity | TransactionInstance] = [*activities, *transactions]
        items.sort(key=lambda item: item.block_number)

        groups: dict[int, list[Activity | TransactionInstance]] = {}
        for item in items:
            groups.setdefault(item.block_number, []).append(item)

        rows: list[ActivityRowModel] = []
        for group in groups.values():
            rows.extend(self._rows_for_group(group))
        return rows

    def _rows_for_group(self, group: list[Activity | TransactionInstance]) -> list[ActivityRowModel]:
        if not group:
            return []
        if len(group) == 1:
            return self._rows_for_single(group[0])

        activities = [item for item in group if isinstance(item, Activity)]
        transactions = [item for item in group if isinstance(item, TransactionInstance)]
        transaction = transactions[0] if transactions else None
        if len(transactions) > 1:
            logger.debug(
                "Block %s has %d transactions, keeping %s and dropping %s",
                transaction.block_number,
                len(transactions),
                transaction.id,
                ", ".join(each.id for each in transactions[1:]),
            )
        if transaction is None:
            return [ActivityRowModel.standalone_activity(activity) for activity in activities]

        operations = transaction.localized_operations
        activities = [
            activity
            for activity in activities
            if not any(activity_matches_operation(activity, operation) for operation in operations)
        ]

        if not operations and not activities:
            return [ActivityRowModel.standalone_transaction(transaction, self.pseudo_activity(transaction))]
        if len(operations) == 1 and transaction.value == "0" and not activities:
            return [ActivityRowModel.standalone_transaction(transaction, self.pseudo_activity(transaction))]
        if not operations and len(activities) == 1:
            return [
                ActivityRowModel.parent_transaction(transaction, is_swap=False, activities=activities),
                ActivityRowModel.child_activity(transaction, activities[0]),
            ]

        rows = [
            ActivityRowModel.parent_transaction(
                transaction,
                is_swap=is_swap(activities, operations, self.wallet_address),
                activities=activities,
            )
        ]
        rows.extend(self._child_transactions(transaction))
        rows.extend(ActivityRowModel.child_activity(transaction, activity) for activity in activities)
        return rows

    def _rows_for_single(self, item: Activity | TransactionInstance) -> list[ActivityRowModel]:
        if isinstance(item, Activity):
            return [ActivityRowModel.standalone_activity(item)]

        operations = item.localized_operations
        if len(operations) <= 1:
            return [ActivityRowModel.standalone_transaction(item, self.pseudo_activity(item))]

        rows = [
            ActivityRowModel.parent_transaction(
                item,
                is_swap=is_swap([], operations, self.wallet_address),
                activities=[],
            )
        ]
        rows.extend(self._child_transactions(item))
        return rows

    def _child_transactions(self, transaction: TransactionInstance) -> list[ActivityRowModel]:
        return [
            ActivityRowModel.child_transaction(
                transaction,
                operation,
                self.pseudo_activity(transaction, operation, index),
            )
            for index, operation in enumerate(transaction.localized_operations)
        ]

    def pseudo_activity(
        self,
        transaction: TransactionInstance,
        operation: LocalizedOperation | None = None,
        index: int = 0,
    ) -> Activity:
        """
        Presentation activity for a transaction or one of its operations.

        Parameters
        ----------
        transaction : TransactionInstance
            Owning transaction
        operation : LocalizedOperation | None
            Operation to present, None for the transaction itself
        index : int
            Position of ``operation`` in the transaction

        Returns
        -------
        Activity
            Activity with ``from``, ``to`` and ``amount`` card values

        """
        if operation is None:
            token = self._native_token(transaction.server)
            name = "sent" if same_address(transaction.from_address, self.wallet_address) else "received"
            sender, recipient, value = transaction.from_address, transaction.to_address, transaction.value
            log_index = -1
        else:
            token = self._operation_token(transaction.server, operation)
            name = self._operation_card_name(operation)
            sender, recipient, value = operation.from_address, operation.to_address, operation.value
            log_index = index

        card: AttributeMap = {
            "from": AttributeValue.address(sender),
            "to": AttributeValue.address(recipient),
            "amount": AttributeValue.uint(_parse_amount(value)),
        }
        token_values: AttributeMap = {
            "symbol": AttributeValue.string(token.symbol),
            "contractAddress": AttributeValue.address(token.contract_address),
        }
        state = ActivityState.PENDING if transaction.state == TransactionState.PENDING else ActivityState.COMPLETED

        return Activity(
            id=make_activity_id(transaction.server, token.contract_address, transaction.id, log_index, f"pseudo:{name}"),
            token=token,
            server=transaction.server,
            name=name,
            event_name="",
            block_number=transaction.block_number,
            transaction_id=transaction.id,
            transaction_index=transaction.transaction_index,
            log_index=max(log_index, 0),
            date=transaction.date,
            values=ActivityValues(token=token_values, card=card),
            state=state,
        )

    def _operation_card_name(self, operation: LocalizedOperation) -> str:
        if operation.operation_type == OperationType.ERC20_TOKEN_APPROVE:
            return "ownerApproved" if operation.is_send(self.wallet_address) else "approvalObtained"
        return "sent" if operation.is_send(self.wallet_address) else "received"

    def _native_token(self, server: str) -> TokenSnapshot:
        contract = self.settings.native_crypto_address
        token = self.token_store.token(contract, server)
        if token is not None:
            return TokenSnapshot.from_token(token)

        config = self.settings.servers.get(server)
        symbol = config.symbol if config is not None else "ETH"
        decimals = config.decimals if config is not None else 18
        return TokenSnapshot(
            primary_key=f"{contract.lower()}-{server}",
            contract_address=contract,
            server=server,
            symbol=symbol,
            name=symbol,
            decimals=decimals,
            token_type=TokenType.NATIVE_CRYPTOCURRENCY,
        )

    def _operation_token(self, server: str, operation: LocalizedOperation) -> TokenSnapshot:
        if operation.contract is None or operation.operation_type == OperationType.NATIVE_CURRENCY_TOKEN_TRANSFER:
            return self._native_token(server)

        token = self.token_store.token(operation.contract, server)
        if token is not None:
            return TokenSnapshot.from_token(token)

        symbol = operation.symbol or ""
        return TokenSnapshot(
            primary_key=f"{operation.contract.lower()}-{server}",
            contract_address=operation.contract,
            server=server,
            symbol=symbol,
            name=operation.name or symbol,
            decimals=operation.decimals,
            token_type=_TOKEN_TYPE_BY_OPERATION.get(operation.operation_type, TokenType.ERC20),
        )
