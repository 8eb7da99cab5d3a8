"""Tests for reconciliation and timeline merging."""

from datetime import UTC, datetime

import pytest
from conftest import DAI, NATIVE, OTHER, USDC, WALLET, erc20_transfer

from activity_timeline.core.merger import TimelineMerger, activity_matches_operation, is_swap, sort_rows
from activity_timeline.core.models import (
    Activity,
    ActivityState,
    ActivityValues,
    LocalizedOperation,
    OperationType,
    RowKind,
    TokenSnapshot,
    TokenType,
    TransactionState,
)
from activity_timeline.core.values import AttributeValue


def _activity(
    block_number: int,
    transaction_id: str,
    name: str = "sent",
    amount: int = 100,
    symbol: str = "USDC",
    contract: str = USDC,
    token_type: TokenType = TokenType.ERC20,
    log_index: int = 0,
) -> Activity:
    sender, recipient = (WALLET, OTHER) if name == "sent" else (OTHER, WALLET)
    token = TokenSnapshot(
        primary_key=f"{contract}-ethereum",
        contract_address=contract,
        server="ethereum",
        symbol=symbol,
        token_type=token_type,
    )
    return Activity(
        id=f"{transaction_id}-{name}-{log_index}",
        token=token,
        server="ethereum",
        name=name,
        event_name="Transfer",
        block_number=block_number,
        transaction_id=transaction_id,
        log_index=log_index,
        date=datetime(2024, 1, 1, tzinfo=UTC),
        values=ActivityValues(
            token={"symbol": AttributeValue.string(symbol)},
            card={
                "from": AttributeValue.address(sender),
                "to": AttributeValue.address(recipient),
                "amount": AttributeValue.uint(amount),
            },
        ),
    )


@pytest.fixture
def merger(world, settings) -> TimelineMerger:
    return TimelineMerger(world.token_store, WALLET, settings)


def _kinds(rows) -> list[RowKind]:
    return [row.kind for row in rows]


def test_duplicate_activity_is_removed(merger, make_transaction):
    """Test an activity duplicating the transaction's only operation collapses into it."""
    transaction = make_transaction(5, "0x05", [erc20_transfer(WALLET, OTHER, "100")])

    rows = merger.merge([_activity(5, "0x05")], [transaction])

    assert _kinds(rows) == [RowKind.STANDALONE_TRANSACTION]
    assert rows[0].transaction == transaction
    assert rows[0].activity.values.card["amount"].uint_value == 100


def test_mismatched_amount_is_not_deduplicated(merger, make_transaction):
    """Test transfers with different amounts stay separate rows."""
    transaction = make_transaction(5, "0x05", [erc20_transfer(WALLET, OTHER, "100")])
    activity = _activity(5, "0x05", amount=99)

    rows = merger.merge([activity], [transaction])

    assert _kinds(rows) == [RowKind.PARENT_TRANSACTION, RowKind.CHILD_TRANSACTION, RowKind.CHILD_ACTIVITY]
    assert rows[0].activities == [activity]
    assert rows[2].activity == activity


def test_swap_transaction(merger, make_transaction):
    """Test a transaction sending one token and receiving another is a swap."""
    transaction = make_transaction(
        7,
        "0x07",
        [
            erc20_transfer(WALLET, OTHER, "100"),
            erc20_transfer(OTHER, WALLET, "50", contract=DAI, symbol="DAI"),
        ],
    )

    rows = merger.merge([], [transaction])

    assert _kinds(rows) == [RowKind.PARENT_TRANSACTION, RowKind.CHILD_TRANSACTION, RowKind.CHILD_TRANSACTION]
    assert rows[0].is_swap
    assert [row.activity.name for row in rows[1:]] == ["sent", "received"]
    assert [row.operation.symbol for row in rows[1:]] == ["USDC", "DAI"]


def test_one_directional_group_is_not_swap(merger, make_transaction):
    """Test two outgoing transfers are grouped but not a swap."""
    transaction = make_transaction(
        7,
        "0x07",
        [erc20_transfer(WALLET, OTHER, "1"), erc20_transfer(WALLET, OTHER, "2", contract=DAI, symbol="DAI")],
    )

    rows = merger.merge([], [transaction])

    assert rows[0].kind == RowKind.PARENT_TRANSACTION
    assert not rows[0].is_swap


def test_standalone_transaction_without_activities(merger, make_transaction):
    """Test a lone native transfer is a standalone transaction with a pseudo-activity."""
    transaction = make_transaction(9, "0x09", value="1000", sender=OTHER, recipient=WALLET)

    rows = merger.merge([], [transaction])

    assert _kinds(rows) == [RowKind.STANDALONE_TRANSACTION]
    pseudo = rows[0].activity
    assert pseudo.name == "received"
    assert pseudo.token.symbol == "ETH"
    assert pseudo.values.card["amount"].uint_value == 1000
    assert pseudo.values.token["contractAddress"].address_value == NATIVE


def test_transaction_without_operations_and_one_activity(merger, make_transaction):
    """Test a transaction with no operations groups its single activity."""
    transaction = make_transaction(11, "0x0b", value="0")
    activity = _activity(11, "0x0b", name="received", symbol="DAI", contract=DAI)

    rows = merger.merge([activity], [transaction])

    assert _kinds(rows) == [RowKind.PARENT_TRANSACTION, RowKind.CHILD_ACTIVITY]
    assert not rows[0].is_swap
    assert rows[1].activity == activity


def test_valued_transaction_with_one_operation_is_grouped(merger, make_transaction):
    """Test a single operation only collapses when the transaction carries no value."""
    transaction = make_transaction(5, "0x05", [erc20_transfer(WALLET, OTHER, "100")], value="7")

    rows = merger.merge([_activity(5, "0x05")], [transaction])

    assert _kinds(rows) == [RowKind.PARENT_TRANSACTION, RowKind.CHILD_TRANSACTION]
    assert rows[0].activities == []


def test_group_with_unmatched_activities(merger, make_transaction):
    """Test remaining activities follow the operation rows under the parent."""
    transaction = make_transaction(
        6,
        "0x06",
        [erc20_transfer(WALLET, OTHER, "100"), erc20_transfer(OTHER, WALLET, "3", contract=DAI, symbol="DAI")],
    )
    duplicate = _activity(6, "0x06")
    approval = _activity(6, "0x06", name="ownerApproved", log_index=4)

    rows = merger.merge([duplicate, approval], [transaction])

    assert _kinds(rows) == [
        RowKind.PARENT_TRANSACTION,
        RowKind.CHILD_TRANSACTION,
        RowKind.CHILD_TRANSACTION,
        RowKind.CHILD_ACTIVITY,
    ]
    assert rows[0].activities == [approval]
    assert rows[3].activity == approval


def test_activities_without_transaction_are_standalone(merger):
    """Test activities sharing a block without a transaction stay standalone."""
    first = _activity(3, "0x03", log_index=0)
    second = _activity(3, "0x03", name="received", log_index=1)

    rows = merger.merge([first, second], [])

    assert _kinds(rows) == [RowKind.STANDALONE_ACTIVITY, RowKind.STANDALONE_ACTIVITY]
    assert [row.activity for row in rows] == [first, second]


def test_second_transaction_in_block_is_logged(merger, make_transaction, caplog):
    """Test a block with several transactions keeps the first and logs the rest."""
    first = make_transaction(6, "0x06a", value="10", sender=OTHER, recipient=WALLET)
    second = make_transaction(6, "0x06b", value="20", sender=OTHER, recipient=WALLET)

    with caplog.at_level("DEBUG", logger="activity_timeline.core.merger"):
        rows = merger.merge([], [first, second])

    assert _kinds(rows) == [RowKind.STANDALONE_TRANSACTION]
    assert rows[0].transaction.id == "0x06a"
    assert "dropping 0x06b" in caplog.text


def test_merge_is_idempotent(merger, make_transaction):
    """Test merging the same inputs twice produces identical rows."""
    activities = [_activity(5, "0x05"), _activity(2, "0x02", name="received")]
    transactions = [
        make_transaction(5, "0x05", [erc20_transfer(WALLET, OTHER, "100")]),
        make_transaction(8, "0x08", value="10"),
    ]

    assert merger.merge(activities, transactions) == merger.merge(activities, transactions)


def test_sort_rows_newest_first(merger, make_transaction):
    """Test rows sort by block descending with children after their parent."""
    activities = [_activity(2, "0x02", name="received")]
    transactions = [
        make_transaction(8, "0x08", [erc20_transfer(WALLET, OTHER, "1"), erc20_transfer(OTHER, WALLET, "2")]),
        make_transaction(4, "0x04", value="10"),
    ]

    rows = sort_rows(merger.merge(activities, transactions))

    assert [row.block_number for row in rows] == [8, 8, 8, 4, 2]
    assert rows[0].kind == RowKind.PARENT_TRANSACTION


def test_pseudo_activity_for_pending_transaction(merger, make_transaction):
    """Test pseudo-activities of pending transactions are pending."""
    transaction = make_transaction(9, "0x09", value="5").model_copy(update={"state": TransactionState.PENDING})

    pseudo = merger.pseudo_activity(transaction)

    assert pseudo.name == "sent"
    assert pseudo.state == ActivityState.PENDING


def test_pseudo_activity_for_approval(merger, make_transaction):
    """Test approval operations name their pseudo-activity by direction."""
    approve = erc20_transfer(WALLET, OTHER, "0").model_copy(update={"operation_type": OperationType.ERC20_TOKEN_APPROVE})
    obtained = erc20_transfer(OTHER, WALLET, "0").model_copy(update={"operation_type": OperationType.ERC20_TOKEN_APPROVE})
    transaction = make_transaction(9, "0x09", [approve, obtained])

    assert merger.pseudo_activity(transaction, approve, 0).name == "ownerApproved"
    assert merger.pseudo_activity(transaction, obtained, 1).name == "approvalObtained"
    assert merger.pseudo_activity(transaction, approve, 0).token.symbol == "USDC"


def test_pseudo_activity_ids_are_distinct_per_operation(merger, make_transaction):
    """Test operations of one transaction get distinct pseudo ids."""
    operations = [erc20_transfer(WALLET, OTHER, "1"), erc20_transfer(WALLET, OTHER, "1")]
    transaction = make_transaction(9, "0x09", operations)

    ids = {merger.pseudo_activity(transaction, operation, index).id for index, operation in enumerate(operations)}
    ids.add(merger.pseudo_activity(transaction).id)

    assert len(ids) == 3


def test_erc875_operations_never_match():
    """Test ERC-875 transfers are never treated as duplicates."""
    activity = _activity(1, "0x01", token_type=TokenType.ERC875)
    operation = erc20_transfer(WALLET, OTHER, "100").model_copy(update={"operation_type": OperationType.ERC875_TOKEN_TRANSFER})

    assert not activity_matches_operation(activity, operation)


def test_native_operation_matches_by_symbol_and_view():
    """Test native transfers match native activities with the same symbol."""
    activity = _activity(1, "0x01", symbol="ETH", contract=NATIVE, token_type=TokenType.NATIVE_CRYPTOCURRENCY)
    operation = LocalizedOperation(
        from_address=WALLET,
        to_address=OTHER,
        operation_type=OperationType.NATIVE_CURRENCY_TOKEN_TRANSFER,
        value="1",
        symbol="ETH",
    )

    assert activity_matches_operation(activity, operation)
    assert not activity_matches_operation(activity, operation.model_copy(update={"symbol": "MATIC"}))


def test_is_swap_counts_activities_and_operations():
    """Test a send activity with a receiving operation is a swap."""
    assert is_swap([_activity(1, "0x01")], [erc20_transfer(OTHER, WALLET, "1")], WALLET)
    assert not is_swap([_activity(1, "0x01")], [], WALLET)
