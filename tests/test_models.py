"""Tests for Pydantic data models."""

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from activity_timeline.core.models import (
    ActivitiesViewModel,
    Activity,
    ActivityRowModel,
    NativeViewType,
    RowKind,
    Token,
    TokenScriptDefinition,
    TokenSnapshot,
    TokenType,
    TransactionInstance,
    same_address,
)


def _activity(name: str, token_type: TokenType, block_number: int = 1, day: int = 1) -> Activity:
    token = TokenSnapshot(
        primary_key="0xabc-ethereum",
        contract_address="0xabc",
        server="ethereum",
        symbol="TKN",
        token_type=token_type,
    )
    return Activity(
        id=f"{name}-{block_number}",
        token=token,
        server="ethereum",
        name=name,
        event_name="Transfer",
        block_number=block_number,
        transaction_id="0x01",
        date=datetime(2024, 1, day, tzinfo=UTC),
    )


def test_token_primary_key():
    """Test token identity is lower-cased contract plus server."""
    token = Token(contract_address="0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48", server="ethereum", symbol="USDC")

    assert token.primary_key == "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48-ethereum"
    assert TokenSnapshot.from_token(token).primary_key == token.primary_key


def test_same_address():
    """Test address comparison ignores case and rejects missing values."""
    assert same_address("0xABC", "0xabc")
    assert not same_address("0xabc", None)
    assert not same_address("0xabc", "0xabd")


@pytest.mark.parametrize(
    ("name", "token_type", "expected"),
    [
        ("sent", TokenType.ERC20, NativeViewType.ERC20_SENT),
        ("received", TokenType.NATIVE_CRYPTOCURRENCY, NativeViewType.NATIVE_CRYPTO_RECEIVED),
        ("ownerApproved", TokenType.ERC20, NativeViewType.ERC20_OWNER_APPROVED),
        ("sent", TokenType.ERC1155, NativeViewType.ERC721_SENT),
        ("approvalObtained", TokenType.ERC721_FOR_TICKETS, NativeViewType.ERC721_APPROVAL_OBTAINED),
        ("sent", TokenType.ERC875, NativeViewType.NONE),
        ("aETHMinted", TokenType.NATIVE_CRYPTOCURRENCY, NativeViewType.NONE),
    ],
)
def test_native_view_type(name, token_type, expected):
    """Test view type derives from card name and token type."""
    assert _activity(name, token_type).native_view_type == expected


def test_activity_is_frozen():
    """Test activities cannot be mutated in place."""
    activity = _activity("sent", TokenType.ERC20)

    with pytest.raises(ValidationError):
        activity.name = "received"


def test_definition_matches_server():
    """Test definitions target a server, any server, or nothing."""
    assert TokenScriptDefinition(server="any").matches_server("polygon")
    assert TokenScriptDefinition(server="ethereum").matches_server("ethereum")
    assert not TokenScriptDefinition(server="ethereum").matches_server("polygon")
    assert not TokenScriptDefinition().matches_server("ethereum")


def test_row_block_number_prefers_transaction():
    """Test rows take block number and date from their transaction."""
    transaction = TransactionInstance(
        id="0x01",
        server="ethereum",
        block_number=42,
        from_address="0x1",
        to_address="0x2",
        date=datetime(2024, 1, 5, tzinfo=UTC),
    )
    row = ActivityRowModel.child_activity(transaction, _activity("sent", TokenType.ERC20, block_number=7))

    assert row.kind == RowKind.CHILD_ACTIVITY
    assert row.block_number == 42
    assert row.date == transaction.date


def test_view_model_sections_newest_day_first():
    """Test rows are grouped per day, newest day first, keeping row order."""
    rows = [
        ActivityRowModel.standalone_activity(_activity("sent", TokenType.ERC20, block_number=3, day=2)),
        ActivityRowModel.standalone_activity(_activity("received", TokenType.ERC20, block_number=2, day=2)),
        ActivityRowModel.standalone_activity(_activity("sent", TokenType.ERC20, block_number=1, day=1)),
    ]

    sections = ActivitiesViewModel(rows=rows).sections()

    assert [day.day for day, _ in sections] == [2, 1]
    assert [row.block_number for row in sections[0][1]] == [3, 2]
