"""Tests for attribute resolution."""

from datetime import UTC, datetime

from conftest import OTHER, USDC, WALLET, transfer_card

from activity_timeline.core.attributes import (
    AttributeResolver,
    ImplicitAttribute,
    TokenHolder,
    interpolate_filter,
    parse_implicit_attribute,
)
from activity_timeline.core.models import EventActivity, EventOrigin, EventParameter, TokenScriptCard
from activity_timeline.core.observable import Subscribable
from activity_timeline.core.values import AttributeKind, AttributeValue
from activity_timeline.stores import SimpleWalletSession


def _event(data: dict[str, AttributeValue]) -> EventActivity:
    return EventActivity(
        contract=USDC,
        token_contract=USDC,
        server="ethereum",
        event_name="Transfer",
        block_number=10,
        transaction_id="0x01",
        date=datetime(2024, 2, 1, tzinfo=UTC),
        data=data,
    )


def _resolver() -> AttributeResolver:
    return AttributeResolver({"ethereum": SimpleWalletSession("ethereum", WALLET)})


def test_parse_implicit_attribute():
    """Test implicit references are recognised, literals are not."""
    assert parse_implicit_attribute("${ownerAddress}") is ImplicitAttribute.OWNER_ADDRESS
    assert parse_implicit_attribute("${tokenId}") is ImplicitAttribute.TOKEN_ID
    assert parse_implicit_attribute("${balance}") is None
    assert parse_implicit_attribute(WALLET) is None


def test_interpolate_filter_owner_address():
    """Test owner-address filters interpolate the wallet address."""
    assert interpolate_filter(transfer_card(USDC, "received"), WALLET) == f"to={WALLET}"
    assert interpolate_filter(transfer_card(USDC, "sent"), WALLET) == f"from={WALLET}"


def test_interpolate_filter_unsupported():
    """Test filters on other attributes or literals are unsupported."""
    for value in ("${tokenId}", "${label}", "${symbol}", OTHER):
        card = TokenScriptCard(
            name="received",
            event_origin=EventOrigin(contract=USDC, event_name="Transfer", event_filter=("to", value)),
        )
        assert interpolate_filter(card, WALLET) is None


def test_token_attributes():
    """Test token attributes carry owner, symbol and contract."""
    attributes = _resolver().token_attributes(USDC, "ethereum", "USDC")

    assert attributes["ownerAddress"].address_value == WALLET
    assert attributes["symbol"].string_value == "USDC"
    assert attributes["contractAddress"].address_value == USDC
    assert "tokenId" not in attributes
    assert "label" not in attributes


def test_token_attributes_without_session():
    """Test owner address is omitted when the server has no session."""
    attributes = _resolver().token_attributes(USDC, "polygon", "USDC")

    assert "ownerAddress" not in attributes
    assert attributes["symbol"].string_value == "USDC"


def test_card_attributes_coerce_declared_parameters():
    """Test declared parameters are coerced and timestamp is implicit."""
    event = _event(
        {
            "from": AttributeValue.string(OTHER),
            "to": AttributeValue.string(WALLET),
            "amount": AttributeValue.string("2500000"),
            "memo": AttributeValue.string("rent"),
        }
    )

    attributes = _resolver().card_attributes(transfer_card(USDC, "received"), event)

    assert attributes["amount"].uint_value == 2500000
    assert attributes["to"].address_value == WALLET
    assert attributes["memo"].string_value == "rent"
    assert attributes["timestamp"].generalised_time_value == event.date


def test_card_attributes_event_data_overrides_implicit():
    """Test event data wins over implicit attributes of the same name."""
    custom = AttributeValue.string("block-time")
    event = _event({"timestamp": custom})

    attributes = _resolver().card_attributes(transfer_card(USDC, "received"), event)

    assert attributes["timestamp"] == custom


def test_card_attributes_unknown_type_keeps_raw_value():
    """Test parameters with unrecognised types keep their raw value."""
    card = TokenScriptCard(
        name="received",
        event_origin=EventOrigin(
            contract=USDC,
            event_name="Transfer",
            event_filter=("to", "${ownerAddress}"),
            parameters=[EventParameter(name="amount", type="fixed128x18")],
        ),
    )

    attributes = _resolver().card_attributes(card, _event({"amount": AttributeValue.string("12")}))

    assert attributes["amount"].kind == AttributeKind.STRING


def test_resolve_pending_value_notifies_once():
    """Test pending holder values are omitted and reported once when ready."""
    pending: Subscribable[AttributeValue] = Subscribable()
    holder = TokenHolder(
        tokens=[],
        contract_address=USDC,
        has_asset_definition=True,
        values={"label": pending, "rank": AttributeValue.uint(3)},
    )
    updates = []

    resolved = _resolver().resolve(holder, updates.append)

    assert resolved == {"rank": AttributeValue.uint(3)}
    assert updates == []

    pending.value = AttributeValue.string("Savings")
    pending.value = AttributeValue.string("Checking")

    assert updates == ["label"]
    assert pending.subscriber_count == 0


def test_resolve_already_published_value():
    """Test a subscribable that already holds a value resolves immediately."""
    ready = Subscribable(AttributeValue.string("Savings"))
    holder = TokenHolder(tokens=[], contract_address=USDC, has_asset_definition=True, values={"label": ready})
    updates = []

    resolved = _resolver().resolve(holder, updates.append)

    assert resolved["label"].string_value == "Savings"
    assert updates == []


def test_resolve_for_owner_replaces_earlier_subscription():
    """Test resolving again for the same owner keeps one watch per pending value."""
    pending: Subscribable[AttributeValue] = Subscribable()
    holder = TokenHolder(tokens=[], contract_address=USDC, has_asset_definition=True, values={"label": pending})
    resolver = _resolver()
    updates = []

    for _ in range(3):
        resolver.resolve(holder, updates.append, owner="activity-1")
    resolver.resolve(holder, updates.append, owner="activity-2")

    assert pending.subscriber_count == 2
    assert resolver.pending_owners == {"activity-1", "activity-2"}

    resolver.retain({"activity-2"})
    assert resolver.pending_owners == {"activity-2"}

    pending.value = AttributeValue.string("Savings")

    assert updates == ["label"]
    assert pending.subscriber_count == 0


def test_resolve_without_callback_leaves_value_unwatched():
    """Test pending values are not watched when no callback is given."""
    pending: Subscribable[AttributeValue] = Subscribable()
    holder = TokenHolder(tokens=[], contract_address=USDC, has_asset_definition=True, values={"label": pending})

    assert _resolver().resolve(holder, None) == {}
    assert pending.subscriber_count == 0
