"""Pytest configuration and shared fixtures for activity-timeline tests."""

from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

import pytest

from activity_timeline.core.models import (
    EventActivity,
    EventOrigin,
    EventParameter,
    LocalizedOperation,
    OperationType,
    Token,
    TokenScriptCard,
    TokenScriptDefinition,
    TokenType,
    TransactionInstance,
)
from activity_timeline.core.values import AttributeValue
from activity_timeline.data import ServerConfig, Settings
from activity_timeline.stores import TimelineDocument, TimelineFixture

WALLET = "0x1111111111111111111111111111111111111111"
OTHER = "0x2222222222222222222222222222222222222222"
USDC = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"
DAI = "0x6b175474e89094c44da98b954eedeac495271d0f"
NATIVE = "0x0000000000000000000000000000000000000000"

FIXTURE_PATH = Path(__file__).parent / "data" / "wallet.yaml"

TRANSFER_PARAMETERS = [
    EventParameter(name="from", type="address"),
    EventParameter(name="to", type="address"),
    EventParameter(name="amount", type="uint256"),
]


def transfer_card(contract: str, name: str) -> TokenScriptCard:
    """Transfer card filtered on the wallet as recipient or sender."""
    field = "to" if name == "received" else "from"
    return TokenScriptCard(
        name=name,
        event_origin=EventOrigin(
            contract=contract,
            event_name="Transfer",
            event_filter=(field, "${ownerAddress}"),
            parameters=TRANSFER_PARAMETERS,
        ),
        view=f"{name}.html",
        item_view=f"{name}-item.html",
    )


@pytest.fixture
def settings() -> Settings:
    """Settings with one enabled server and a short rate-limit window."""
    return Settings(
        native_crypto_address=NATIVE,
        reload_rate_limit_seconds=0.05,
        recent_events_limit=100,
        servers={"ethereum": ServerConfig(chain_id=1, symbol="ETH")},
        enabled_servers=["ethereum"],
    )


@pytest.fixture
def usdc() -> Token:
    return Token(contract_address=USDC, server="ethereum", symbol="USDC", name="USD Coin", decimals=6)


@pytest.fixture
def dai() -> Token:
    return Token(contract_address=DAI, server="ethereum", symbol="DAI", name="Dai Stablecoin")


@pytest.fixture
def eth() -> Token:
    return Token(
        contract_address=NATIVE,
        server="ethereum",
        symbol="ETH",
        name="Ether",
        token_type=TokenType.NATIVE_CRYPTOCURRENCY,
    )


@pytest.fixture
def make_event() -> Callable[..., EventActivity]:
    """Factory for transfer events of the wallet."""

    def factory(
        block_number: int,
        transaction_id: str,
        contract: str = USDC,
        name: str = "received",
        amount: int | str = 1000,
        log_index: int = 0,
        counterparty: str = OTHER,
    ) -> EventActivity:
        sender, recipient = (counterparty, WALLET) if name == "received" else (WALLET, counterparty)
        field = "to" if name == "received" else "from"
        return EventActivity(
            contract=contract,
            token_contract=contract,
            server="ethereum",
            event_name="Transfer",
            block_number=block_number,
            transaction_id=transaction_id,
            log_index=log_index,
            filter=f"{field}={WALLET}",
            date=datetime(2024, 1, 1, tzinfo=UTC).replace(day=1 + block_number % 28),
            data={
                "from": AttributeValue.string(sender),
                "to": AttributeValue.string(recipient),
                "amount": AttributeValue.string(str(amount)),
            },
        )

    return factory


@pytest.fixture
def make_transaction() -> Callable[..., TransactionInstance]:
    """Factory for wallet transactions."""

    def factory(
        block_number: int,
        transaction_id: str,
        operations: list[LocalizedOperation] | None = None,
        value: str = "0",
        sender: str = WALLET,
        recipient: str = OTHER,
    ) -> TransactionInstance:
        return TransactionInstance(
            id=transaction_id,
            server="ethereum",
            block_number=block_number,
            from_address=sender,
            to_address=recipient,
            value=value,
            date=datetime(2024, 1, 1, tzinfo=UTC).replace(day=1 + block_number % 28),
            localized_operations=operations or [],
        )

    return factory


def erc20_transfer(sender: str, recipient: str, value: str, contract: str = USDC, symbol: str = "USDC") -> LocalizedOperation:
    return LocalizedOperation(
        from_address=sender,
        to_address=recipient,
        contract=contract,
        operation_type=OperationType.ERC20_TOKEN_TRANSFER,
        value=value,
        symbol=symbol,
        decimals=6,
    )


@pytest.fixture
def world(settings: Settings, usdc: Token, dai: Token, eth: Token) -> TimelineFixture:
    """In-memory stores with USDC and DAI transfer cards and no events yet."""
    document = TimelineDocument(
        wallet=WALLET,
        tokens=[usdc, dai, eth],
    )
    fixture = TimelineFixture(document, settings)
    for contract in (USDC, DAI):
        fixture.card_provider.register(
            contract,
            TokenScriptDefinition(
                server="ethereum",
                activity_cards=[transfer_card(contract, "received"), transfer_card(contract, "sent")],
            ),
        )
    return fixture


@pytest.fixture
def service(world: TimelineFixture):
    """Activities service over ``world``, stopped after the test."""
    service = world.service()
    yield service
    service.stop()
