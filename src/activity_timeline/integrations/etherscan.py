"""Etherscan-compatible explorer client and transaction store."""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import UTC, datetime
from typing import Any

import httpx

from activity_timeline.core.filters import TransactionsFilterStrategy
from activity_timeline.core.models import (
    LocalizedOperation,
    OperationType,
    TransactionInstance,
    TransactionState,
)
from activity_timeline.core.observable import Signal
from activity_timeline.data.loader import Settings

logger = logging.getLogger(__name__)

# Explorers answer status "0" with this message for an empty history
_NO_RESULTS_MESSAGES = ("No transactions found", "No records found")


class EtherscanAPIError(Exception):
    """Exception raised for explorer API errors."""


class EtherscanClient:
    """
    Client for an Etherscan-compatible explorer API.

    Parameters
    ----------
    server : str
        Server the explorer indexes
    base_url : str
        API endpoint, e.g. 'https://api.etherscan.io/api'
    api_key : str | None
        Explorer API key
    timeout : float
        Request timeout in seconds
    transport : httpx.BaseTransport | None
        Custom transport, used by tests

    """

    def __init__(
        self,
        server: str,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.server = server
        self.base_url = base_url
        self.api_key = api_key
        self.client = httpx.Client(timeout=timeout, transport=transport)

    def _request(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        """
        Run an account module query.

        Raises
        ------
        EtherscanAPIError
            If the request fails or the API reports an error

        """
        query = {"module": "account", "sort": "desc", **params}
        if self.api_key:
            query["apikey"] = self.api_key

        try:
            response = self.client.get(self.base_url, params=query)
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException as e:
            msg = f"Request timeout: {e}"
            raise EtherscanAPIError(msg) from e
        except httpx.HTTPStatusError as e:
            msg = f"HTTP error {e.response.status_code}: {e}"
            raise EtherscanAPIError(msg) from e
        except httpx.HTTPError as e:
            msg = f"HTTP request failed: {e}"
            raise EtherscanAPIError(msg) from e
        except ValueError as e:
            msg = f"Invalid JSON response: {e}"
            raise EtherscanAPIError(msg) from e

        if str(payload.get("status")) == "1":
            return list(payload.get("result") or [])
        message = payload.get("message", "")
        if message in _NO_RESULTS_MESSAGES:
            return []
        msg = f"{self.server} explorer error: {message} {payload.get('result', '')}".strip()
        raise EtherscanAPIError(msg)

    def get_normal_transactions(self, address: str, start_block: int = 0) -> list[dict[str, Any]]:
        """Raw ``txlist`` entries of ``address`` from ``start_block`` on."""
        return self._request({"action": "txlist", "address": address, "startblock": start_block})

    def get_token_transfers(self, address: str, start_block: int = 0) -> list[dict[str, Any]]:
        """Raw ``tokentx`` (ERC-20) entries of ``address``."""
        return self._request({"action": "tokentx", "address": address, "startblock": start_block})

    def get_nft_transfers(self, address: str, start_block: int = 0) -> list[dict[str, Any]]:
        """Raw ``tokennfttx`` (ERC-721) entries of ``address``."""
        return self._request({"action": "tokennfttx", "address": address, "startblock": start_block})

    def get_transactions(self, address: str, start_block: int = 0) -> list[TransactionInstance]:
        """
        Fetch the wallet's transactions with their token transfers.

        Token transfers are attached as localized operations to the
        transaction sharing their hash. Transfers into the wallet from
        transactions it did not send become transactions of their own.

        Parameters
        ----------
        address : str
            Wallet address
        start_block : int
            First block to include

        Returns
        -------
        list[TransactionInstance]
            Transactions, newest first

        Raises
        ------
        EtherscanAPIError
            If any of the underlying requests fails

        """
        transactions: dict[str, TransactionInstance] = {}
        for item in self.get_normal_transactions(address, start_block):
            transaction = self._parse_transaction(item)
            transactions[transaction.id.lower()] = transaction

        transfers = [
            (item, OperationType.ERC20_TOKEN_TRANSFER) for item in self.get_token_transfers(address, start_block)
        ]
        transfers += [
            (item, OperationType.ERC721_TOKEN_TRANSFER) for item in self.get_nft_transfers(address, start_block)
        ]
        for item, operation_type in transfers:
            key = item.get("hash", "").lower()
            transaction = transactions.get(key)
            if transaction is None:
                transaction = self._parse_transaction(item, value="0")
                transactions[key] = transaction
            transaction.localized_operations.append(self._parse_operation(item, operation_type))

        return sorted(transactions.values(), key=lambda transaction: transaction.block_number, reverse=True)

    def _parse_transaction(self, item: dict[str, Any], value: str | None = None) -> TransactionInstance:
        state = TransactionState.FAILED if item.get("isError") == "1" else TransactionState.COMPLETED
        return TransactionInstance(
            id=item["hash"],
            server=self.server,
            block_number=int(item["blockNumber"]),
            transaction_index=int(item.get("transactionIndex") or 0),
            from_address=item.get("from", ""),
            to_address=item.get("to", ""),
            value=value if value is not None else str(item.get("value", "0")),
            date=datetime.fromtimestamp(int(item["timeStamp"]), tz=UTC),
            state=state,
            gas=str(item.get("gas", "0")),
            gas_price=str(item.get("gasPrice", "0")),
            gas_used=str(item.get("gasUsed", "0")),
            nonce=str(item.get("nonce", "0")),
        )

    @staticmethod
    def _parse_operation(item: dict[str, Any], operation_type: OperationType) -> LocalizedOperation:
        is_nft = operation_type == OperationType.ERC721_TOKEN_TRANSFER
        return LocalizedOperation(
            from_address=item.get("from", ""),
            to_address=item.get("to", ""),
            contract=item.get("contractAddress"),
            operation_type=operation_type,
            value="1" if is_nft else str(item.get("value", "0")),
            symbol=item.get("tokenSymbol"),
            name=item.get("tokenName"),
            decimals=int(item.get("tokenDecimal") or 0),
            token_id=str(item.get("tokenID", "")),
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self) -> "EtherscanClient":
        """Context manager entry."""
        return self

    def __exit__(
        self,
        exc_type: type | None,
        exc_val: Exception | None,
        exc_tb: object | None,
    ) -> None:
        """Context manager exit."""
        self.close()


class EtherscanTransactionStore:
    """
    Transaction store reading wallet history from explorers.

    Fetches run on a thread pool; a failing explorer fails the whole fetch.

    Parameters
    ----------
    clients : dict[str, EtherscanClient]
        Explorer clients by server name
    wallet_address : str
        Wallet whose history is fetched
    max_workers : int
        Maximum concurrent fetches

    """

    def __init__(self, clients: dict[str, EtherscanClient], wallet_address: str, max_workers: int = 4) -> None:
        self.clients = clients
        self.wallet_address = wallet_address
        self.changed = Signal()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="etherscan")

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        wallet_address: str,
        api_key: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> "EtherscanTransactionStore":
        """Build a store with one client per enabled server that has an explorer."""
        clients = {}
        for name in settings.enabled_servers:
            config = settings.server(name)
            if config.explorer_api is None:
                logger.debug("No explorer configured for %s", name)
                continue
            clients[name] = EtherscanClient(name, config.explorer_api, api_key=api_key, transport=transport)
        return cls(clients, wallet_address)

    def fetch_transactions(
        self,
        filter_strategy: TransactionsFilterStrategy,
        servers: list[str],
        oldest_block_number: int | None,
    ) -> Future:
        return self._executor.submit(self._fetch, filter_strategy, list(servers), oldest_block_number)

    def _fetch(
        self,
        filter_strategy: TransactionsFilterStrategy,
        servers: list[str],
        oldest_block_number: int | None,
    ) -> list[TransactionInstance]:
        results: list[TransactionInstance] = []
        for server in servers:
            client = self.clients.get(server)
            if client is None:
                continue
            transactions = client.get_transactions(self.wallet_address, start_block=oldest_block_number or 0)
            results.extend(transaction for transaction in transactions if filter_strategy.matches(transaction))
        logger.debug("Fetched %d transactions from %d servers", len(results), len(servers))
        return sorted(results, key=lambda transaction: transaction.block_number, reverse=True)

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
        for client in self.clients.values():
            client.close()
