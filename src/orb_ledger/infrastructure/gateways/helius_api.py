import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx

from orb_ledger.core.entities.transaction import WRAPPED_SOL_MINT, RawTransaction, lamports_to_sol
from orb_ledger.core.exceptions import TransactionSourceError
from orb_ledger.core.interfaces.datasource import ITransactionSource

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


class HeliusGateway(ITransactionSource):
    """
    Implementation of ITransactionSource for the Helius enhanced-transactions
    REST API and the Helius JSON-RPC endpoint.

    One httpx.AsyncClient is shared by every call; pass `client` to inject a
    preconfigured one (tests mount an httpx.MockTransport).
    """

    def __init__(
        self,
        api_key: str,
        rest_url: str = "https://api-mainnet.helius-rpc.com",
        rpc_url: str = "https://mainnet.helius-rpc.com",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.rest_url = rest_url.rstrip("/")
        self.rpc_url = rpc_url
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        logger.info(f"HeliusGateway initialized. REST: {self.rest_url}")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _get(self, url: str, params: Dict[str, Any]) -> Any:
        try:
            response = await self._client.get(url, params=params)
        except httpx.HTTPError as e:
            raise TransactionSourceError(f"Request to {url} failed: {e}") from e
        if response.status_code != 200:
            raise TransactionSourceError(
                f"Helius returned HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise TransactionSourceError(f"Helius returned malformed JSON: {e}") from e

    async def _rpc(self, method: str, params: Any) -> Any:
        payload = {"jsonrpc": "2.0", "id": "orb-ledger", "method": method, "params": params}
        try:
            response = await self._client.post(self.rpc_url, params={"api-key": self.api_key}, json=payload)
        except httpx.HTTPError as e:
            raise TransactionSourceError(f"RPC {method} failed: {e}") from e
        if response.status_code != 200:
            raise TransactionSourceError(
                f"RPC {method} returned HTTP {response.status_code}", status_code=response.status_code
            )
        try:
            body = response.json()
        except ValueError as e:
            raise TransactionSourceError(f"RPC {method} returned malformed JSON: {e}") from e
        if body.get("error"):
            raise TransactionSourceError(f"RPC {method} error: {body['error']}")
        return body.get("result")

    async def fetch_transactions(
        self,
        address: str,
        before: Optional[str] = None,
        limit: int = 100,
        type: Optional[str] = None,
        source: Optional[str] = None,
    ) -> List[RawTransaction]:
        params: Dict[str, Any] = {"api-key": self.api_key}
        if before:
            params["before"] = before
        if 1 <= limit <= MAX_PAGE_SIZE:
            params["limit"] = limit
        if type:
            params["type"] = type
        if source:
            params["source"] = source

        url = f"{self.rest_url}/v0/addresses/{address}/transactions"
        data = await self._get(url, params)
        if not isinstance(data, list):
            raise TransactionSourceError("Unexpected transactions payload, expected a list")

        try:
            return [RawTransaction.model_validate(item) for item in data]
        except ValueError as e:
            raise TransactionSourceError(f"Failed to decode transactions: {e}") from e

    async def fetch_current_balances(self, address: str) -> Dict[str, Decimal]:
        """
        Current fungible holdings via searchAssets. Native SOL is reported
        under the wrapped SOL mint.
        """
        params = {
            "ownerAddress": address,
            "tokenType": "fungible",
            "page": 1,
            "limit": 1000,
            "options": {"showNativeBalance": True, "showZeroBalance": False},
        }
        result = await self._rpc("searchAssets", params) or {}

        balances: Dict[str, Decimal] = {}
        native = result.get("nativeBalance") or {}
        if native.get("lamports") is not None:
            balances[WRAPPED_SOL_MINT] = lamports_to_sol(native["lamports"])

        for item in result.get("items") or []:
            info = item.get("token_info") or {}
            mint = item.get("id")
            if not mint or info.get("balance") is None:
                continue
            decimals = info.get("decimals") or 0
            balances[mint] = Decimal(info["balance"]).scaleb(-decimals)

        logger.info(f"Fetched {len(balances)} current balances for {address}")
        return balances

    async def fetch_first_transaction_timestamp(self, address: str) -> Optional[int]:
        params = [address, {"transactionDetails": "signatures", "sortOrder": "asc", "limit": 1}]
        result = await self._rpc("getTransactionsForAddress", params) or {}
        data = result.get("data") or []
        if not data:
            return None
        return data[0].get("blockTime")
