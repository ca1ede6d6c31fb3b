import logging
from typing import List, Optional

import httpx

from orb_ledger.core.entities.balance import VerifiedToken
from orb_ledger.core.exceptions import TokenListError
from orb_ledger.core.interfaces.datasource import ITokenListSource

logger = logging.getLogger(__name__)


class JupiterTokenListGateway(ITokenListSource):
    def __init__(
        self,
        url: str = "https://lite-api.jup.ag/tokens/v2/tag?query=verified",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def fetch_verified_tokens(self) -> List[VerifiedToken]:
        try:
            response = await self._client.get(self.url)
            response.raise_for_status()
            items = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise TokenListError(f"Failed to fetch verified token list: {e}") from e

        tokens = []
        for item in items if isinstance(items, list) else []:
            if not isinstance(item, dict) or not item.get("id"):
                continue
            if item.get("isVerified") is False:
                continue
            tokens.append(
                VerifiedToken(
                    mint=item["id"],
                    symbol=item.get("symbol") or "",
                    name=item.get("name") or "",
                    icon=item.get("icon"),
                    decimals=item.get("decimals") if item.get("decimals") is not None else 9,
                    tags=item.get("tags") or [],
                )
            )
        logger.info(f"Fetched {len(tokens)} verified tokens from Jupiter")
        return tokens
