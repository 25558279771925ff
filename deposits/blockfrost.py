"""
Blockfrost indexer client: address UTxOs, transaction senders and policy assets.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional

import aiohttp

from config.config import HTTP_TIMEOUT, MAX_POLICY_PAGES, MAX_UTXO_PAGES
from engine.naming import sequence_from_asset
from errors.exceptions import SourceError
from log_utils import get_logger

logger = get_logger(__name__)

PAGE_SIZE = 100


class BlockfrostClient:
    def __init__(self, base_url: str, project_id: str, timeout: float = HTTP_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.project_id = project_id
        self.timeout = timeout

    def _session(self):
        return aiohttp.ClientSession(
            headers={"project_id": self.project_id},
            timeout=aiohttp.ClientTimeout(total=self.timeout),
        )

    async def _get(self, session, path: str, params: Optional[Dict[str, Any]] = None,
                   missing_ok: bool = False) -> Any:
        url = f"{self.base_url}{path}"
        try:
            async with session.get(url, params=params) as resp:
                status = resp.status
                body = await resp.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SourceError(f"Blockfrost request failed for {url}: {str(e) or type(e).__name__}")

        # Blockfrost answers 404 for addresses and policies it has never seen
        if status == 404 and missing_ok:
            return []

        try:
            data = json.loads(body)
        except ValueError:
            raise SourceError(
                f"Failed to parse Blockfrost response for {url} (status={status}): raw={body[:500]}"
            )
        if status >= 400:
            raise SourceError(f"Unexpected Blockfrost response for {url} (status={status}): {data}")
        return data

    async def _get_pages(self, session, path: str, max_pages: int) -> List[Any]:
        """Every page of a listing, or SourceError; never a truncated list"""
        items: List[Any] = []
        for page in range(1, max_pages + 1):
            data = await self._get(session, path, params={"page": page}, missing_ok=True)
            if not isinstance(data, list):
                raise SourceError(
                    f"Unexpected Blockfrost response for {self.base_url}{path} (page={page}): {data}"
                )
            items.extend(data)
            if len(data) < PAGE_SIZE:
                return items
        raise SourceError(
            f"Blockfrost listing {self.base_url}{path} exceeds {max_pages} pages; refusing a partial result"
        )

    async def address_utxos(self, address: str, max_pages: int = MAX_UTXO_PAGES) -> List[Dict[str, Any]]:
        async with self._session() as session:
            return await self._get_pages(session, f"/addresses/{address}/utxos", max_pages)

    async def tx_sender(self, tx_hash: str) -> str:
        """Address owning the first input of ``tx_hash``"""
        async with self._session() as session:
            data = await self._get(session, f"/txs/{tx_hash}/utxos")
        try:
            return data["inputs"][0]["address"]
        except (KeyError, IndexError, TypeError):
            raise SourceError(f"No inputs found for transaction {tx_hash}")

    async def policy_assets(self, policy_id: str, max_pages: int = MAX_POLICY_PAGES) -> List[Dict[str, Any]]:
        async with self._session() as session:
            return await self._get_pages(session, f"/assets/policy/{policy_id}", max_pages)


class BlockfrostAssetRegistry:
    """Highest sequence already minted under the policy, per the indexer"""

    def __init__(self, client: BlockfrostClient, policy_id: str, prefix: str):
        self.client = client
        self.policy_id = policy_id
        self.prefix = prefix

    async def max_sequence(self) -> int:
        assets = await self.client.policy_assets(self.policy_id)
        highest = 0
        for entry in assets:
            asset = entry.get("asset", "") if isinstance(entry, dict) else ""
            sequence = sequence_from_asset(asset, self.policy_id, self.prefix)
            if sequence is not None and sequence > highest:
                highest = sequence
        logger.info(f"Highest on-chain sequence under policy {self.policy_id}: {highest}")
        return highest
