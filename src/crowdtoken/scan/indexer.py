"""Async WhatsOnChain indexer client.

Absence of data from the indexer means "unknown", never "no token": every
failure surfaces as IndexerUnavailable and callers decide whether to retry.
"""
import logging
from dataclasses import dataclass

import httpx

from crowdtoken import config
from crowdtoken.errors import IndexerUnavailable

logger = logging.getLogger(__name__)

SATOSHIS_PER_BSV = 100_000_000
COMMON_HEADERS = {"Accept": "application/json"}


@dataclass(frozen=True)
class IndexedOutput:
    index: int
    satoshis: int
    script_hex: str
    script_asm: str
    script_type: str | None = None


@dataclass(frozen=True)
class IndexedTransaction:
    txid: str
    outputs: tuple[IndexedOutput, ...]
    block_height: int = 0
    confirmations: int = 0
    time: int = 0


@dataclass(frozen=True)
class UnspentOutput:
    txid: str
    index: int
    satoshis: int
    height: int = 0


def _to_satoshis(value) -> int:
    return round(float(value) * SATOSHIS_PER_BSV)


class WhatsOnChainIndexer:
    """
    Usage:
        async with WhatsOnChainIndexer("main") as woc:
            tx = await woc.fetch_transaction(txid)
            utxos = await woc.fetch_unspent_outputs(address)
    """

    def __init__(self, network: str = config.NETWORK, base_url: str = config.WOC_BASE_URL,
                 timeout: float = config.INDEXER_TIMEOUT_SECONDS, api_key: str | None = config.WOC_API_KEY,
                 client: httpx.AsyncClient | None = None):
        self.network = network
        self.base_url = f"{base_url.rstrip('/')}/{network}"
        headers = dict(COMMON_HEADERS)
        if api_key:
            headers["Authorization"] = api_key
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout), headers=headers)

    async def __aenter__(self) -> "WhatsOnChainIndexer":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def _get_json(self, path: str):
        url = f"{self.base_url}{path}"
        try:
            response = await self.client.get(url)
        except httpx.TimeoutException as e:
            raise IndexerUnavailable(f"timeout fetching {url}") from e
        except httpx.HTTPError as e:
            raise IndexerUnavailable(f"request to {url} failed: {e}") from e

        if response.status_code != 200:
            raise IndexerUnavailable(
                f"indexer returned {response.status_code} for {url}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise IndexerUnavailable(f"indexer returned invalid JSON for {url}") from e

    async def fetch_transaction(self, txid: str) -> IndexedTransaction:
        data = await self._get_json(f"/tx/{txid}")
        try:
            outputs = []
            for position, vout in enumerate(data.get("vout", [])):
                script = vout.get("scriptPubKey") or {}
                outputs.append(IndexedOutput(
                    index=vout.get("n", position),
                    satoshis=_to_satoshis(vout.get("value", 0)),
                    script_hex=script.get("hex", ""),
                    script_asm=script.get("asm", ""),
                    script_type=script.get("type"),
                ))
        except (AttributeError, TypeError, ValueError) as e:
            raise IndexerUnavailable(f"unexpected transaction payload for {txid}: {e}") from e

        logger.debug(f"Fetched {txid}: {len(outputs)} outputs")
        return IndexedTransaction(
            txid=data.get("txid", txid),
            outputs=tuple(outputs),
            block_height=data.get("blockheight") or 0,
            confirmations=data.get("confirmations") or 0,
            time=data.get("time") or data.get("blocktime") or 0,
        )

    async def fetch_unspent_outputs(self, address: str) -> list[UnspentOutput]:
        data = await self._get_json(f"/address/{address}/unspent")
        try:
            return [
                UnspentOutput(
                    txid=utxo["tx_hash"],
                    index=utxo["tx_pos"],
                    satoshis=utxo["value"],
                    height=utxo.get("height") or 0,
                )
                for utxo in data
            ]
        except (KeyError, TypeError) as e:
            raise IndexerUnavailable(f"unexpected unspent payload for {address}: {e}") from e

    async def fetch_history(self, address: str) -> list[str]:
        data = await self._get_json(f"/address/{address}/history")
        try:
            return [entry["tx_hash"] for entry in data]
        except (KeyError, TypeError) as e:
            raise IndexerUnavailable(f"unexpected history payload for {address}: {e}") from e
