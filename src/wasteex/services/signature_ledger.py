"""Signature ledger client: mirrors contract signature events to an external append-only chain.

The ledger is advisory. Contract state never depends on it; see
``ledger_mirror`` for how calls are scheduled and retried.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from wasteex.app.config import get_settings
from wasteex.domain.errors import LedgerError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerReceiptData:
    transaction_hash: str
    block_number: Optional[int] = None
    contract_address: Optional[str] = None
    gas_used: Optional[int] = None


@dataclass(frozen=True)
class SignatureStatus:
    seller_signed: bool
    buyer_signed: bool


class SignatureLedger(Protocol):
    enabled: bool

    async def record_signature(self, contract_id: str, party_role: str) -> LedgerReceiptData: ...

    async def get_signature_status(self, contract_id: str) -> SignatureStatus: ...


class NullSignatureLedger:
    """Used when no ledger is configured. Mirroring is skipped."""

    enabled = False

    async def record_signature(self, contract_id: str, party_role: str) -> LedgerReceiptData:
        raise LedgerError("signature ledger is not configured")

    async def get_signature_status(self, contract_id: str) -> SignatureStatus:
        raise LedgerError("signature ledger is not configured")


class HttpSignatureLedger:
    """Signature ledger reached over HTTP (JSON API with bearer token)."""

    enabled = True

    def __init__(self, base_url: str, api_token: str = "", timeout: float = 10.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_token = api_token
        self._timeout = timeout

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self._api_token:
            headers["Authorization"] = f"Bearer {self._api_token}"
        return headers

    async def _request(self, method: str, path: str, json: Optional[dict] = None) -> dict:
        url = f"{self._base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.request(method, url, json=json, headers=self._headers())
                resp.raise_for_status()
                return resp.json()
        except httpx.HTTPStatusError as exc:
            raise LedgerError(
                f"ledger returned HTTP {exc.response.status_code} for {method} {path}"
            ) from exc
        except httpx.RequestError as exc:
            raise LedgerError(f"ledger request {method} {path} failed: {exc}") from exc

    async def record_signature(self, contract_id: str, party_role: str) -> LedgerReceiptData:
        data = await self._request(
            "POST",
            f"/contracts/{contract_id}/signatures",
            json={"contractId": contract_id, "party": party_role},
        )
        tx_hash = data.get("transactionHash")
        if not tx_hash:
            raise LedgerError(f"ledger response for contract {contract_id} has no transactionHash")
        return LedgerReceiptData(
            transaction_hash=tx_hash,
            block_number=data.get("blockNumber"),
            contract_address=data.get("contractAddress"),
            gas_used=data.get("gasUsed"),
        )

    async def get_signature_status(self, contract_id: str) -> SignatureStatus:
        data = await self._request("GET", f"/contracts/{contract_id}/signatures")
        return SignatureStatus(
            seller_signed=bool(data.get("sellerSigned")),
            buyer_signed=bool(data.get("buyerSigned")),
        )


def get_signature_ledger() -> SignatureLedger:
    """Return the configured ledger, or the null ledger when ledger_url is blank."""
    settings = get_settings()
    if not settings.ledger_url:
        return NullSignatureLedger()
    return HttpSignatureLedger(
        settings.ledger_url,
        api_token=settings.ledger_api_token,
        timeout=settings.ledger_timeout_seconds,
    )
