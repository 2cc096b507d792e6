from __future__ import annotations

import time
import uuid
from datetime import datetime, timezone
from typing import Callable

from .errors import AlreadyMinted, RegistryConflict
from .models import ContractRegistryEntry, TrustNFT, TrustTier, WalletReputation
from .taxonomy import clamp_score, level_from_score


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


_SEED_ENTRIES = (
    {
        "address": "0x7D1AfA7B718fb893dB30A3aBc0Cfc608AaCfeBB0",
        "name": "MATIC Token",
        "verified_by": "Polygon Foundation",
        "added_date": "2023-01-15T00:00:00+00:00",
        "last_updated": "2024-11-01T00:00:00+00:00",
    },
    {
        "address": "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174",
        "name": "USD Coin (PoS)",
        "verified_by": "Circle",
        "added_date": "2023-02-20T00:00:00+00:00",
        "last_updated": "2024-10-15T00:00:00+00:00",
    },
    {
        "address": "0x8f3Cf7ad23Cd3CaDbD9735AFf958023239c6A063",
        "name": "DAI Stablecoin",
        "verified_by": "MakerDAO",
        "added_date": "2023-03-10T00:00:00+00:00",
        "last_updated": "2024-09-20T00:00:00+00:00",
    },
)


class ContractRegistry:
    """Community list of contracts with a review status, keyed by lowercased address."""

    def __init__(self, seed: bool = True):
        self._entries: dict[str, ContractRegistryEntry] = {}
        if seed:
            for item in _SEED_ENTRIES:
                entry = ContractRegistryEntry(id=str(uuid.uuid4()), chain="polygon", status="safe", **item)
                self._entries[entry.address.lower()] = entry

    def list_entries(self) -> list[ContractRegistryEntry]:
        return sorted(self._entries.values(), key=lambda e: e.last_updated, reverse=True)

    def get_by_address(self, address: str) -> ContractRegistryEntry | None:
        return self._entries.get(address.lower())

    def add(
        self,
        address: str,
        chain: str = "polygon",
        name: str | None = None,
        status: str = "unverified",
    ) -> ContractRegistryEntry:
        key = address.lower()
        if key in self._entries:
            raise RegistryConflict(f"Contract {address} already in registry")
        now = _now_iso()
        entry = ContractRegistryEntry(
            id=str(uuid.uuid4()),
            address=address,
            chain=chain or "polygon",
            name=name,
            status=status,
            report_count=0,
            added_date=now,
            last_updated=now,
        )
        self._entries[key] = entry
        return entry


class WalletReputationStore:
    """Reputation records are simulated: no chain reads, just a stored default."""

    def __init__(self, default_score: int = 85):
        self.default_score = clamp_score(default_score)
        self._entries: dict[str, WalletReputation] = {}

    def check(self, address: str) -> WalletReputation:
        key = address.lower()
        rep = self._entries.get(key)
        if rep is None:
            rep = self._entries[key] = WalletReputation(
                address=address,
                risk_score=self.default_score,
                risk_level=level_from_score(self.default_score),
                scanned_at=_now_iso(),
            )
        return rep.model_copy()


def tier_from_score(score) -> TrustTier:
    s = clamp_score(score)
    if s >= 91:
        return "diamond"
    if s >= 71:
        return "platinum"
    if s >= 51:
        return "gold"
    if s >= 31:
        return "silver"
    return "bronze"


class TrustNFTStore:
    """Per-wallet Trust NFT records. Minting is simulated: it only assigns a token id."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: dict[str, TrustNFT] = {}

    def _now_iso(self) -> str:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc).isoformat()

    def _get_or_create(self, wallet_address: str) -> TrustNFT:
        key = wallet_address.lower()
        nft = self._entries.get(key)
        if nft is None:
            nft = self._entries[key] = TrustNFT(
                id=str(uuid.uuid4()),
                wallet_address=wallet_address,
                tier=tier_from_score(100),
                last_updated=self._now_iso(),
            )
        return nft

    def get(self, wallet_address: str) -> TrustNFT:
        """Unminted records are created on first lookup with a perfect score."""
        return self._get_or_create(wallet_address).model_copy()

    def update_stats(
        self,
        wallet_address: str,
        trust_score: int,
        scams_avoided: int | None = None,
        safe_transactions: int | None = None,
    ) -> TrustNFT:
        nft = self._get_or_create(wallet_address)
        nft.trust_score = clamp_score(trust_score)
        nft.tier = tier_from_score(nft.trust_score)
        if scams_avoided is not None:
            nft.scams_avoided = max(0, int(scams_avoided))
        if safe_transactions is not None:
            nft.safe_transactions = max(0, int(safe_transactions))
        nft.last_updated = self._now_iso()
        return nft.model_copy()

    def mint(self, wallet_address: str) -> TrustNFT:
        nft = self._get_or_create(wallet_address)
        if nft.token_id:
            raise AlreadyMinted("Trust NFT already minted")
        nft.token_id = str(int(self._clock() * 1000))
        nft.last_updated = self._now_iso()
        return nft.model_copy()
