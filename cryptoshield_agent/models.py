from __future__ import annotations

from typing import Literal, Union

from pydantic import BaseModel, Field

from .taxonomy import RiskLevel, Severity

AnalysisSource = Literal["ai", "heuristic", "known_entity"]
ActionType = Literal[
    "website_blocked",
    "contract_flagged",
    "transaction_blocked",
    "token_warning",
    "wallet_flagged",
]
RegistryStatus = Literal["safe", "dangerous", "suspicious", "unverified"]
TrustTier = Literal["bronze", "silver", "gold", "platinum", "diamond"]


# ---- Subjects ----

class WebsiteSubject(BaseModel):
    kind: Literal["website"] = "website"
    url: str
    domain: str

    @property
    def identity(self) -> str:
        return self.url


class ContractSubject(BaseModel):
    kind: Literal["contract"] = "contract"
    address: str
    chain: str = "polygon"

    @property
    def identity(self) -> str:
        return self.address.lower()


class TokenSubject(BaseModel):
    kind: Literal["token"] = "token"
    address: str
    chain: str = "polygon"

    @property
    def identity(self) -> str:
        return self.address.lower()


AnalysisSubject = Union[WebsiteSubject, ContractSubject, TokenSubject]


# ---- Results ----

class Finding(BaseModel):
    type: str
    severity: Severity
    description: str


class AnalysisResult(BaseModel):
    risk_score: int = Field(..., ge=0, le=100)
    risk_level: RiskLevel
    findings: list[Finding] = Field(default_factory=list)
    analysis_source: AnalysisSource = "heuristic"
    scanned_at: str


class WebsiteAnalysis(AnalysisResult):
    kind: Literal["website"] = "website"
    url: str
    domain: str
    is_blocked: bool = False


class ContractAnalysis(AnalysisResult):
    kind: Literal["contract"] = "contract"
    address: str
    chain: str
    name: str | None = None
    is_verified: bool = False
    has_proxy_pattern: bool = False
    has_owner_privileges: bool = True
    has_mint_function: bool = False
    has_pause_function: bool = False
    has_blacklist_function: bool = False
    honeypot_risk: bool = False
    rug_pull_risk: bool = False


class TokenAnalysis(AnalysisResult):
    kind: Literal["token"] = "token"
    address: str
    chain: str
    name: str = "Unknown Token"
    symbol: str = "???"
    liquidity_locked: bool = False
    liquidity_amount: str = "Unknown"
    lock_duration: str = "Unknown"
    ownership_renounced: bool = False
    buy_tax: float = 0
    sell_tax: float = 0
    max_tx_limit: bool = False
    max_wallet_limit: bool = False
    can_mint: bool = False
    can_pause: bool = False
    can_blacklist: bool = False
    is_honeypot: bool = False
    top_holders_concentration: float = 50


AnyAnalysis = Union[WebsiteAnalysis, ContractAnalysis, TokenAnalysis]


class TransactionSimulation(BaseModel):
    from_address: str
    to_address: str
    safe: bool
    risk_score: int = Field(..., ge=0, le=100)
    risk_level: RiskLevel
    warnings: list[str]
    analysis: str
    analysis_source: AnalysisSource
    estimated_gas: str = "~50,000"
    token_loss: str
    simulated_at: str


# ---- Activity ----

class ProtectionLogEntry(BaseModel):
    id: str
    wallet_address: str
    action_type: ActionType
    target_url: str | None = None
    target_address: str | None = None
    risk_score: int
    risk_level: RiskLevel
    description: str
    timestamp: str
    tx_hash: str | None = None


class DailyReport(BaseModel):
    wallet_address: str
    date: str
    threats_blocked: int = 0
    contracts_flagged: int = 0
    tokens_analyzed: int = 0
    transactions_scanned: int = 0
    risky_sites_blocked: int = 0
    overall_safety_score: int = 100


class CountBucket(BaseModel):
    name: str
    count: int


class AnalyticsSummary(BaseModel):
    wallet_address: str
    total_scans: int
    threats_blocked: int
    contracts_analyzed: int
    tokens_checked: int
    safety_score: int
    threat_types: list[CountBucket]
    risk_distribution: list[CountBucket]


# ---- Registry / reputation ----

class WalletReputation(BaseModel):
    address: str
    risk_score: int = Field(..., ge=0, le=100)
    risk_level: RiskLevel
    is_blacklisted: bool = False
    scam_reports: int = 0
    linked_to_mixer: bool = False
    linked_to_drainer: bool = False
    total_victims: int = 0
    first_seen: str | None = None
    labels: list[str] = Field(default_factory=list)
    scanned_at: str


class ContractRegistryEntry(BaseModel):
    id: str
    address: str
    chain: str
    name: str | None = None
    status: RegistryStatus
    report_count: int = 0
    verified_by: str | None = None
    added_date: str
    last_updated: str


class TrustNFT(BaseModel):
    id: str
    wallet_address: str
    token_id: str | None = None
    trust_score: int = Field(100, ge=0, le=100)
    scams_avoided: int = 0
    safe_transactions: int = 0
    rank: str = "N/A"
    tier: TrustTier = "bronze"
    last_updated: str


# ---- HTTP requests ----

class ScanWebsiteRequest(BaseModel):
    url: str = Field(..., min_length=1)
    wallet_address: str | None = None


class AnalyzeAddressRequest(BaseModel):
    address: str = Field(..., min_length=1)
    chain: str = Field("polygon", min_length=1)
    wallet_address: str | None = None


class CheckWalletRequest(BaseModel):
    address: str = Field(..., min_length=1)


class SimulateTransactionRequest(BaseModel):
    from_address: str = Field(..., min_length=1)
    to_address: str = Field(..., min_length=1)
    data: str = "0x"
    wallet_address: str | None = None


class RegistryAddRequest(BaseModel):
    address: str = Field(..., min_length=1)
    chain: str = "polygon"
    name: str | None = None
    status: RegistryStatus = "unverified"


class MintTrustNFTRequest(BaseModel):
    wallet_address: str = Field(..., min_length=1)
