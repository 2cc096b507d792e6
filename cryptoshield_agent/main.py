from __future__ import annotations

import logging
import re
from pathlib import Path
from urllib.parse import urlparse

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Load environment variables from the repo root .env (so GEMINI_API_KEY works in local dev)
_HERE = Path(__file__).resolve()
_AGENT_ROOT = _HERE.parents[1]
load_dotenv(_AGENT_ROOT / ".env", override=False)

from . import settings  # noqa: E402
from .activity import ActivityRecorder  # noqa: E402
from .errors import AlreadyMinted, InvalidAddress, InvalidSubject, RegistryConflict  # noqa: E402
from .heuristics import HeuristicEngine  # noqa: E402
from .model_client import ModelClient  # noqa: E402
from .models import (  # noqa: E402
    AnalyticsSummary,
    AnalyzeAddressRequest,
    CheckWalletRequest,
    ContractAnalysis,
    ContractRegistryEntry,
    DailyReport,
    MintTrustNFTRequest,
    ProtectionLogEntry,
    RegistryAddRequest,
    ScanWebsiteRequest,
    SimulateTransactionRequest,
    TokenAnalysis,
    TransactionSimulation,
    TrustNFT,
    WalletReputation,
    WebsiteAnalysis,
)
from .orchestrator import AnalysisOrchestrator  # noqa: E402
from .registry import ContractRegistry, TrustNFTStore, WalletReputationStore  # noqa: E402

logger = logging.getLogger(__name__)

_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")


def require_address(value: str | None, what: str = "address") -> str:
    v = (value or "").strip()
    if not _ADDRESS_RE.match(v):
        raise InvalidAddress(f"Invalid {what} format")
    return v


def parse_website_url(raw: str) -> tuple[str, str]:
    """Return (url, hostname) for an http(s) URL with a dotted hostname."""
    value = (raw or "").strip()
    if not value:
        raise InvalidSubject("Please provide a URL.")
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https"):
        raise InvalidSubject("Invalid URL format: use an http(s) website URL.")
    if not parsed.hostname or "." not in parsed.hostname:
        raise InvalidSubject("Invalid URL format: please enter a valid website domain.")
    return value, parsed.hostname


def create_app(
    orchestrator: AnalysisOrchestrator | None = None,
    registry: ContractRegistry | None = None,
    wallets: WalletReputationStore | None = None,
    trust_nfts: TrustNFTStore | None = None,
) -> FastAPI:
    if orchestrator is None:
        policy = settings.load_policy()
        orchestrator = AnalysisOrchestrator(
            model_client=ModelClient(),
            heuristics=HeuristicEngine(policy),
            recorder=ActivityRecorder(safety_window=policy.safety_score_window),
            policy=policy,
        )
    registry = registry or ContractRegistry()
    wallets = wallets or WalletReputationStore(default_score=orchestrator.policy.default_wallet_score)
    trust_nfts = trust_nfts or TrustNFTStore()

    app = FastAPI(title="CryptoShield Python Agent", version="0.1.0")
    app.state.orchestrator = orchestrator
    app.state.registry = registry
    app.state.wallets = wallets
    app.state.trust_nfts = trust_nfts

    # For local dev, this defaults to allowing http://localhost:5000.
    # In production, set CRYPTOSHIELD_CORS_ORIGINS to your deployed frontend origins.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(InvalidSubject)
    async def _invalid_subject(_request: Request, exc: InvalidSubject):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def _invalid_request(_request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"detail": "Invalid request data", "errors": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(RegistryConflict)
    async def _registry_conflict(_request: Request, exc: RegistryConflict):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(AlreadyMinted)
    async def _already_minted(_request: Request, exc: AlreadyMinted):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.get("/healthz")
    def healthz():
        return {"ok": True, "ai_enabled": orchestrator.model_client.enabled}

    @app.post("/api/scan-website", response_model=WebsiteAnalysis)
    async def scan_website(req: ScanWebsiteRequest):
        url, domain = parse_website_url(req.url)
        wallet = require_address(req.wallet_address, "wallet address") if req.wallet_address else None
        return await orchestrator.analyze_website(url, domain, wallet_address=wallet)

    @app.post("/api/analyze-contract", response_model=ContractAnalysis)
    async def analyze_contract(req: AnalyzeAddressRequest):
        address = require_address(req.address, "contract address")
        wallet = require_address(req.wallet_address, "wallet address") if req.wallet_address else None
        return await orchestrator.analyze_contract(address, req.chain, wallet_address=wallet)

    @app.post("/api/analyze-token", response_model=TokenAnalysis)
    async def analyze_token(req: AnalyzeAddressRequest):
        address = require_address(req.address, "token address")
        wallet = require_address(req.wallet_address, "wallet address") if req.wallet_address else None
        return await orchestrator.analyze_token(address, req.chain, wallet_address=wallet)

    @app.post("/api/check-wallet", response_model=WalletReputation)
    async def check_wallet(req: CheckWalletRequest):
        return wallets.check(require_address(req.address, "wallet address"))

    @app.post("/api/simulate-transaction", response_model=TransactionSimulation)
    async def simulate_transaction(req: SimulateTransactionRequest):
        sender = require_address(req.from_address, "from address")
        recipient = require_address(req.to_address, "to address")
        wallet = require_address(req.wallet_address, "wallet address") if req.wallet_address else sender
        return await orchestrator.simulate_transaction(sender, recipient, req.data, wallet_address=wallet)

    @app.get("/api/activities/{address}", response_model=list[ProtectionLogEntry])
    async def activities(address: str):
        return orchestrator.recorder.get_logs(require_address(address, "wallet address"))

    @app.get("/api/stats/{address}", response_model=DailyReport)
    async def stats(address: str):
        return orchestrator.recorder.get_daily_report(require_address(address, "wallet address"))

    @app.get("/api/analytics/{address}", response_model=AnalyticsSummary)
    async def analytics(address: str):
        return orchestrator.recorder.summarize(require_address(address, "wallet address"))

    @app.get("/api/registry", response_model=list[ContractRegistryEntry])
    async def registry_list():
        return registry.list_entries()

    @app.post("/api/registry", response_model=ContractRegistryEntry)
    async def registry_add(req: RegistryAddRequest):
        address = require_address(req.address, "contract address")
        return registry.add(address, chain=req.chain, name=req.name, status=req.status)

    @app.get("/api/trust-nft/{address}", response_model=TrustNFT)
    async def trust_nft(address: str):
        wallet = require_address(address, "wallet address")
        report = orchestrator.recorder.get_daily_report(wallet)
        scams = sum(1 for e in orchestrator.recorder.get_logs(wallet) if e.risk_level == "danger")
        return trust_nfts.update_stats(wallet, report.overall_safety_score, scams_avoided=scams)

    @app.post("/api/mint-trust-nft", response_model=TrustNFT)
    async def mint_trust_nft(req: MintTrustNFTRequest):
        return trust_nfts.mint(require_address(req.wallet_address, "wallet address"))

    return app


logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = create_app()
