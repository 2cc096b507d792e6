from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import PolicyError

logger = logging.getLogger(__name__)


GEMINI_MODEL = os.environ.get("GEMINI_MODEL", "gemini-2.5-flash")
MODEL_TIMEOUT_S = float(os.getenv("MODEL_TIMEOUT_S", "30"))
MODEL_MAX_OUTPUT_TOKENS = int(os.getenv("MODEL_MAX_OUTPUT_TOKENS", "1024"))
MODEL_TEMPERATURE = float(os.getenv("MODEL_TEMPERATURE", "0.2"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def gemini_api_key() -> str | None:
    # Read lazily so a .env loaded after import still counts.
    key = (os.environ.get("GEMINI_API_KEY") or "").strip()
    return key or None


class KnownToken(BaseModel):
    name: str
    symbol: str
    risk_score: int = Field(..., ge=0, le=100)


def _default_known_tokens() -> dict[str, KnownToken]:
    return {
        "0x7d1afa7b718fb893db30a3abc0cfc608aacfebb0": KnownToken(name="Polygon", symbol="MATIC", risk_score=95),
        "0x2791bca1f2de4661ed88a30c99a7a9449aa84174": KnownToken(name="USD Coin", symbol="USDC", risk_score=98),
        "0x8f3cf7ad23cd3cadbd9735aff958023239c6a063": KnownToken(name="DAI Stablecoin", symbol="DAI", risk_score=97),
    }


class HeuristicPolicy(BaseModel):
    """Tuning constants for the rule-based engine and the pipeline around it.

    None of these numbers are derived from data; they are knobs. Override any
    subset from a YAML file pointed to by CRYPTOSHIELD_POLICY_FILE.
    """

    model_config = ConfigDict(extra="forbid")

    website_baseline: int = 75
    keyword_penalty: int = 15
    brand_penalty: int = 25
    insecure_scheme_penalty: int = 10
    secure_scheme_prefix: str = "https://"
    suspicious_patterns: list[str] = Field(
        default_factory=lambda: [
            r"airdrop",
            r"claim",
            r"free.*token",
            r"metamask.*unlock",
            r"wallet.*connect",
            r"urgent",
            r"limited.*time",
        ]
    )
    watched_brands: list[str] = Field(
        default_factory=lambda: ["metamask", "uniswap", "opensea", "aave", "compound"]
    )
    brand_tlds: list[str] = Field(default_factory=lambda: ["io", "com"])

    known_tokens: dict[str, KnownToken] = Field(default_factory=_default_known_tokens)
    known_contract_score: int = 95
    default_contract_score: int = 55
    default_token_score: int = 50
    known_top_holders_concentration: float = 25
    default_top_holders_concentration: float = 50

    website_freshness_s: int = 60 * 60
    contract_freshness_s: int = 24 * 60 * 60
    token_freshness_s: int = 60 * 60

    missing_score_default: int = 50
    safety_score_window: int = Field(20, ge=1)
    default_wallet_score: int = 85

    def freshness_for(self, kind: str) -> int:
        return {
            "website": self.website_freshness_s,
            "contract": self.contract_freshness_s,
            "token": self.token_freshness_s,
        }[kind]

    def known_token(self, address: str) -> KnownToken | None:
        return self.known_tokens.get(address.strip().lower())


def load_policy(path: str | os.PathLike | None = None) -> HeuristicPolicy:
    if path is None:
        path = os.getenv("CRYPTOSHIELD_POLICY_FILE") or None
    if not path:
        return HeuristicPolicy()

    p = Path(path)
    try:
        with open(p, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise PolicyError(f"Failed to load policy from {p}: {e}") from e
    if not isinstance(data, dict):
        raise PolicyError(f"Policy file {p} must contain a mapping")

    # Allow-list keys are matched lowercased.
    tokens = data.get("known_tokens")
    if isinstance(tokens, dict):
        data["known_tokens"] = {str(k).lower(): v for k, v in tokens.items()}

    try:
        policy = HeuristicPolicy.model_validate(data)
    except ValidationError as e:
        raise PolicyError(f"Invalid policy in {p}: {e}") from e
    logger.info("Loaded heuristic policy overrides from %s (%d keys)", p, len(data))
    return policy


def cors_allow_origins() -> list[str]:
    raw = os.getenv("CRYPTOSHIELD_CORS_ORIGINS", "").strip()
    if not raw:
        return ["http://localhost:5000"]
    return [o.strip() for o in raw.split(",") if o.strip()]
