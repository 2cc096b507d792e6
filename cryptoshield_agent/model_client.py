"""
Single-shot structured calls to Google Gemini.

One request per analysis: a fixed system instruction per kind, a user prompt
carrying the subject's identity, and a response schema the model must fill in.
Anything short of a JSON object coming back is ModelUnavailable; field-level
checking is left to the orchestrator.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from google import genai
from google.genai import types

from . import settings
from .errors import ModelUnavailable

logger = logging.getLogger(__name__)


_FINDING_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "type": {"type": "STRING"},
        "severity": {"type": "STRING", "enum": ["low", "medium", "high", "critical"]},
        "description": {"type": "STRING"},
    },
    "required": ["type", "severity", "description"],
}


def _object(properties: dict[str, Any]) -> dict[str, Any]:
    return {"type": "OBJECT", "properties": properties, "required": list(properties)}


_SCORE = {"type": "INTEGER", "description": "0-100, higher is safer"}
_LEVEL = {"type": "STRING", "enum": ["safe", "warning", "danger"]}
_BOOL = {"type": "BOOLEAN"}
_STR = {"type": "STRING"}
_NUM = {"type": "NUMBER"}

RESPONSE_SCHEMAS: dict[str, dict[str, Any]] = {
    "website": _object({
        "risk_score": _SCORE,
        "risk_level": _LEVEL,
        "threats": {"type": "ARRAY", "items": _FINDING_SCHEMA},
        "is_blocked": _BOOL,
    }),
    "contract": _object({
        "risk_score": _SCORE,
        "risk_level": _LEVEL,
        "is_verified": _BOOL,
        "has_proxy_pattern": _BOOL,
        "has_owner_privileges": _BOOL,
        "has_mint_function": _BOOL,
        "has_pause_function": _BOOL,
        "has_blacklist_function": _BOOL,
        "honeypot_risk": _BOOL,
        "rug_pull_risk": _BOOL,
        "issues": {"type": "ARRAY", "items": _FINDING_SCHEMA},
    }),
    "token": _object({
        "risk_score": _SCORE,
        "risk_level": _LEVEL,
        "name": _STR,
        "symbol": _STR,
        "liquidity_locked": _BOOL,
        "liquidity_amount": _STR,
        "lock_duration": _STR,
        "ownership_renounced": _BOOL,
        "buy_tax": _NUM,
        "sell_tax": _NUM,
        "max_tx_limit": _BOOL,
        "max_wallet_limit": _BOOL,
        "can_mint": _BOOL,
        "can_pause": _BOOL,
        "can_blacklist": _BOOL,
        "is_honeypot": _BOOL,
        "top_holders_concentration": {"type": "NUMBER", "description": "percent held by top 10 holders"},
    }),
    "transaction": _object({
        "safe": _BOOL,
        "risk_score": _SCORE,
        "warnings": {"type": "ARRAY", "items": _STR},
        "analysis": _STR,
    }),
}


SYSTEM_INSTRUCTIONS: dict[str, str] = {
    "website": """You are a cybersecurity expert specializing in crypto phishing and scam websites.
Analyze the given URL and domain for threats. Consider:
- Typosquatting of wallets, DEXes and NFT marketplaces (MetaMask, Uniswap, OpenSea, Aave, Compound)
- Fake airdrop / claim pages and fake staking dashboards
- Urgency or "limited time" wording in the URL
- Suspicious subdomains, TLDs and missing HTTPS

Respond with ONLY a JSON object (no markdown):
{
  "risk_score": <0-100 integer, higher is safer>,
  "risk_level": "safe" | "warning" | "danger",
  "threats": [{"type": "phishing" | "malicious_script" | "fake_ui" | "suspicious_domain" | "typosquatting",
               "severity": "low" | "medium" | "high" | "critical", "description": "<string>"}],
  "is_blocked": <boolean>
}""",
    "contract": """You are a smart contract security auditor. Analyze the given contract address for risks:
- Honeypot patterns (can buy but not sell)
- Rug pull risks (owner can drain funds)
- Unlimited minting, blacklist or pause functions
- Proxy pattern and owner privilege abuse

Respond with ONLY a JSON object (no markdown):
{
  "risk_score": <0-100 integer, higher is safer>,
  "risk_level": "safe" | "warning" | "danger",
  "is_verified": <boolean>,
  "has_proxy_pattern": <boolean>,
  "has_owner_privileges": <boolean>,
  "has_mint_function": <boolean>,
  "has_pause_function": <boolean>,
  "has_blacklist_function": <boolean>,
  "honeypot_risk": <boolean>,
  "rug_pull_risk": <boolean>,
  "issues": [{"type": "<string>", "severity": "low" | "medium" | "high" | "critical", "description": "<string>"}]
}""",
    "token": """You are a token security analyst. Analyze the given token contract for safety concerns:
- Liquidity lock status and ownership renouncement
- Buy/sell taxes, max transaction and max wallet limits
- Mint, pause and blacklist capabilities
- Honeypot risk and top holder concentration

Respond with ONLY a JSON object (no markdown):
{
  "risk_score": <0-100 integer, higher is safer>,
  "risk_level": "safe" | "warning" | "danger",
  "name": "<string>",
  "symbol": "<string>",
  "liquidity_locked": <boolean>,
  "liquidity_amount": "<string>",
  "lock_duration": "<string>",
  "ownership_renounced": <boolean>,
  "buy_tax": <percentage>,
  "sell_tax": <percentage>,
  "max_tx_limit": <boolean>,
  "max_wallet_limit": <boolean>,
  "can_mint": <boolean>,
  "can_pause": <boolean>,
  "can_blacklist": <boolean>,
  "is_honeypot": <boolean>,
  "top_holders_concentration": <percentage held by the top 10 holders>
}""",
    "transaction": """You simulate EVM transactions for a wallet security tool. Decide whether executing
the call would lose or expose the sender's tokens:
- Tokens transferred to an unknown recipient
- Unlimited approvals (approve / setApprovalForAll)
- Calls into unverified or drainer contracts

Respond with ONLY a JSON object (no markdown):
{
  "safe": <boolean>,
  "risk_score": <0-100 integer, higher is safer>,
  "warnings": ["<string>"],
  "analysis": "<one paragraph>"
}""",
}


def build_user_prompt(kind: str, subject: dict[str, Any]) -> str:
    if kind == "website":
        return f"Analyze this URL for security threats: {subject['url']}\nDomain: {subject['domain']}"
    if kind == "contract":
        return f"Analyze this smart contract for security risks:\nAddress: {subject['address']}\nChain: {subject['chain']}"
    if kind == "token":
        return f"Analyze this token for safety:\nAddress: {subject['address']}\nChain: {subject['chain']}"
    if kind == "transaction":
        return (
            "Simulate this transaction:\n"
            f"From: {subject['from_address']}\n"
            f"To: {subject['to_address']}\n"
            f"Data: {subject.get('data') or '0x'}"
        )
    raise ValueError(f"Unknown analysis kind: {kind}")


def parse_json_object(text: str | None) -> dict[str, Any]:
    text = (text or "").strip()
    if not text:
        raise ModelUnavailable("empty response")

    # The SDK may still return fenced JSON sometimes.
    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    text = text.strip()

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise ModelUnavailable(f"unparsable JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise ModelUnavailable(f"expected a JSON object, got {type(parsed).__name__}")
    return parsed


class ModelClient:
    """Wraps one Gemini generate_content call per analysis.

    No retries here. A missing key, a transport error, a timeout or a reply
    that is not a JSON object all raise ModelUnavailable.
    """

    def __init__(
        self,
        api_key: str | None = None,
        *,
        model: str | None = None,
        timeout_s: float | None = None,
        max_output_tokens: int | None = None,
        temperature: float | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.gemini_api_key()
        self.model = model or settings.GEMINI_MODEL
        self.timeout_s = timeout_s if timeout_s is not None else settings.MODEL_TIMEOUT_S
        self.max_output_tokens = max_output_tokens or settings.MODEL_MAX_OUTPUT_TOKENS
        self.temperature = temperature if temperature is not None else settings.MODEL_TEMPERATURE
        self._client: genai.Client | None = None

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def _get_client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def _config(self, kind: str) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            system_instruction=SYSTEM_INSTRUCTIONS[kind],
            response_mime_type="application/json",
            response_schema=RESPONSE_SCHEMAS[kind],
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
        )

    async def call(self, kind: str, subject: dict[str, Any]) -> dict[str, Any]:
        if kind not in SYSTEM_INSTRUCTIONS:
            raise ValueError(f"Unknown analysis kind: {kind}")
        if not self.enabled:
            raise ModelUnavailable("GEMINI_API_KEY not configured")

        prompt = build_user_prompt(kind, subject)
        try:
            resp = await asyncio.wait_for(
                self._get_client().aio.models.generate_content(
                    model=self.model,
                    contents=prompt,
                    config=self._config(kind),
                ),
                timeout=self.timeout_s,
            )
        except asyncio.TimeoutError as e:
            logger.warning("Gemini %s call timed out after %.1fs", kind, self.timeout_s)
            raise ModelUnavailable(f"timed out after {self.timeout_s}s") from e
        except Exception as e:
            logger.warning("Gemini %s call failed: %s", kind, e)
            raise ModelUnavailable(f"request failed: {e}") from e

        try:
            return parse_json_object(getattr(resp, "text", None))
        except ModelUnavailable as e:
            logger.warning("Gemini %s response rejected: %s", kind, e.reason)
            raise
