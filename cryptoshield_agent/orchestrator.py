"""
Per-request analysis pipeline.

    cache check -> known-entity shortcut -> model attempt
        -> accepted / defaulted (field-level repair)
        -> or heuristic fallback on ModelUnavailable
    -> normalize (risk_level recomputed from risk_score)
    -> cache store -> activity record (warning/danger only) -> result

analyze() never raises for a validated subject; the worst case is a
heuristic result in the warning band.
"""
from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from .activity import ActivityRecorder
from .cache import ResultCache, identity_key
from .errors import InvalidScore, ModelUnavailable
from .heuristics import HeuristicEngine
from .model_client import ModelClient
from .models import (
    AnalysisSubject,
    AnyAnalysis,
    ContractAnalysis,
    ContractSubject,
    Finding,
    TokenAnalysis,
    TokenSubject,
    TransactionSimulation,
    WebsiteAnalysis,
    WebsiteSubject,
)
from .settings import HeuristicPolicy
from .taxonomy import SEVERITIES, clamp_score, level_from_score

logger = logging.getLogger(__name__)


AI_UNAVAILABLE_FINDING = Finding(
    type="ai_unavailable",
    severity="low",
    description="AI analysis unavailable - using heuristic checks. Manual review recommended.",
)

_SEVERITY_MAP = {
    "info": "low",
    "informational": "low",
    "minor": "low",
    "med": "medium",
    "moderate": "medium",
    "severe": "high",
    "major": "high",
    "crit": "critical",
}

_TRUE_STRINGS = {"true", "yes", "1"}
_FALSE_STRINGS = {"false", "no", "0"}


@dataclass
class ModelAccepted:
    result: AnyAnalysis


@dataclass
class ModelDefaulted:
    result: AnyAnalysis
    missing_fields: list[str] = field(default_factory=list)


# ---- Field-level repair of model output ----

class _FieldReader:
    """Pulls typed fields out of an untrusted model payload.

    Every field that is absent or of the wrong type is replaced by its
    default and remembered in `missing`.
    """

    def __init__(self, raw: dict[str, Any]):
        self.raw = raw
        self.missing: list[str] = []

    def score(self, key: str, default: int) -> int:
        value = self.raw.get(key)
        if isinstance(value, str):
            try:
                value = float(value.strip())
            except ValueError:
                value = None
        try:
            return clamp_score(value)
        except InvalidScore:
            self.missing.append(key)
            return clamp_score(default)

    def boolean(self, key: str, default: bool) -> bool:
        value = self.raw.get(key)
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in _TRUE_STRINGS:
                return True
            if lowered in _FALSE_STRINGS:
                return False
        self.missing.append(key)
        return default

    def string(self, key: str, default: str) -> str:
        value = self.raw.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        if isinstance(value, str) and value.strip():
            return value.strip()
        self.missing.append(key)
        return default

    def percent(self, key: str, default: float) -> float:
        value = self.raw.get(key)
        if isinstance(value, str):
            try:
                value = float(value.strip().rstrip("%"))
            except ValueError:
                value = None
        if isinstance(value, int) and not isinstance(value, bool):
            return float(max(0, min(100, value)))
        if isinstance(value, float) and math.isfinite(value):
            return max(0.0, min(100.0, value))
        self.missing.append(key)
        return default

    def string_list(self, key: str) -> list[str]:
        value = self.raw.get(key)
        if not isinstance(value, list):
            self.missing.append(key)
            return []
        out: list[str] = []
        for item in value:
            if item is None:
                continue
            s = str(item).strip()
            if s:
                out.append(s)
        return out

    def findings(self, key: str) -> list[Finding]:
        value = self.raw.get(key)
        if not isinstance(value, list):
            self.missing.append(key)
            return []
        out: list[Finding] = []
        for item in value:
            if isinstance(item, str) and item.strip():
                out.append(Finding(type="ai_observation", severity="medium", description=item.strip()))
                continue
            if not isinstance(item, dict):
                continue
            description = str(item.get("description") or "").strip()
            if not description:
                continue
            severity = str(item.get("severity") or "medium").strip().lower()
            severity = _SEVERITY_MAP.get(severity, severity)
            if severity not in SEVERITIES:
                severity = "medium"
            kind = str(item.get("type") or "unspecified").strip().lower() or "unspecified"
            out.append(Finding(type=kind, severity=severity, description=description))
        return out


def _token_findings(token: TokenAnalysis) -> list[Finding]:
    out: list[Finding] = []
    if token.is_honeypot:
        out.append(Finding(type="honeypot_risk", severity="critical", description="Token may not be sellable (honeypot)."))
    if not token.liquidity_locked:
        out.append(Finding(type="unlocked_liquidity", severity="medium", description="Liquidity is not reported as locked."))
    if token.can_mint:
        out.append(Finding(type="mint_function", severity="medium", description="Owner can mint additional supply."))
    if token.can_blacklist:
        out.append(Finding(type="blacklist_function", severity="medium", description="Owner can blacklist holders."))
    if max(token.buy_tax, token.sell_tax) > 10:
        out.append(Finding(
            type="high_tax",
            severity="high",
            description=f"High trading tax (buy {token.buy_tax:g}%, sell {token.sell_tax:g}%).",
        ))
    return out


def _now_iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


class AnalysisOrchestrator:
    def __init__(
        self,
        model_client: ModelClient | None = None,
        heuristics: HeuristicEngine | None = None,
        cache: ResultCache | None = None,
        recorder: ActivityRecorder | None = None,
        policy: HeuristicPolicy | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.policy = policy or (heuristics.policy if heuristics else HeuristicPolicy())
        self.model_client = model_client or ModelClient()
        self.heuristics = heuristics or HeuristicEngine(self.policy)
        self.cache = cache or ResultCache()
        self.recorder = recorder or ActivityRecorder(safety_window=self.policy.safety_score_window)
        self._clock = clock
        self._inflight: dict[tuple[str, str], asyncio.Future] = {}

    # ---- Public entry points ----

    async def analyze(
        self,
        kind: str,
        subject: AnalysisSubject,
        wallet_address: str | None = None,
    ) -> AnyAnalysis:
        if subject.kind != kind:
            raise ValueError(f"Subject kind {subject.kind!r} does not match {kind!r}")

        identity = subject.identity
        entry = self.cache.get(kind, identity)
        if entry is not None and entry.is_fresh(self.policy.freshness_for(kind), now=self._clock()):
            logger.debug("Cache hit for %s %s (age %.0fs)", kind, identity, entry.age_s(self._clock()))
            return entry.result

        # Concurrent misses for one identity share a single pipeline run.
        key = (kind, identity_key(kind, identity))
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._run(kind, subject))
            self._inflight[key] = task
            task.add_done_callback(lambda _t, k=key: self._inflight.pop(k, None))
        result = (await asyncio.shield(task)).model_copy(deep=True)

        if wallet_address and result.risk_level != "safe":
            await self.recorder.record(wallet_address, kind, identity, result)
        return result

    async def analyze_website(self, url: str, domain: str, wallet_address: str | None = None) -> WebsiteAnalysis:
        return await self.analyze("website", WebsiteSubject(url=url, domain=domain), wallet_address)

    async def analyze_contract(self, address: str, chain: str = "polygon", wallet_address: str | None = None) -> ContractAnalysis:
        return await self.analyze("contract", ContractSubject(address=address, chain=chain), wallet_address)

    async def analyze_token(self, address: str, chain: str = "polygon", wallet_address: str | None = None) -> TokenAnalysis:
        return await self.analyze("token", TokenSubject(address=address, chain=chain), wallet_address)

    async def simulate_transaction(
        self,
        from_address: str,
        to_address: str,
        data: str = "0x",
        wallet_address: str | None = None,
    ) -> TransactionSimulation:
        """Ask the model whether a call would lose funds. Never cached."""
        subject = {"from_address": from_address, "to_address": to_address, "data": data or "0x"}
        try:
            raw = await self.model_client.call("transaction", subject)
            reader = _FieldReader(raw)
            fields = {
                "safe": reader.boolean("safe", False),
                "risk_score": reader.score("risk_score", self.policy.missing_score_default),
                "warnings": reader.string_list("warnings"),
                "analysis": reader.string("analysis", "Simulation completed."),
            }
            if reader.missing:
                logger.info("Transaction simulation defaulted fields: %s", ", ".join(reader.missing))
            source = "ai"
        except ModelUnavailable as e:
            logger.info("Transaction simulation falling back to conservative default: %s", e.reason)
            fields = self.heuristics.simulate_transaction_fallback()
            source = "heuristic"

        level = level_from_score(fields["risk_score"])
        safe = bool(fields["safe"]) and level != "danger"
        sim = TransactionSimulation(
            from_address=from_address,
            to_address=to_address,
            safe=safe,
            risk_score=fields["risk_score"],
            risk_level=level,
            warnings=fields["warnings"],
            analysis=fields["analysis"],
            analysis_source=source,
            token_loss="0" if safe else "Unknown - Review warnings",
            simulated_at=_now_iso(self._clock()),
        )
        if wallet_address and level != "safe":
            await self.recorder.record(wallet_address, "transaction", to_address.lower(), sim)
        return sim

    def prune(self) -> int:
        """Drop cache entries that are past their kind's freshness window."""
        now = self._clock()
        return sum(
            self.cache.evict_older_than(self.policy.freshness_for(kind), now=now, kind=kind)
            for kind in ("website", "contract", "token")
        )

    # ---- Pipeline ----

    async def _run(self, kind: str, subject: AnalysisSubject) -> AnyAnalysis:
        now = self._clock()
        scanned_at = _now_iso(now)

        known = self._known_entity(kind, subject, scanned_at)
        if known is not None:
            result = known
        else:
            try:
                raw = await self.model_client.call(kind, subject.model_dump())
            except ModelUnavailable as e:
                logger.info("Model unavailable for %s %s, using heuristics: %s", kind, subject.identity, e.reason)
                result = self._fallback(kind, subject, scanned_at)
            else:
                outcome = self._from_model(kind, subject, raw, scanned_at)
                if isinstance(outcome, ModelDefaulted):
                    logger.info(
                        "Model output for %s %s missing/mistyped fields: %s",
                        kind, subject.identity, ", ".join(outcome.missing_fields),
                    )
                result = outcome.result

        result = self._normalize(result)
        self.cache.put(kind, subject.identity, result, timestamp=now)
        return result

    def _known_entity(self, kind: str, subject: AnalysisSubject, scanned_at: str) -> AnyAnalysis | None:
        if kind == "contract" and self.heuristics.is_known_contract(subject.address):
            return self.heuristics.score_contract(subject.address, subject.chain, scanned_at=scanned_at)
        if kind == "token" and self.heuristics.is_known_contract(subject.address):
            return self.heuristics.score_token(subject.address, subject.chain, scanned_at=scanned_at)
        return None

    def _fallback(self, kind: str, subject: AnalysisSubject, scanned_at: str) -> AnyAnalysis:
        if kind == "website":
            result = self.heuristics.score_website(subject.url, subject.domain, scanned_at=scanned_at)
        elif kind == "contract":
            result = self.heuristics.score_contract(subject.address, subject.chain, scanned_at=scanned_at)
        else:
            result = self.heuristics.score_token(subject.address, subject.chain, scanned_at=scanned_at)
        result.findings.append(AI_UNAVAILABLE_FINDING.model_copy())
        return result

    def _from_model(
        self,
        kind: str,
        subject: AnalysisSubject,
        raw: dict[str, Any],
        scanned_at: str,
    ) -> ModelAccepted | ModelDefaulted:
        r = _FieldReader(raw)
        score = r.score("risk_score", self.policy.missing_score_default)
        common = {
            "risk_score": score,
            "risk_level": level_from_score(score),
            "analysis_source": "ai",
            "scanned_at": scanned_at,
        }

        if kind == "website":
            result: AnyAnalysis = WebsiteAnalysis(
                url=subject.url,
                domain=subject.domain,
                findings=r.findings("threats"),
                **common,
            )
        elif kind == "contract":
            result = ContractAnalysis(
                address=subject.address,
                chain=subject.chain,
                is_verified=r.boolean("is_verified", False),
                has_proxy_pattern=r.boolean("has_proxy_pattern", False),
                has_owner_privileges=r.boolean("has_owner_privileges", True),
                has_mint_function=r.boolean("has_mint_function", False),
                has_pause_function=r.boolean("has_pause_function", False),
                has_blacklist_function=r.boolean("has_blacklist_function", False),
                honeypot_risk=r.boolean("honeypot_risk", False),
                rug_pull_risk=r.boolean("rug_pull_risk", False),
                findings=r.findings("issues"),
                **common,
            )
        else:
            result = TokenAnalysis(
                address=subject.address,
                chain=subject.chain,
                name=r.string("name", "Unknown Token"),
                symbol=r.string("symbol", "???"),
                liquidity_locked=r.boolean("liquidity_locked", False),
                liquidity_amount=r.string("liquidity_amount", "Unknown"),
                lock_duration=r.string("lock_duration", "Unknown"),
                ownership_renounced=r.boolean("ownership_renounced", False),
                buy_tax=r.percent("buy_tax", 0),
                sell_tax=r.percent("sell_tax", 0),
                max_tx_limit=r.boolean("max_tx_limit", False),
                max_wallet_limit=r.boolean("max_wallet_limit", False),
                can_mint=r.boolean("can_mint", False),
                can_pause=r.boolean("can_pause", False),
                can_blacklist=r.boolean("can_blacklist", False),
                is_honeypot=r.boolean("is_honeypot", False),
                top_holders_concentration=r.percent(
                    "top_holders_concentration", self.policy.default_top_holders_concentration
                ),
                findings=[],
                **common,
            )
            result.findings = _token_findings(result)

        claimed = raw.get("risk_level")
        if isinstance(claimed, str) and claimed.strip().lower() != result.risk_level:
            logger.debug("Model risk_level %r disagrees with score %d; using %s", claimed, score, result.risk_level)

        if r.missing:
            return ModelDefaulted(result=result, missing_fields=r.missing)
        return ModelAccepted(result=result)

    @staticmethod
    def _normalize(result: AnyAnalysis) -> AnyAnalysis:
        result.risk_score = clamp_score(result.risk_score)
        result.risk_level = level_from_score(result.risk_score)
        if isinstance(result, WebsiteAnalysis):
            result.is_blocked = result.risk_level == "danger"
        return result
