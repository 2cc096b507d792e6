"""
Rule-based risk scoring used when the AI judge is unavailable.

Everything here is synchronous and side-effect free: the same subject and
policy always produce the same result. Only the subject's identity string and
the static knowledge base in HeuristicPolicy are consulted.
"""
from __future__ import annotations

import re
from datetime import datetime, timezone

from .errors import PolicyError
from .models import ContractAnalysis, Finding, TokenAnalysis, WebsiteAnalysis
from .settings import HeuristicPolicy
from .taxonomy import clamp_score, level_from_score


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _registrable_domain_guess(hostname: str) -> str:
    parts = [p for p in hostname.split(".") if p]
    if len(parts) <= 2:
        return hostname
    return ".".join(parts[-2:])


class HeuristicEngine:
    """Deterministic scorer for websites, contracts and tokens.

    `scanned_at` is the only input taken from the wall clock. Pass it
    explicitly (the orchestrator always does) to get byte-identical results
    for the same subject; when omitted it is stamped with the current UTC time
    and every other field is still identical across calls.
    """

    def __init__(self, policy: HeuristicPolicy | None = None):
        self.policy = policy or HeuristicPolicy()
        try:
            self._patterns = [re.compile(p, re.IGNORECASE) for p in self.policy.suspicious_patterns]
        except re.error as e:
            raise PolicyError(f"Invalid suspicious pattern: {e}") from e

    # ---- Website ----

    def score_website(self, url: str, domain: str, scanned_at: str | None = None) -> WebsiteAnalysis:
        p = self.policy
        findings: list[Finding] = []
        score = p.website_baseline

        for pattern in self._patterns:
            if pattern.search(url) or pattern.search(domain):
                score -= p.keyword_penalty
                findings.append(Finding(
                    type="suspicious_domain",
                    severity="medium",
                    description=f"Suspicious pattern detected: {pattern.pattern}",
                ))

        # Typosquatting guess: brand name inside a domain that isn't the brand's own.
        host = domain.strip().lower().rstrip(".")
        registrable = _registrable_domain_guess(host)
        for brand in p.watched_brands:
            b = brand.lower()
            if b not in host:
                continue
            if registrable in {f"{b}.{tld}" for tld in p.brand_tlds}:
                continue
            score -= p.brand_penalty
            findings.append(Finding(
                type="typosquatting",
                severity="high",
                description=f"Possible typosquatting of {brand}",
            ))

        if not url.lower().startswith(p.secure_scheme_prefix):
            score -= p.insecure_scheme_penalty
            findings.append(Finding(
                type="suspicious_domain",
                severity="medium",
                description="Website does not use HTTPS encryption",
            ))

        final_score = clamp_score(score)
        level = level_from_score(final_score)
        return WebsiteAnalysis(
            url=url,
            domain=domain,
            risk_score=final_score,
            risk_level=level,
            findings=findings,
            is_blocked=level == "danger",
            analysis_source="heuristic",
            scanned_at=scanned_at or _now_iso(),
        )

    # ---- Contracts ----

    def is_known_contract(self, address: str) -> bool:
        return self.policy.known_token(address) is not None

    def score_contract(self, address: str, chain: str, scanned_at: str | None = None) -> ContractAnalysis:
        p = self.policy
        known = p.known_token(address)
        if known is not None:
            return ContractAnalysis(
                address=address,
                chain=chain,
                name=known.name,
                risk_score=p.known_contract_score,
                risk_level=level_from_score(p.known_contract_score),
                findings=[],
                is_verified=True,
                has_owner_privileges=False,
                analysis_source="known_entity",
                scanned_at=scanned_at or _now_iso(),
            )

        return ContractAnalysis(
            address=address,
            chain=chain,
            risk_score=clamp_score(p.default_contract_score),
            risk_level=level_from_score(p.default_contract_score),
            findings=[Finding(
                type="unverified_contract",
                severity="medium",
                description="Contract source code is not verified. Full analysis requires AI or manual review.",
            )],
            is_verified=False,
            has_owner_privileges=True,
            analysis_source="heuristic",
            scanned_at=scanned_at or _now_iso(),
        )

    # ---- Tokens ----

    def score_token(self, address: str, chain: str, scanned_at: str | None = None) -> TokenAnalysis:
        p = self.policy
        known = p.known_token(address)
        if known is not None:
            return TokenAnalysis(
                address=address,
                chain=chain,
                name=known.name,
                symbol=known.symbol,
                risk_score=known.risk_score,
                risk_level=level_from_score(known.risk_score),
                findings=[],
                liquidity_locked=True,
                liquidity_amount="High",
                lock_duration="Permanent",
                ownership_renounced=True,
                buy_tax=0,
                sell_tax=0,
                is_honeypot=False,
                top_holders_concentration=p.known_top_holders_concentration,
                analysis_source="known_entity",
                scanned_at=scanned_at or _now_iso(),
            )

        return TokenAnalysis(
            address=address,
            chain=chain,
            risk_score=clamp_score(p.default_token_score),
            risk_level=level_from_score(p.default_token_score),
            findings=[Finding(
                type="unverified_token",
                severity="medium",
                description="Token facts could not be verified. Check liquidity lock and ownership manually.",
            )],
            buy_tax=0,
            sell_tax=0,
            is_honeypot=False,
            top_holders_concentration=p.default_top_holders_concentration,
            analysis_source="heuristic",
            scanned_at=scanned_at or _now_iso(),
        )

    # ---- Transactions ----

    def simulate_transaction_fallback(self) -> dict:
        return {
            "safe": False,
            "risk_score": clamp_score(self.policy.missing_score_default),
            "warnings": [
                "AI simulation unavailable - cannot verify transaction safety",
                "Manual review required before execution",
                "Check contract functions and permissions carefully",
                "Verify token amounts and recipient addresses",
                "Start with small test transaction if proceeding",
            ],
            "analysis": (
                "Transaction simulation is temporarily unavailable. Review the recipient, "
                "token amounts, called functions and gas limits manually before proceeding."
            ),
        }
