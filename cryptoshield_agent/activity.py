from __future__ import annotations

import asyncio
import logging
import uuid
from collections import Counter, defaultdict, deque
from datetime import datetime, timezone
from typing import Callable

from .models import ActionType, AnalyticsSummary, CountBucket, DailyReport, ProtectionLogEntry
from .taxonomy import MAX_SCORE, MIN_SCORE, RiskLevel

logger = logging.getLogger(__name__)


_ACTION_FOR_KIND: dict[str, ActionType] = {
    "website": "website_blocked",
    "contract": "contract_flagged",
    "token": "token_warning",
    "transaction": "transaction_blocked",
}

_COUNTER_FOR_KIND: dict[str, str] = {
    "website": "risky_sites_blocked",
    "contract": "contracts_flagged",
    "token": "tokens_analyzed",
    "transaction": "transactions_scanned",
}

_LABEL_FOR_KIND = {
    "website": "Website",
    "contract": "Contract",
    "token": "Token",
    "transaction": "Transaction",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_address(identity: str) -> bool:
    return identity.lower().startswith("0x")


def _headline(result) -> str | None:
    findings = getattr(result, "findings", None)
    if findings:
        return findings[0].description
    warnings = getattr(result, "warnings", None)
    if warnings:
        return warnings[0]
    return None


def _describe(kind: str, identity: str, level: RiskLevel, detail: str | None) -> str:
    label = _LABEL_FOR_KIND.get(kind, kind.capitalize())
    verb = "blocked" if level == "danger" else "flagged"
    text = f"{label} {verb}: {identity}"
    if detail:
        text += f" ({detail})"
    return text


class ActivityRecorder:
    """Owns the protection log and the per-wallet daily counters.

    Only warning and danger results leave a trace; safe ones are ignored.
    Counter updates for one wallet are serialized with a per-wallet lock.
    """

    def __init__(self, *, safety_window: int = 20, clock: Callable[[], datetime] = _utcnow):
        self.safety_window = max(1, int(safety_window))
        self._clock = clock
        self._logs: dict[str, list[ProtectionLogEntry]] = defaultdict(list)
        self._reports: dict[tuple[str, str], DailyReport] = {}
        self._recent_scores: dict[tuple[str, str], deque[int]] = {}
        # A wallet's lock lives only while some record() call holds or waits on it.
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: Counter[str] = Counter()

    def _lock_for(self, wallet_key: str) -> asyncio.Lock:
        lock = self._locks.get(wallet_key)
        if lock is None:
            lock = self._locks[wallet_key] = asyncio.Lock()
        self._lock_users[wallet_key] += 1
        return lock

    def _release_lock(self, wallet_key: str) -> None:
        self._lock_users[wallet_key] -= 1
        if self._lock_users[wallet_key] <= 0:
            del self._lock_users[wallet_key]
            self._locks.pop(wallet_key, None)

    def _today(self) -> str:
        return self._clock().date().isoformat()

    def _report_for(self, wallet_address: str, day: str) -> DailyReport:
        key = (wallet_address.lower(), day)
        report = self._reports.get(key)
        if report is None:
            report = self._reports[key] = DailyReport(wallet_address=wallet_address, date=day)
        return report

    async def record(
        self,
        wallet_address: str,
        kind: str,
        subject_identity: str,
        result,
        tx_hash: str | None = None,
    ) -> ProtectionLogEntry | None:
        """Log a warning/danger result and bump the wallet's counters for today.

        `result` is any analysis carrying risk_score and risk_level (website,
        contract, token or transaction simulation).
        """
        risk_score: int = result.risk_score
        risk_level: RiskLevel = result.risk_level
        if risk_level == "safe":
            return None
        detail = _headline(result)

        wallet_key = wallet_address.lower()
        lock = self._lock_for(wallet_key)
        try:
            async with lock:
                now = self._clock()
                entry = ProtectionLogEntry(
                    id=str(uuid.uuid4()),
                    wallet_address=wallet_address,
                    action_type=_ACTION_FOR_KIND[kind],
                    target_address=subject_identity if _is_address(subject_identity) else None,
                    target_url=None if _is_address(subject_identity) else subject_identity,
                    risk_score=risk_score,
                    risk_level=risk_level,
                    description=_describe(kind, subject_identity, risk_level, detail),
                    timestamp=now.isoformat(),
                    tx_hash=tx_hash,
                )
                self._logs[wallet_key].append(entry)

                day = now.date().isoformat()
                report = self._report_for(wallet_address, day)
                counter = _COUNTER_FOR_KIND.get(kind)
                if counter:
                    setattr(report, counter, getattr(report, counter) + 1)
                if risk_level == "danger":
                    report.threats_blocked += 1

                scores = self._recent_scores.setdefault((wallet_key, day), deque(maxlen=self.safety_window))
                scores.append(risk_score)
                avg = round(sum(scores) / len(scores))
                report.overall_safety_score = max(MIN_SCORE, min(MAX_SCORE, avg))
        finally:
            self._release_lock(wallet_key)

        logger.debug("Recorded %s for %s (score=%d)", entry.action_type, wallet_address, risk_score)
        return entry

    def get_logs(self, wallet_address: str) -> list[ProtectionLogEntry]:
        """Newest first; entries with the same timestamp keep latest-appended first."""
        entries = list(reversed(self._logs.get(wallet_address.lower(), [])))
        entries.sort(key=lambda e: e.timestamp, reverse=True)
        return [e.model_copy() for e in entries]

    def get_daily_report(self, wallet_address: str, day: str | None = None) -> DailyReport:
        return self._report_for(wallet_address, day or self._today()).model_copy()

    def summarize(self, wallet_address: str) -> AnalyticsSummary:
        report = self.get_daily_report(wallet_address)
        logs = self.get_logs(wallet_address)
        action_counts = Counter(e.action_type for e in logs)
        level_counts = Counter(e.risk_level for e in logs)
        return AnalyticsSummary(
            wallet_address=wallet_address,
            total_scans=(
                report.risky_sites_blocked
                + report.contracts_flagged
                + report.tokens_analyzed
                + report.transactions_scanned
            ),
            threats_blocked=report.threats_blocked,
            contracts_analyzed=report.contracts_flagged,
            tokens_checked=report.tokens_analyzed,
            safety_score=report.overall_safety_score,
            threat_types=[CountBucket(name=k, count=v) for k, v in action_counts.most_common()],
            risk_distribution=[CountBucket(name=lvl, count=level_counts.get(lvl, 0)) for lvl in ("warning", "danger")],
        )
