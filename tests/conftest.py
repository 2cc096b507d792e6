"""
Pytest configuration and fixtures for the CryptoShield agent.

Every test gets fresh stores: nothing here is module-global, so results never
leak between test cases.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict
from unittest.mock import AsyncMock, MagicMock

import pytest

from cryptoshield_agent.activity import ActivityRecorder
from cryptoshield_agent.cache import ResultCache
from cryptoshield_agent.heuristics import HeuristicEngine
from cryptoshield_agent.model_client import ModelClient
from cryptoshield_agent.orchestrator import AnalysisOrchestrator
from cryptoshield_agent.settings import HeuristicPolicy


MATIC = "0x7D1AfA7B718fb893dB30A3aBc0Cfc608AaCfeBB0"
UNKNOWN_CONTRACT = "0xABCDEFabcdef0123456789abcdefABCDEF012345"
WALLET = "0x1111111111111111111111111111111111111111"
FIXED_SCAN_TIME = "2026-10-18T12:00:00+00:00"


class FakeClock:
    """Monotonic test clock returning epoch seconds."""

    def __init__(self, start: float = 1_792_324_800.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def as_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.now, tz=timezone.utc)


# =============================================================================
# BUILDING BLOCKS
# =============================================================================

@pytest.fixture
def policy() -> HeuristicPolicy:
    return HeuristicPolicy()


@pytest.fixture
def engine(policy: HeuristicPolicy) -> HeuristicEngine:
    return HeuristicEngine(policy)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recorder(clock: FakeClock) -> ActivityRecorder:
    return ActivityRecorder(safety_window=20, clock=clock.as_datetime)


@pytest.fixture
def offline_client() -> ModelClient:
    """A real client with no credential: every call is ModelUnavailable."""
    return ModelClient(api_key="")


@pytest.fixture
def make_fake_client() -> Callable[..., MagicMock]:
    """
    Factory for a scripted model client.

    `reply` may be a dict (returned for every call), an exception instance
    (raised), or an async callable used as side effect.
    """

    def _make(reply: Any = None) -> MagicMock:
        client = MagicMock(spec=ModelClient)
        client.enabled = True
        if isinstance(reply, BaseException) or callable(reply):
            client.call = AsyncMock(side_effect=reply)
        else:
            client.call = AsyncMock(return_value=reply if reply is not None else {})
        return client

    return _make


@pytest.fixture
def make_orchestrator(engine, recorder, clock) -> Callable[..., AnalysisOrchestrator]:
    def _make(model_client: Any) -> AnalysisOrchestrator:
        return AnalysisOrchestrator(
            model_client=model_client,
            heuristics=engine,
            cache=ResultCache(),
            recorder=recorder,
            policy=engine.policy,
            clock=clock,
        )

    return _make


@pytest.fixture
def offline_orchestrator(make_orchestrator, offline_client) -> AnalysisOrchestrator:
    return make_orchestrator(offline_client)


@pytest.fixture
def good_contract_reply() -> Dict[str, Any]:
    return {
        "risk_score": 82,
        "risk_level": "safe",
        "is_verified": True,
        "has_proxy_pattern": False,
        "has_owner_privileges": False,
        "has_mint_function": False,
        "has_pause_function": False,
        "has_blacklist_function": False,
        "honeypot_risk": False,
        "rug_pull_risk": False,
        "issues": [],
    }
