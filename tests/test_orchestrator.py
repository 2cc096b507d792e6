"""
Unit tests for the analysis pipeline: cache, model attempt, field-level
repair, heuristic fallback, normalization and activity recording.
"""

import asyncio

import pytest

from conftest import MATIC, UNKNOWN_CONTRACT, WALLET
from cryptoshield_agent.errors import ModelUnavailable
from cryptoshield_agent.models import ContractSubject, WebsiteSubject
from cryptoshield_agent.orchestrator import ModelDefaulted
from cryptoshield_agent.taxonomy import level_from_score


def run(coro):
    return asyncio.run(coro)


class TestCacheCheck:

    @pytest.mark.unit
    def test_second_call_within_window_is_cached(self, make_orchestrator, make_fake_client, good_contract_reply):
        client = make_fake_client(good_contract_reply)
        orch = make_orchestrator(client)

        first = run(orch.analyze_contract(UNKNOWN_CONTRACT))
        second = run(orch.analyze_contract(UNKNOWN_CONTRACT))

        assert client.call.await_count == 1
        assert first.model_dump_json() == second.model_dump_json()

    @pytest.mark.unit
    def test_checksum_variants_share_the_cache(self, make_orchestrator, make_fake_client, good_contract_reply):
        client = make_fake_client(good_contract_reply)
        orch = make_orchestrator(client)

        run(orch.analyze_contract("0xABCDEFABCDEF0123456789ABCDEFABCDEF012345"))
        run(orch.analyze_contract("0xabcdefabcdef0123456789abcdefabcdef012345"))

        assert client.call.await_count == 1
        assert orch.cache.get_contract_analysis_by_address("0xAbCdEfAbCdEf0123456789aBcDeFaBcDeF012345") is not None

    @pytest.mark.unit
    def test_stale_entry_is_reanalyzed(self, make_orchestrator, make_fake_client, clock):
        client = make_fake_client({"risk_score": 90, "threats": [], "is_blocked": False})
        orch = make_orchestrator(client)

        run(orch.analyze_website("https://app.example.org", "app.example.org"))
        clock.advance(3600 + 1)
        run(orch.analyze_website("https://app.example.org", "app.example.org"))

        assert client.call.await_count == 2

    @pytest.mark.unit
    def test_contracts_stay_fresh_for_a_day(self, make_orchestrator, make_fake_client, good_contract_reply, clock):
        client = make_fake_client(good_contract_reply)
        orch = make_orchestrator(client)

        run(orch.analyze_contract(UNKNOWN_CONTRACT))
        clock.advance(23 * 3600)
        run(orch.analyze_contract(UNKNOWN_CONTRACT))
        assert client.call.await_count == 1

        clock.advance(2 * 3600)
        run(orch.analyze_contract(UNKNOWN_CONTRACT))
        assert client.call.await_count == 2

    @pytest.mark.unit
    def test_concurrent_misses_share_one_model_call(self, make_orchestrator, make_fake_client, good_contract_reply):
        async def slow_reply(kind, subject):
            await asyncio.sleep(0.01)
            return dict(good_contract_reply)

        client = make_fake_client(slow_reply)
        orch = make_orchestrator(client)

        async def both():
            return await asyncio.gather(
                orch.analyze_contract(UNKNOWN_CONTRACT),
                orch.analyze_contract(UNKNOWN_CONTRACT.lower()),
            )

        a, b = run(both())
        assert client.call.await_count == 1
        assert a.risk_score == b.risk_score == 82
        assert a is not b


class TestModelPath:

    @pytest.mark.unit
    def test_accepted_contract(self, make_orchestrator, make_fake_client, good_contract_reply):
        orch = make_orchestrator(make_fake_client(good_contract_reply))
        result = run(orch.analyze_contract(UNKNOWN_CONTRACT, "ethereum"))

        assert result.analysis_source == "ai"
        assert result.risk_score == 82
        assert result.risk_level == "safe"
        assert result.chain == "ethereum"
        assert result.is_verified is True
        assert result.has_owner_privileges is False

    @pytest.mark.unit
    def test_inconsistent_level_is_recomputed(self, make_orchestrator, make_fake_client):
        """A model claiming 'safe' with a score of 20 still yields danger."""
        orch = make_orchestrator(make_fake_client({
            "risk_score": 20,
            "risk_level": "safe",
            "threats": [{"type": "phishing", "severity": "critical", "description": "Fake claim page"}],
            "is_blocked": False,
        }))
        result = run(orch.analyze_website("https://claim.example", "claim.example"))

        assert result.risk_level == "danger"
        assert result.is_blocked is True
        assert result.findings[0].type == "phishing"
        assert result.findings[0].severity == "critical"

    @pytest.mark.unit
    def test_missing_score_defaults_to_fifty(self, make_orchestrator, make_fake_client, good_contract_reply):
        reply = dict(good_contract_reply)
        del reply["risk_score"]
        result = run(make_orchestrator(make_fake_client(reply)).analyze_contract(UNKNOWN_CONTRACT))

        assert result.risk_score == 50
        assert result.risk_level == "warning"
        assert result.analysis_source == "ai"

    @pytest.mark.unit
    @pytest.mark.parametrize("raw,expected", [("73", 73), (99.6, 100), (140, 100), (-5, 0), ("high", 50), (None, 50), (True, 50)])
    def test_score_coercion(self, make_orchestrator, make_fake_client, good_contract_reply, raw, expected):
        reply = dict(good_contract_reply, risk_score=raw)
        result = run(make_orchestrator(make_fake_client(reply)).analyze_contract(UNKNOWN_CONTRACT))
        assert result.risk_score == expected
        assert result.risk_level == level_from_score(expected)

    @pytest.mark.unit
    def test_huge_integer_fields_do_not_escape(self, make_orchestrator, make_fake_client):
        """A 400-digit score or percentage is clamped, not raised."""
        huge = int("1" + "0" * 400)
        orch = make_orchestrator(make_fake_client({
            "risk_score": huge,
            "buy_tax": huge,
            "sell_tax": -huge,
            "top_holders_concentration": huge,
        }))
        result = run(orch.analyze_token(UNKNOWN_CONTRACT))

        assert result.risk_score == 100
        assert result.risk_level == "safe"
        assert result.buy_tax == 100
        assert result.sell_tax == 0
        assert result.top_holders_concentration == 100

    @pytest.mark.unit
    def test_mistyped_field_keeps_useful_score(self, make_orchestrator, make_fake_client, good_contract_reply):
        """One bad boolean is defaulted; the model's score survives."""
        reply = dict(good_contract_reply, has_owner_privileges="maybe", is_verified="true")
        reply.pop("honeypot_risk")
        result = run(make_orchestrator(make_fake_client(reply)).analyze_contract(UNKNOWN_CONTRACT))

        assert result.risk_score == 82
        assert result.has_owner_privileges is True
        assert result.is_verified is True
        assert result.honeypot_risk is False

    @pytest.mark.unit
    def test_defaulted_outcome_lists_fields(self, make_orchestrator, make_fake_client):
        orch = make_orchestrator(make_fake_client({}))
        subject = ContractSubject(address=UNKNOWN_CONTRACT, chain="polygon")
        outcome = orch._from_model("contract", subject, {"risk_score": 60, "is_verified": 1}, "2026-10-18T00:00:00+00:00")

        assert isinstance(outcome, ModelDefaulted)
        assert "is_verified" in outcome.missing_fields
        assert "risk_score" not in outcome.missing_fields
        assert outcome.result.risk_score == 60

    @pytest.mark.unit
    def test_token_reply_normalized(self, make_orchestrator, make_fake_client):
        orch = make_orchestrator(make_fake_client({
            "risk_score": 30,
            "name": "Moon",
            "symbol": "MOON",
            "liquidity_locked": False,
            "buy_tax": "12%",
            "sell_tax": 25,
            "is_honeypot": True,
            "top_holders_concentration": 180,
        }))
        result = run(orch.analyze_token(UNKNOWN_CONTRACT))

        assert result.symbol == "MOON"
        assert result.buy_tax == 12
        assert result.top_holders_concentration == 100
        assert result.lock_duration == "Unknown"
        types = {f.type for f in result.findings}
        assert {"honeypot_risk", "unlocked_liquidity", "high_tax"} <= types

    @pytest.mark.unit
    def test_findings_are_repaired(self, make_orchestrator, make_fake_client):
        orch = make_orchestrator(make_fake_client({
            "risk_score": 45,
            "threats": [
                {"type": "Typosquatting", "severity": "SEVERE", "description": "Lookalike of uniswap"},
                {"type": "fake_ui", "severity": "weird", "description": "Copied UI"},
                {"type": "empty"},
                "Mentions free tokens",
                42,
            ],
        }))
        result = run(orch.analyze_website("https://uniswap-app.example", "uniswap-app.example"))

        assert [(f.type, f.severity) for f in result.findings] == [
            ("typosquatting", "high"),
            ("fake_ui", "medium"),
            ("ai_observation", "medium"),
        ]


class TestFallback:

    @pytest.mark.unit
    def test_no_credential_uses_heuristics(self, offline_orchestrator):
        result = run(offline_orchestrator.analyze_website(
            "https://metamask-unlock-wallet.net", "metamask-unlock-wallet.net"
        ))
        assert result.analysis_source == "heuristic"
        assert result.risk_score == 35
        assert result.risk_level == "danger"
        assert result.is_blocked is True
        assert result.findings[-1].type == "ai_unavailable"

    @pytest.mark.unit
    def test_model_failure_uses_heuristics(self, make_orchestrator, make_fake_client):
        client = make_fake_client(ModelUnavailable("request failed: 503"))
        result = run(make_orchestrator(client).analyze_contract(UNKNOWN_CONTRACT))

        assert client.call.await_count == 1
        assert result.risk_score == 55
        assert result.risk_level == "warning"
        assert {f.type for f in result.findings} == {"unverified_contract", "ai_unavailable"}

    @pytest.mark.unit
    def test_fallback_is_deterministic(self, offline_orchestrator, clock):
        a = run(offline_orchestrator.analyze_token(UNKNOWN_CONTRACT))
        clock.advance(3601)
        b = run(offline_orchestrator.analyze_token(UNKNOWN_CONTRACT))
        assert a.model_dump(exclude={"scanned_at"}) == b.model_dump(exclude={"scanned_at"})

    @pytest.mark.unit
    @pytest.mark.parametrize("address", [MATIC, MATIC.lower(), MATIC.upper().replace("0X", "0x")])
    def test_matic_shortcut_skips_model(self, make_orchestrator, make_fake_client, address):
        client = make_fake_client({"risk_score": 5, "is_honeypot": True})
        result = run(make_orchestrator(client).analyze_token(address))

        assert client.call.await_count == 0
        assert result.risk_score == 95
        assert result.risk_level == "safe"
        assert result.is_honeypot is False
        assert result.analysis_source == "known_entity"

    @pytest.mark.unit
    def test_level_always_matches_score(self, offline_orchestrator):
        urls = [
            "https://www.example.org",
            "http://www.example.org",
            "https://claim-now.example",
            "http://free-token-airdrop.xyz",
        ]
        for url in urls:
            host = url.split("://", 1)[1]
            result = run(offline_orchestrator.analyze_website(url, host))
            assert result.risk_level == level_from_score(result.risk_score), url


class TestRecording:

    @pytest.mark.unit
    def test_safe_result_records_nothing(self, offline_orchestrator):
        run(offline_orchestrator.analyze_token(MATIC, wallet_address=WALLET))
        assert offline_orchestrator.recorder.get_logs(WALLET) == []

    @pytest.mark.unit
    def test_warning_result_records_once(self, offline_orchestrator):
        run(offline_orchestrator.analyze_contract(UNKNOWN_CONTRACT, wallet_address=WALLET))
        logs = offline_orchestrator.recorder.get_logs(WALLET)
        assert len(logs) == 1
        assert logs[0].action_type == "contract_flagged"
        assert logs[0].target_address == UNKNOWN_CONTRACT.lower()

    @pytest.mark.unit
    def test_no_wallet_no_record(self, offline_orchestrator):
        run(offline_orchestrator.analyze_contract(UNKNOWN_CONTRACT))
        assert offline_orchestrator.recorder.get_logs(WALLET) == []

    @pytest.mark.unit
    def test_mismatched_kind_rejected(self, offline_orchestrator):
        with pytest.raises(ValueError):
            run(offline_orchestrator.analyze("contract", WebsiteSubject(url="https://a.io", domain="a.io")))


class TestTransactionSimulation:

    @pytest.mark.unit
    def test_fallback_is_conservative(self, offline_orchestrator):
        sim = run(offline_orchestrator.simulate_transaction(WALLET, UNKNOWN_CONTRACT, wallet_address=WALLET))

        assert sim.safe is False
        assert sim.risk_score == 50
        assert sim.risk_level == "warning"
        assert sim.analysis_source == "heuristic"
        assert sim.token_loss == "Unknown - Review warnings"
        logs = offline_orchestrator.recorder.get_logs(WALLET)
        assert [e.action_type for e in logs] == ["transaction_blocked"]
        assert offline_orchestrator.recorder.get_daily_report(WALLET).transactions_scanned == 1

    @pytest.mark.unit
    def test_model_verdict(self, make_orchestrator, make_fake_client):
        client = make_fake_client({"safe": True, "risk_score": 92, "warnings": [], "analysis": "Plain transfer."})
        orch = make_orchestrator(client)
        sim = run(orch.simulate_transaction(WALLET, UNKNOWN_CONTRACT, "0xa9059cbb", wallet_address=WALLET))

        assert sim.safe is True
        assert sim.token_loss == "0"
        assert sim.analysis_source == "ai"
        assert orch.recorder.get_logs(WALLET) == []
        assert client.call.await_args.args[0] == "transaction"

    @pytest.mark.unit
    def test_danger_score_overrides_safe_flag(self, make_orchestrator, make_fake_client):
        client = make_fake_client({"safe": True, "risk_score": 10, "warnings": ["Unlimited approval"], "analysis": "x"})
        sim = run(make_orchestrator(client).simulate_transaction(WALLET, UNKNOWN_CONTRACT))
        assert sim.safe is False
        assert sim.risk_level == "danger"

    @pytest.mark.unit
    def test_not_cached(self, make_orchestrator, make_fake_client):
        client = make_fake_client({"safe": True, "risk_score": 92, "warnings": [], "analysis": "ok"})
        orch = make_orchestrator(client)
        run(orch.simulate_transaction(WALLET, UNKNOWN_CONTRACT))
        run(orch.simulate_transaction(WALLET, UNKNOWN_CONTRACT))
        assert client.call.await_count == 2


class TestPrune:

    @pytest.mark.unit
    def test_prune_drops_only_stale_entries(self, offline_orchestrator, clock):
        run(offline_orchestrator.analyze_website("https://www.example.org", "www.example.org"))
        run(offline_orchestrator.analyze_contract(UNKNOWN_CONTRACT))
        clock.advance(2 * 3600)

        assert offline_orchestrator.prune() == 1
        assert offline_orchestrator.cache.get_website_scan_by_url("https://www.example.org") is None
        assert offline_orchestrator.cache.get_contract_analysis_by_address(UNKNOWN_CONTRACT) is not None
