"""Claims agent: routing to the right policy and the eligibility rules."""

import datetime
import re

import pytest

from conftest import ScriptedCompletion
from personalbot.graph.claims import ClaimsAgent
from personalbot.graph.schemas import ClaimCategory

BEFORE_EXPIRY = datetime.date(2026, 10, 19)


@pytest.fixture
def agent(profiles):
    return ClaimsAgent(ScriptedCompletion(), profiles, today=lambda: BEFORE_EXPIRY)


class TestMotorClaims:
    async def test_comprehensive_policy_approves(self, agent):
        claim = await agent.process_claim("I was in a car accident, need to file a claim, damage is about ₹50,000")
        assert re.fullmatch(r"CLM\d+", claim.claim_id)
        assert claim.category == ClaimCategory.MOTOR
        assert claim.status == "Approved"
        assert claim.assessment.amount == 50_000
        assert claim.estimated_settlement == "Estimated settlement time: 5-7 working days"

    async def test_amount_capped_at_idv(self, agent):
        claim = await agent.process_claim("Total loss of my City after a collision, ₹12,00,000")
        assert claim.assessment.amount == 950_000

    async def test_third_party_policy_excludes_own_damage(self, agent):
        claim = await agent.process_claim("Accident damaged my Swift MH04CD5678, repair ₹30,000")
        assert claim.status == "Under Review"
        assert "Third Party" in claim.assessment.reason

    async def test_expired_policy(self, profiles):
        agent = ClaimsAgent(ScriptedCompletion(), profiles, today=lambda: datetime.date(2027, 6, 1))
        claim = await agent.process_claim("Car accident, damage ₹20,000")
        assert claim.status == "Under Review"
        assert claim.assessment.reason == "Policy has expired"


class TestHealthClaims:
    async def test_network_hospital_is_cashless(self, agent):
        claim = await agent.process_claim("Hospital stay at Lilavati Hospital, bill ₹80,000")
        assert claim.status == "Approved"
        assert claim.assessment.next_steps[0] == "Cashless claim approved"
        assert claim.estimated_settlement == "Claim will be settled within 3-5 working days"

    async def test_other_hospital_is_reimbursement(self, agent):
        claim = await agent.process_claim("Surgery at a local clinic hospital, bill ₹60,000")
        assert claim.assessment.next_steps[0] == "Reimbursement claim approved"

    async def test_amount_over_coverage_goes_to_review(self, agent):
        claim = await agent.process_claim("Medical treatment costing ₹25,00,000")
        assert claim.status == "Under Review"
        assert "exceeds policy coverage" in claim.assessment.reason


class TestLifeClaims:
    async def test_always_manual_review(self, agent):
        claim = await agent.process_claim("Death claim for the policy holder")
        assert claim.category == ClaimCategory.LIFE
        assert claim.status == "Under Review"
        assert "Death certificate (original)" in claim.assessment.required_documents


class TestModelRefinement:
    async def test_unknown_claims_ask_the_model(self, profiles):
        completion = ScriptedCompletion(claim_classifier={"category": "health"})
        agent = ClaimsAgent(completion, profiles, today=lambda: BEFORE_EXPIRY)
        claim = await agent.process_claim("Fractured my wrist, ₹40,000 spent")
        assert [name for name, _ in completion.calls] == ["claim_classifier"]
        assert claim.category == ClaimCategory.HEALTH

    async def test_keyword_match_skips_the_model(self, profiles):
        completion = ScriptedCompletion()
        agent = ClaimsAgent(completion, profiles, today=lambda: BEFORE_EXPIRY)
        await agent.process_claim("Car accident, ₹10,000")
        assert completion.calls == []

    async def test_model_failure_leaves_claim_unrouted(self, profiles):
        completion = ScriptedCompletion(claim_classifier=RuntimeError("provider down"))
        agent = ClaimsAgent(completion, profiles, today=lambda: BEFORE_EXPIRY)
        claim = await agent.process_claim("Something broke")
        assert claim.category == ClaimCategory.UNKNOWN
        assert claim.status == "Under Review"
        assert claim.assessment.reason == "No valid policy found for this claim type"


async def test_unexpected_error_returns_fallback_claim(agent, monkeypatch):
    def explode(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(agent, "assess", explode)
    claim = await agent.process_claim("Car accident, ₹10,000")
    assert claim.status == "Error"
    assert re.fullmatch(r"CLM\d+", claim.claim_id)
    assert claim.assessment.next_steps == ["Please contact customer support"]
