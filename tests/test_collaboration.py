"""CollaborationRound: ordering, fallbacks, questions and consensus."""

import asyncio

import pytest

from advisor_council.harness.session import Phase, Session, SourceTag, UserContext
from advisor_council.llm.generator import TextGenerator
from advisor_council.llm.prompts import DefaultPromptBuilder
from advisor_council.orchestration.collaboration import CollaborationRound
from advisor_council.orchestration.events import ExpertThinking
from advisor_council.orchestration.expert_panel import ExpertPanel
from advisor_council.orchestration.retry import RetryExecutor

from conftest import MockBackend, council_responder, expert_name


def collaboration_session(*experts: str) -> Session:
    session = Session(
        id="session-collab",
        user_id="u1",
        started_at=0.0,
        context=UserContext(project_description="A marketplace for local artists"),
    )
    session.advance(Phase.TEAM_ASSEMBLY)
    session.fix_team(experts)
    session.advance(Phase.COLLABORATION)
    return session


@pytest.fixture
def make_round(keywords, clock, config, events):
    def _make(responder) -> CollaborationRound:
        generator = TextGenerator(MockBackend(responder, name="primary"))
        return CollaborationRound(
            generator,
            DefaultPromptBuilder(),
            ExpertPanel(keywords),
            RetryExecutor(sleep=clock.sleep, jitter=lambda a, b: 0.0),
            keywords,
            events,
            config,
        )

    return _make


class TestCollaborationRound:
    @pytest.mark.asyncio
    async def test_entries_in_selection_order_regardless_of_finish_order(self, make_round):
        delays = {"Backend Specialist": 0.05, "Frontend Specialist": 0.0, "Database Expert": 0.02}

        async def responder(prompt):
            name = expert_name(prompt)
            await asyncio.sleep(delays[name])
            return f"{name} says hello."

        session = collaboration_session(
            "backend-specialist", "frontend-specialist", "database-specialist"
        )
        outcome = await make_round(responder).run(session, 1)

        assert [e.expert_id for e in outcome.entries] == [
            "backend-specialist",
            "frontend-specialist",
            "database-specialist",
        ]
        assert all(e.round == 1 and e.phase == Phase.COLLABORATION for e in outcome.entries)
        assert outcome.fallback_count == 0

    @pytest.mark.asyncio
    async def test_exhausted_expert_gets_fallback_others_unaffected(self, make_round, clock):
        base = council_responder()

        def responder(prompt):
            if expert_name(prompt) == "Frontend Specialist":
                raise RuntimeError("overloaded")
            return base(prompt)

        session = collaboration_session("backend-specialist", "frontend-specialist")
        outcome = await make_round(responder).run(session, 1)

        backend, frontend = outcome.entries
        assert backend.source_tag == SourceTag.GENERATED
        assert frontend.source_tag == SourceTag.FALLBACK
        assert "React" in frontend.text
        assert outcome.fallback_count == 1
        assert clock.sleeps == [1.0]

    @pytest.mark.asyncio
    async def test_round_does_not_modify_session(self, make_round):
        session = collaboration_session("backend-specialist", "frontend-specialist")
        await make_round(council_responder()).run(session, 1)
        assert session.messages == ()

    @pytest.mark.asyncio
    async def test_question_to_user_detected(self, make_round):
        responder = council_responder({
            "Frontend Specialist": "User, would you prefer a native feel or a web feel?",
        })
        session = collaboration_session("backend-specialist", "frontend-specialist")
        outcome = await make_round(responder).run(session, 1)

        assert outcome.question_from == "frontend-specialist"
        assert outcome.question.startswith("User,")

    @pytest.mark.asyncio
    async def test_no_question_in_plain_round(self, make_round):
        session = collaboration_session("backend-specialist", "frontend-specialist")
        outcome = await make_round(council_responder()).run(session, 1)
        assert outcome.question_from is None
        assert not outcome.consensus

    @pytest.mark.asyncio
    async def test_consensus_when_all_experts_name_same_category(self, make_round):
        responder = council_responder({
            "Backend Specialist": "Serve the API with Node.js and Express.",
            "Frontend Specialist": "React on the client, Express behind it.",
        })
        session = collaboration_session("backend-specialist", "frontend-specialist")
        outcome = await make_round(responder).run(session, 2)

        assert outcome.consensus
        assert outcome.consensus_category == "node"

    @pytest.mark.asyncio
    async def test_no_consensus_below_threshold(self, make_round):
        responder = council_responder({
            "Backend Specialist": "Use PostgreSQL.",
            "Frontend Specialist": "Use PostgreSQL too.",
            "Database Expert": "MongoDB fits the documents better.",
        })
        session = collaboration_session(
            "backend-specialist", "frontend-specialist", "database-specialist"
        )
        outcome = await make_round(responder).run(session, 1)
        assert not outcome.consensus

    @pytest.mark.asyncio
    async def test_thinking_announced_for_every_expert(self, make_round, recorded):
        session = collaboration_session("backend-specialist", "frontend-specialist")
        await make_round(council_responder()).run(session, 3)

        thinking = [e for e in recorded if isinstance(e, ExpertThinking)]
        assert [e.expert_id for e in thinking] == ["backend-specialist", "frontend-specialist"]
        assert all(e.round == 3 for e in thinking)
