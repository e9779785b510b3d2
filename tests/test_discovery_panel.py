"""Discovery fact extraction, readiness, and expert panel selection."""

import pytest

from advisor_council.harness.session import Phase, Session, UserContext, UserMessage
from advisor_council.orchestration.discovery import (
    detect_project_type,
    extract_facts,
    is_ready,
)
from advisor_council.orchestration.expert_panel import ExpertId, ExpertPanel
from advisor_council.orchestration.keywords import contains_word


def make_session(description: str, *turns: str) -> Session:
    session = Session(
        id="session-test",
        user_id="u1",
        started_at=0.0,
        context=UserContext(project_description=description),
    )
    for text in (description, *turns):
        session.record(UserMessage(text=text, phase=Phase.DISCOVERY))
    return session


class TestWordMatching:
    def test_whole_words_only(self):
        assert contains_word("An AI assistant", "ai")
        assert not contains_word("Send an email", "ai")
        assert contains_word("Built with Node.js", "node.js")

    def test_multi_word_phrase(self):
        assert contains_word("We use machine learning", "machine learning")


class TestExtractFacts:
    def test_timeline_constraints_and_concerns(self, keywords):
        context = UserContext(project_description="x")
        added = extract_facts(
            context,
            "I want to launch in 3 months, it's just me, and security matters",
            keywords,
        )

        assert context.timeline == "3 months"
        assert context.constraints == ["Solo development"]
        assert context.concerns == ["Security requirements"]
        assert "timeline: 3 months" in added

    def test_singular_timeline(self, keywords):
        context = UserContext(project_description="x")
        extract_facts(context, "We have 1 year", keywords)
        assert context.timeline == "1 year"

    def test_team_development_suppressed_when_solo(self, keywords):
        context = UserContext(project_description="x")
        extract_facts(context, "A team of one, I'm working solo", keywords)
        assert "Team development" not in context.constraints
        assert "Solo development" in context.constraints

    def test_facts_accumulate_without_duplicates(self, keywords):
        context = UserContext(project_description="x")
        extract_facts(context, "budget is tight, 2 weeks", keywords)
        again = extract_facts(context, "budget still tight, maybe 6 months", keywords)

        assert context.constraints == ["Budget conscious"]
        assert context.timeline == "2 weeks"
        assert again == []

    def test_target_users_first_match_wins(self, keywords):
        context = UserContext(project_description="x")
        extract_facts(context, "For young people and business owners", keywords)
        assert context.target_users == "Gen Z users"


class TestReadiness:
    def test_single_turn_never_ready(self, keywords):
        session = make_session("A payments app")
        extract_facts(session.context, "Launch in 3 months", keywords)
        assert not is_ready(session)

    def test_two_turns_with_fact_ready(self, keywords):
        session = make_session("A payments app", "Launch in 3 months")
        extract_facts(session.context, "Launch in 3 months", keywords)
        assert is_ready(session)

    def test_two_turns_without_fact_not_ready(self):
        session = make_session("A thing", "Hmm, not sure")
        assert not is_ready(session)

    def test_four_turns_always_ready(self):
        session = make_session("A thing", "hmm", "well", "okay")
        assert is_ready(session)


class TestProjectType:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("An online store for sneakers", "ecommerce"),
            ("An Android app for runners", "mobile"),
            ("A REST backend for invoices", "api"),
            ("Something unusual", "general"),
        ],
    )
    def test_detect(self, keywords, text, expected):
        assert detect_project_type(text, keywords) == expected


class TestExpertPanel:
    def test_baseline_pair_for_plain_description(self, keywords):
        panel = ExpertPanel(keywords)
        experts = panel.select(UserContext(project_description="A recipe website"))
        assert experts == (ExpertId.BACKEND.value, ExpertId.FRONTEND.value)

    def test_payments_app_selects_security_and_mobile(self, keywords):
        context = UserContext(project_description="A payments app for students")
        extract_facts(context, context.project_description, keywords)

        decision = ExpertPanel(keywords).route(context)

        assert decision.experts == (
            "backend-specialist",
            "frontend-specialist",
            "security-specialist",
            "mobile-specialist",
        )
        assert decision.reasons["security-specialist"] == "word: payments"
        assert decision.reasons["mobile-specialist"] == "priority: Mobile-first"

    def test_capped_at_four_in_table_order(self, keywords):
        context = UserContext(
            project_description="A complex payments platform with analytics and ML"
        )
        experts = ExpertPanel(keywords).select(context)
        assert experts == (
            "backend-specialist",
            "frontend-specialist",
            "security-specialist",
            "system-architect",
        )

    def test_max_experts_option(self, keywords):
        context = UserContext(project_description="A payments app")
        assert len(ExpertPanel(keywords).select(context, max_experts=2)) == 2
        assert len(ExpertPanel(keywords).select(context, max_experts=9)) <= 4

    def test_concern_triggers_specialist(self, keywords):
        context = UserContext(project_description="A tool")
        context.add_concern("Scaling challenges")
        assert "system-architect" in ExpertPanel(keywords).select(context)

    def test_no_duplicates(self, keywords):
        context = UserContext(project_description="A secure payments login flow")
        extract_facts(context, context.project_description, keywords)
        experts = ExpertPanel(keywords).select(context)
        assert len(experts) == len(set(experts))

    def test_unknown_expert_gets_generic_profile(self, keywords):
        panel = ExpertPanel(keywords)
        assert panel.display_name("qa-lead") == "Qa Lead"
        assert panel.display_name("security-specialist") == "Security Expert"
        assert len(panel.catalog()) == 8
