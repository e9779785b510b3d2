"""
Session orchestration -- phases, expert rounds, planning and synthesis.

  SessionStateMachine  owns sessions and drives Discovery -> ... -> Complete
  CollaborationRound   one concurrent round of expert contributions
  PlanningStage        one plan per expert
  SynthesisStage       one unified recommendation (local fallback if needed)

The stages and the state machine are imported from their own modules.
"""
from .events import EventBus, Subscription, event_to_dict
from .expert_panel import CATALOG, ExpertId, ExpertPanel, ExpertProfile
from .keywords import KeywordTables, load_keyword_tables
from .pacing import Clock, Pacer, SystemClock
from .retry import RetryExecutor, with_deadline
