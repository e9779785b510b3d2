"""Session data model: phases, messages, user context, plans and synthesis."""
from .session import (
    PHASE_ORDER,
    ExpertMessage,
    Message,
    OrchestratorMessage,
    Phase,
    Plan,
    Session,
    SessionOptions,
    SourceTag,
    Synthesis,
    SystemMessage,
    UserContext,
    UserMessage,
    message_to_dict,
)
