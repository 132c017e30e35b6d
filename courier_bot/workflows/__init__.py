from .conversation_workflow import DialogueController, parse_search_command
from .label_parser import normalize_link_label
from .search_session import ConversationSession, ConversationStage, SessionStore

__all__ = [
    "DialogueController",
    "parse_search_command",
    "normalize_link_label",
    "ConversationSession",
    "ConversationStage",
    "SessionStore",
]
