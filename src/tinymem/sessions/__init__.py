"""Session lifecycle and human rendezvous."""

from .lifecycle import DEFAULT_LOG_LIMIT, PRE_TOOL_KIND, SUMMARY_ROLE, SessionManager
from .rendezvous import AskTimeoutError, Rendezvous

__all__ = [
    "AskTimeoutError",
    "DEFAULT_LOG_LIMIT",
    "PRE_TOOL_KIND",
    "Rendezvous",
    "SUMMARY_ROLE",
    "SessionManager",
]
