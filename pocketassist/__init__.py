"""
pocketassist - a small personal assistant built on pure reducers

A chat with a language model that streams its answers, a calendar free-time
lookup the model can call as a tool, and a one-paragraph summary of the last
day of mail. Each workflow is a reducer folded by a single-consumer loop;
adapters perform the effects and talk back with actions.
"""

__version__ = "0.1.0"

# Core abstractions
from pocketassist.model import (
    ActionBase,
    Adapter,
    Analytics,
    EffectBase,
    Haptic,
    Reducer,
    StateBase,
    is_side_channel,
)

# Errors
from pocketassist.errors import (
    AuthenticationRequired,
    DecodingError,
    HttpError,
    PermissionDenied,
    PocketAssistError,
    RateLimited,
)

# Loop and effects
from pocketassist.loop import ReducerLoop
from pocketassist.effects import EffectExecutor

# Collaborators
from pocketassist.retry import RetryPolicy, retry_with_backoff
from pocketassist.gmail import Email, GmailClient
from pocketassist.credentials import (
    CredentialProvider,
    OAuthRefreshTokenProvider,
    StaticTokenProvider,
)
from pocketassist.streaming import (
    LanguageModel,
    StreamFailed,
    StreamFinished,
    StreamPartial,
    consume_stream,
)
from pocketassist.llm import LiteLLMLanguageModel
from pocketassist.free_time import (
    CalendarEvent,
    CalendarStore,
    FindFreeTimeTool,
    FreeSlot,
    InMemoryCalendarStore,
    JsonCalendarStore,
    find_free_slots,
)

# Workflows
from pocketassist.chat import ChatAdapter, ChatReducer, ChatState
from pocketassist.mail_summary import (
    EmailSummaryAdapter,
    EmailSummaryReducer,
    EmailSummaryState,
)
from pocketassist.views import project_chat, project_email_summary

# Configuration
from pocketassist.config import (
    AssistConfig,
    load_assist_toml,
    make_chat_loop,
    make_email_summary_loop,
)

# Testing helpers
from pocketassist.testing import ReducerTestHarness

__all__ = [
    # Version
    "__version__",
    # Core
    "ActionBase",
    "Adapter",
    "Analytics",
    "EffectBase",
    "Haptic",
    "Reducer",
    "StateBase",
    "is_side_channel",
    # Errors
    "AuthenticationRequired",
    "DecodingError",
    "HttpError",
    "PermissionDenied",
    "PocketAssistError",
    "RateLimited",
    # Loop
    "ReducerLoop",
    "EffectExecutor",
    # Collaborators
    "RetryPolicy",
    "retry_with_backoff",
    "Email",
    "GmailClient",
    "CredentialProvider",
    "OAuthRefreshTokenProvider",
    "StaticTokenProvider",
    "LanguageModel",
    "StreamFailed",
    "StreamFinished",
    "StreamPartial",
    "consume_stream",
    "LiteLLMLanguageModel",
    "CalendarEvent",
    "CalendarStore",
    "FindFreeTimeTool",
    "FreeSlot",
    "InMemoryCalendarStore",
    "JsonCalendarStore",
    "find_free_slots",
    # Workflows
    "ChatAdapter",
    "ChatReducer",
    "ChatState",
    "EmailSummaryAdapter",
    "EmailSummaryReducer",
    "EmailSummaryState",
    "project_chat",
    "project_email_summary",
    # Config
    "AssistConfig",
    "load_assist_toml",
    "make_chat_loop",
    "make_email_summary_loop",
    # Testing
    "ReducerTestHarness",
]
