import os
import tomllib
from dataclasses import dataclass, field, fields
from datetime import timedelta
from typing import Any

from pocketassist.chat import ChatAdapter, ChatReducer
from pocketassist.credentials import (
    CredentialProvider,
    OAuthRefreshTokenProvider,
    StaticTokenProvider,
)
from pocketassist.free_time import (
    CalendarStore,
    FindFreeTimeTool,
    InMemoryCalendarStore,
    JsonCalendarStore,
)
from pocketassist.gmail import DEFAULT_BASE_URL, GmailClient
from pocketassist.llm import DEFAULT_INSTRUCTIONS, LiteLLMLanguageModel
from pocketassist.loop import ReducerLoop
from pocketassist.mail_summary import EmailSummaryAdapter, EmailSummaryReducer
from pocketassist.retry import RetryPolicy


@dataclass
class AssistConfig:
    # Language model (any LiteLLM model string, e.g. "ollama/llama3.2")
    model: str = "gpt-4o-mini"
    api_base: str | None = None
    temperature: float = 0.3
    instructions: str = DEFAULT_INSTRUCTIONS
    # Gmail
    gmail_base_url: str = DEFAULT_BASE_URL
    gmail_query_hours: int = 24
    gmail_message_limit: int = 300
    gmail_page_size: int = 100
    gmail_max_concurrency: int = 10
    summary_max_emails: int = 20
    # Retry policy for provider calls
    retry_max_retries: int = 5
    retry_backoff_min_seconds: float = 1.0
    retry_backoff_max_seconds: float = 60.0
    retry_statuses: list[int] = field(default_factory=lambda: [403, 429])
    # Calendar (JSON file of events); empty calendar when unset
    calendar_path: str | None = None
    # Credentials: either a refresh token triple or a raw access token
    google_client_id: str | None = None
    google_client_secret: str | None = None
    google_refresh_token: str | None = None
    access_token: str | None = None

    @classmethod
    def from_mapping(cls, cfg: dict[str, Any]) -> "AssistConfig":
        """Build from a loaded ``[pocketassist]`` table; unknown keys are ignored."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in cfg.items() if k in known})

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.retry_max_retries,
            backoff_min=timedelta(seconds=self.retry_backoff_min_seconds),
            backoff_max=timedelta(seconds=self.retry_backoff_max_seconds),
            retry_statuses=frozenset(self.retry_statuses),
        )


def load_assist_toml(path: str | None = None) -> dict[str, Any]:
    """Load a ``pocketassist.toml`` configuration file.

    Searches (in order):
    1. The explicit ``path`` argument.
    2. ``$POCKETASSIST_CONFIG`` environment variable.
    3. ``pocketassist.toml`` in the current working directory.

    Returns an empty dict (plus environment overrides) if no file is found.

    .. code-block:: toml

        [pocketassist]
        model = "ollama/llama3.2"
        api_base = "http://localhost:11434"
        gmail_max_concurrency = 8
        retry_statuses = [429]
        calendar_path = "~/calendar.json"

    Environment variables prefixed with ``POCKETASSIST_`` override TOML values
    (e.g. ``POCKETASSIST_GMAIL_MAX_CONCURRENCY=4``).
    """
    candidates = [
        path,
        os.getenv("POCKETASSIST_CONFIG"),
        "pocketassist.toml",
    ]
    for candidate in candidates:
        if candidate and os.path.exists(candidate):
            with open(candidate, "rb") as fh:
                data = tomllib.load(fh)
            result: dict[str, Any] = data.get("pocketassist", {})
            _apply_env_overrides(result)
            return result

    result = {}
    _apply_env_overrides(result)
    return result


def _apply_env_overrides(cfg: dict[str, Any]) -> None:
    """Apply ``POCKETASSIST_*`` environment variables on top of cfg dict (in-place)."""
    _INT_KEYS = {
        "gmail_query_hours",
        "gmail_message_limit",
        "gmail_page_size",
        "gmail_max_concurrency",
        "summary_max_emails",
        "retry_max_retries",
    }
    _FLOAT_KEYS = {
        "temperature",
        "retry_backoff_min_seconds",
        "retry_backoff_max_seconds",
    }
    _INT_LIST_KEYS = {"retry_statuses"}

    for env_key, env_val in os.environ.items():
        if not env_key.startswith("POCKETASSIST_"):
            continue
        cfg_key = env_key[len("POCKETASSIST_"):].lower()
        if cfg_key == "config":
            continue
        if cfg_key in _INT_KEYS:
            try:
                cfg[cfg_key] = int(env_val)
            except ValueError:
                pass
        elif cfg_key in _FLOAT_KEYS:
            try:
                cfg[cfg_key] = float(env_val)
            except ValueError:
                pass
        elif cfg_key in _INT_LIST_KEYS:
            try:
                cfg[cfg_key] = [int(v) for v in env_val.split(",") if v.strip()]
            except ValueError:
                pass
        else:
            cfg[cfg_key] = env_val


def make_calendar_store(config: AssistConfig) -> CalendarStore:
    if config.calendar_path:
        return JsonCalendarStore(os.path.expanduser(config.calendar_path))
    return InMemoryCalendarStore()


def make_language_model(
    config: AssistConfig, calendar: CalendarStore | None = None
) -> LiteLLMLanguageModel:
    tools = [FindFreeTimeTool(calendar)] if calendar is not None else []
    return LiteLLMLanguageModel(
        model=config.model,
        instructions=config.instructions,
        tools=tools,
        temperature=config.temperature,
        api_base=config.api_base,
    )


def make_credentials(config: AssistConfig) -> CredentialProvider:
    if config.google_refresh_token and config.google_client_id:
        return OAuthRefreshTokenProvider(
            client_id=config.google_client_id,
            client_secret=config.google_client_secret,
            refresh_token=config.google_refresh_token,
        )
    return StaticTokenProvider(config.access_token)


def make_chat_loop(config: AssistConfig) -> ReducerLoop:
    model = make_language_model(config, calendar=make_calendar_store(config))
    return ReducerLoop(ChatReducer, ChatAdapter(model))


def make_email_summary_loop(
    config: AssistConfig, credentials: CredentialProvider | None = None
) -> ReducerLoop:
    policy = config.retry_policy()

    def client_factory(token: str) -> GmailClient:
        return GmailClient(
            token,
            base_url=config.gmail_base_url,
            retry_policy=policy,
            page_size=config.gmail_page_size,
            max_concurrency=config.gmail_max_concurrency,
        )

    adapter = EmailSummaryAdapter(
        credentials=credentials or make_credentials(config),
        model=make_language_model(config),
        client_factory=client_factory,
        query_hours=config.gmail_query_hours,
        message_limit=config.gmail_message_limit,
        summary_max_emails=config.summary_max_emails,
    )
    return ReducerLoop(EmailSummaryReducer, adapter)
