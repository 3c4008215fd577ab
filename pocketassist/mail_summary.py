"""Email summary workflow.

Screens move ``signed_out -> fetching -> summarizing -> finished``; a failure
while signing in, fetching or summarizing lands on ``error``, and retry goes
back to ``signed_out``. Every run carries a ``run_id``; results tagged with a
run that is no longer current are ignored.
"""

import logging
import uuid
from abc import ABC
from collections.abc import AsyncGenerator, AsyncIterator, Sequence
from typing import Annotated, Any, Callable, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from pocketassist.credentials import CredentialProvider
from pocketassist.gmail import Email, GmailClient
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
from pocketassist.streaming import (
    LanguageModel,
    StreamFailed,
    StreamFinished,
    StreamPartial,
    consume_stream,
)

logger = logging.getLogger(__name__)

SUMMARY_MAX_EMAILS = 20
NO_EMAILS_SUMMARY = "No emails arrived in this period."


def _new_id() -> str:
    return str(uuid.uuid4())


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class SignedOutScreen(_Frozen):
    kind: Literal["signed_out"] = "signed_out"


class FetchingScreen(_Frozen):
    kind: Literal["fetching"] = "fetching"


class SummarizingScreen(_Frozen):
    kind: Literal["summarizing"] = "summarizing"
    emails: tuple[Email, ...] = ()
    partial_summary: str = ""


class FinishedScreen(_Frozen):
    kind: Literal["finished"] = "finished"
    emails: tuple[Email, ...] = ()
    summary: str


class ErrorScreen(_Frozen):
    kind: Literal["error"] = "error"
    message: str


Screen = Annotated[
    Union[SignedOutScreen, FetchingScreen, SummarizingScreen, FinishedScreen, ErrorScreen],
    Field(discriminator="kind"),
]


class EmailSummaryState(StateBase):
    screen: Screen = Field(default_factory=SignedOutScreen)
    run_id: str | None = None

    @property
    def can_sign_in(self) -> bool:
        return isinstance(self.screen, SignedOutScreen)

    @property
    def can_retry(self) -> bool:
        return isinstance(self.screen, ErrorScreen)

    @property
    def is_finished(self) -> bool:
        return isinstance(self.screen, FinishedScreen)

    @property
    def in_flight(self) -> bool:
        return isinstance(self.screen, (FetchingScreen, SummarizingScreen))


# ---------------------------------------------------------------------------
# Actions and effects
# ---------------------------------------------------------------------------


class MailAction(ActionBase, ABC):
    pass


class OnAppear(MailAction):
    type: Literal["on_appear"] = "on_appear"
    has_credential: bool = False
    run_id: str = Field(default_factory=_new_id)


class SignInTapped(MailAction):
    type: Literal["sign_in_tapped"] = "sign_in_tapped"
    run_id: str = Field(default_factory=_new_id)


class RetryTapped(MailAction):
    type: Literal["retry_tapped"] = "retry_tapped"


class SignInResult(MailAction):
    type: Literal["sign_in_result"] = "sign_in_result"
    run_id: str
    error: str | None = None


class EmailsFetched(MailAction):
    type: Literal["emails_fetched"] = "emails_fetched"
    run_id: str
    emails: tuple[Email, ...] = ()
    error: str | None = None


class PartialSummaryResult(MailAction):
    type: Literal["partial_summary_result"] = "partial_summary_result"
    run_id: str
    emails: tuple[Email, ...] = ()
    summary: str = ""


class SummaryResult(MailAction):
    type: Literal["summary_result"] = "summary_result"
    run_id: str
    emails: tuple[Email, ...] = ()
    summary: str = ""
    error: str | None = None


class SignIn(EffectBase):
    type: Literal["sign_in"] = "sign_in"
    run_id: str


class FetchEmails(EffectBase):
    type: Literal["fetch_emails"] = "fetch_emails"
    run_id: str


class Summarize(EffectBase):
    type: Literal["summarize"] = "summarize"
    run_id: str
    emails: tuple[Email, ...] = ()


MailEffect = Union[SignIn, FetchEmails, Summarize, Haptic, Analytics]


# ---------------------------------------------------------------------------
# Reducer
# ---------------------------------------------------------------------------


class EmailSummaryReducer(Reducer[MailAction, MailEffect, EmailSummaryState]):
    @classmethod
    def name(cls) -> str:
        return "email_summary"

    @classmethod
    def initial_state(cls) -> EmailSummaryState:
        return EmailSummaryState()

    @classmethod
    def reduce(
        cls, state: EmailSummaryState, action: MailAction
    ) -> tuple[EmailSummaryState, list[MailEffect]]:
        if isinstance(action, OnAppear):
            if state.in_flight:
                return state, []
            if action.has_credential:
                return (
                    EmailSummaryState(screen=FetchingScreen(), run_id=action.run_id),
                    [FetchEmails(run_id=action.run_id)],
                )
            return EmailSummaryState(), []

        if isinstance(action, SignInTapped):
            if not state.can_sign_in:
                logger.debug(f"sign-in ignored on {state.screen.kind} screen")
                return state, []
            return (
                EmailSummaryState(screen=FetchingScreen(), run_id=action.run_id),
                [SignIn(run_id=action.run_id), Analytics(event="sign_in_started")],
            )

        if isinstance(action, RetryTapped):
            if not state.can_retry:
                return state, []
            return EmailSummaryState(), []

        # Everything below is workflow output for a specific run.
        if getattr(action, "run_id", None) != state.run_id:
            logger.debug(
                f"Ignoring {action.type} from superseded run {getattr(action, 'run_id', None)}"
            )
            return state, []

        if isinstance(action, SignInResult):
            if not isinstance(state.screen, FetchingScreen):
                return state, []
            if action.error is not None:
                return cls._fail(state, action.error)
            return state, [FetchEmails(run_id=state.run_id)]

        if isinstance(action, EmailsFetched):
            if not isinstance(state.screen, FetchingScreen):
                return state, []
            if action.error is not None:
                return cls._fail(state, action.error)
            return (
                state.model_copy(update={"screen": SummarizingScreen(emails=action.emails)}),
                [Summarize(run_id=state.run_id, emails=action.emails)],
            )

        if isinstance(action, PartialSummaryResult):
            if not isinstance(state.screen, SummarizingScreen):
                return state, []
            screen = SummarizingScreen(emails=action.emails, partial_summary=action.summary)
            return state.model_copy(update={"screen": screen}), []

        if isinstance(action, SummaryResult):
            if not isinstance(state.screen, SummarizingScreen):
                return state, []
            if action.error is not None:
                return cls._fail(state, action.error)
            screen = FinishedScreen(emails=action.emails, summary=action.summary)
            return state.model_copy(update={"screen": screen}), [Haptic(pattern="success")]

        logger.warning(f"email_summary: unhandled action {action.type}")
        return state, []

    @staticmethod
    def _fail(
        state: EmailSummaryState, message: str
    ) -> tuple[EmailSummaryState, list[MailEffect]]:
        return (
            state.model_copy(update={"screen": ErrorScreen(message=message)}),
            [Haptic(pattern="error")],
        )


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


def build_summary_prompt(
    emails: Sequence[Email], max_emails: int = SUMMARY_MAX_EMAILS
) -> str:
    """Render the prompt; only the first ``max_emails`` fit the model's context."""
    body = "\n".join(
        f"- {e.subject} ({e.sender}): {e.snippet}" for e in emails[:max_emails]
    )
    return (
        "These are the user's emails from today:\n\n"
        f"{body}\n\n"
        "Summarize these in one paragraph."
    )


class EmailSummaryAdapter(Adapter[MailEffect, MailAction]):
    def __init__(
        self,
        credentials: CredentialProvider,
        model: LanguageModel,
        client_factory: Callable[[str], GmailClient] = GmailClient,
        query_hours: int = 24,
        message_limit: int = 300,
        summary_max_emails: int = SUMMARY_MAX_EMAILS,
    ) -> None:
        self._credentials = credentials
        self._model = model
        self._client_factory = client_factory
        self.query_hours = query_hours
        self.message_limit = message_limit
        self.summary_max_emails = summary_max_emails

    def has_credential(self) -> bool:
        return self._credentials.has_credential()

    def to_be_act_on(self, effect: Any) -> bool:
        return not is_side_channel(effect)

    async def act_on(self, effect: MailEffect) -> AsyncGenerator[MailAction, None]:
        if isinstance(effect, SignIn):
            yield await self._sign_in(effect.run_id)
        elif isinstance(effect, FetchEmails):
            yield await self._fetch(effect.run_id)
        elif isinstance(effect, Summarize):
            async for action in self._summarize(effect.run_id, effect.emails):
                yield action

    async def _sign_in(self, run_id: str) -> SignInResult:
        try:
            await self._credentials.sign_in()
        except Exception as e:
            logger.warning(f"Sign-in failed for run {run_id}: {e}")
            return SignInResult(run_id=run_id, error=_describe(e))
        return SignInResult(run_id=run_id)

    async def _fetch(self, run_id: str) -> EmailsFetched:
        try:
            token = await self._credentials.access_token()
            async with self._client_factory(token) as gmail:
                emails = await gmail.fetch_recent(
                    hours=self.query_hours, limit=self.message_limit
                )
        except Exception as e:
            logger.exception(f"Fetching emails failed for run {run_id}: {e}")
            return EmailsFetched(run_id=run_id, error=_describe(e))
        logger.info(f"Fetched {len(emails)} emails for run {run_id}")
        return EmailsFetched(run_id=run_id, emails=tuple(emails))

    async def _prompt_stream(self, prompt: str) -> AsyncIterator[str]:
        async for text in self._model.stream(prompt):
            yield text

    async def _summarize(
        self, run_id: str, emails: tuple[Email, ...]
    ) -> AsyncIterator[MailAction]:
        if not emails:
            yield SummaryResult(run_id=run_id, emails=emails, summary=NO_EMAILS_SUMMARY)
            return

        prompt = build_summary_prompt(emails, self.summary_max_emails)
        async for result in consume_stream(run_id, self._prompt_stream(prompt)):
            if isinstance(result, StreamPartial):
                yield PartialSummaryResult(run_id=run_id, emails=emails, summary=result.text)
            elif isinstance(result, StreamFinished):
                yield SummaryResult(run_id=run_id, emails=emails, summary=result.text)
            elif isinstance(result, StreamFailed):
                yield SummaryResult(run_id=run_id, emails=emails, error=result.error)
