"""Presentation-ready projections of reducer state."""

from typing import Literal

from pydantic import BaseModel

from pocketassist.chat import AssistantMessage, ChatState, Failed, Finished, Loading, Streaming
from pocketassist.gmail import Email
from pocketassist.mail_summary import (
    EmailSummaryState,
    ErrorScreen,
    FetchingScreen,
    FinishedScreen,
    SignedOutScreen,
    SummarizingScreen,
)

SIGN_IN_LABEL = "Sign In"
FETCHING_TITLE = "Fetching emails..."
SUMMARY_TITLE = "Your summary"


class MessageRow(BaseModel):
    """One transcript row. ``text`` is None while the answer is loading."""

    id: str
    role: Literal["user", "assistant"]
    status: Literal["sent", "loading", "streaming", "finished", "error"]
    text: str | None = None

    @property
    def show_progress(self) -> bool:
        return self.text is None


class ChatView(BaseModel):
    rows: list[MessageRow]
    input: str
    can_send: bool
    is_responding: bool


def project_chat(state: ChatState) -> ChatView:
    rows: list[MessageRow] = []
    for message in state.messages:
        if isinstance(message, AssistantMessage):
            status = {
                Loading: "loading",
                Streaming: "streaming",
                Finished: "finished",
                Failed: "error",
            }[type(message.status)]
            rows.append(
                MessageRow(id=message.id, role="assistant", status=status, text=message.content)
            )
        else:
            rows.append(
                MessageRow(id=message.id, role="user", status="sent", text=message.content)
            )
    return ChatView(
        rows=rows,
        input=state.user_input,
        can_send=state.can_send_message,
        is_responding=any(not m.is_terminal for m in state.assistant_messages),
    )


class EmailSummaryView(BaseModel):
    """Exactly one ``kind`` is active; the flags follow from it."""

    kind: Literal["sign_in", "progress", "summary", "error"]
    title: str
    body: str | None = None
    emails: list[Email] = []
    show_progress: bool = False
    can_sign_in: bool = False
    can_retry: bool = False


def project_email_summary(state: EmailSummaryState) -> EmailSummaryView:
    screen = state.screen
    if isinstance(screen, SignedOutScreen):
        return EmailSummaryView(kind="sign_in", title=SIGN_IN_LABEL, can_sign_in=True)
    if isinstance(screen, FetchingScreen):
        return EmailSummaryView(kind="progress", title=FETCHING_TITLE, show_progress=True)
    if isinstance(screen, SummarizingScreen):
        return EmailSummaryView(
            kind="progress",
            title=SUMMARY_TITLE,
            body=screen.partial_summary or None,
            show_progress=not screen.partial_summary,
        )
    if isinstance(screen, FinishedScreen):
        return EmailSummaryView(
            kind="summary",
            title=SUMMARY_TITLE,
            body=screen.summary,
            emails=list(screen.emails),
        )
    if isinstance(screen, ErrorScreen):
        return EmailSummaryView(kind="error", title=screen.message, can_retry=True)
    raise TypeError(f"Unknown screen {screen!r}")
