"""Command-line interface for pocketassist."""

import asyncio
import logging
import sys

import click
from dotenv import load_dotenv

from pocketassist.chat import (
    AssistantStreamFailed,
    AssistantStreamFinished,
    AssistantStreamReceived,
    InputChanged,
    OnAppear as ChatOnAppear,
    SendTapped,
)
from pocketassist.config import (
    AssistConfig,
    load_assist_toml,
    make_calendar_store,
    make_chat_loop,
    make_credentials,
    make_email_summary_loop,
)
from pocketassist.free_time import FindFreeTimeArguments, FindFreeTimeTool
from pocketassist.mail_summary import OnAppear as MailOnAppear, SignInTapped
from pocketassist.views import project_email_summary

EXIT_COMMANDS = {"/quit", "/exit"}


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Path to pocketassist.toml (default: $POCKETASSIST_CONFIG or ./pocketassist.toml)",
)
@click.option(
    "--log-level",
    default="WARNING",
    show_default=True,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
)
@click.pass_context
def cli(ctx, config_path, log_level):
    """pocketassist - chat, calendar free time and mail summaries"""
    load_dotenv()
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["config"] = AssistConfig.from_mapping(load_assist_toml(config_path))


# ---- Chat -------------------------------------------------------------------


@cli.command("chat")
@click.option("--model", default=None, help="LiteLLM model string (overrides config)")
@click.pass_context
def chat(ctx, model):
    """Interactive chat; answers stream as they are generated. /quit to leave."""
    config: AssistConfig = ctx.obj["config"]
    if model:
        config.model = model

    async def _run():
        loop = make_chat_loop(config)
        printed = {"id": None, "len": 0}

        def _print_stream(state, action):
            if not isinstance(
                action,
                (AssistantStreamReceived, AssistantStreamFinished, AssistantStreamFailed),
            ):
                return
            found = state.find_assistant(action.pairing.assistant.id)
            if found is None or found[1].id != printed["id"]:
                return
            text = found[1].content or ""
            if len(text) > printed["len"]:
                click.echo(text[printed["len"]:], nl=False)
                printed["len"] = len(text)
            if isinstance(action, AssistantStreamFailed):
                click.secho(f"\n[error: {action.error or 'generation failed'}]", fg="red", err=True)

        async with loop:
            loop.subscribe(_print_stream)
            loop.send(ChatOnAppear())
            while True:
                click.echo("> ", nl=False)
                line = await asyncio.to_thread(sys.stdin.readline)
                if not line:
                    break
                line = line.strip()
                if line in EXIT_COMMANDS:
                    break
                if not line:
                    continue

                send = SendTapped()
                printed["id"], printed["len"] = send.assistant_message_id, 0
                loop.send(InputChanged(new_input=line))
                loop.send(send)

                def _settled(state, assistant_id=send.assistant_message_id):
                    found = state.find_assistant(assistant_id)
                    return found is not None and found[1].is_terminal

                await loop.wait_until(_settled)
                click.echo()

    asyncio.run(_run())


# ---- Mail summary -------------------------------------------------------------


@cli.command("summarize")
@click.option("--hours", type=int, default=None, help="Look-back window (default from config: 24)")
@click.option("--timeout", type=float, default=300.0, show_default=True)
@click.option("--show-emails/--no-show-emails", default=False, show_default=True)
@click.pass_context
def summarize(ctx, hours, timeout, show_emails):
    """Fetch recent mail and print a one-paragraph summary."""
    config: AssistConfig = ctx.obj["config"]
    if hours is not None:
        config.gmail_query_hours = hours

    async def _run() -> int:
        credentials = make_credentials(config)
        loop = make_email_summary_loop(config, credentials)
        async with loop:
            if credentials.has_credential():
                loop.send(MailOnAppear(has_credential=True))
            else:
                loop.send(SignInTapped())
            try:
                state = await loop.wait_until(
                    lambda s: s.is_finished or s.can_retry, timeout=timeout
                )
            except asyncio.TimeoutError:
                click.echo(f"Timed out after {timeout}s", err=True)
                return 1

        view = project_email_summary(state)
        if view.kind == "error":
            click.secho(f"Error: {view.title}", fg="red", err=True)
            return 1
        click.echo(view.title)
        click.echo(view.body or "")
        if show_emails:
            click.echo()
            for email in view.emails:
                click.echo(f"- {email.subject} ({email.sender}): {email.snippet}")
        return 0

    sys.exit(asyncio.run(_run()))


# ---- Free time ----------------------------------------------------------------


@cli.command("free-time")
@click.option("--duration", "duration_minutes", type=int, default=30, show_default=True, help="Minutes (15-240)")
@click.option("--window", "window_hours", type=int, default=24, show_default=True, help="Hours ahead (1-720)")
@click.option("--calendar", "calendar_path", default=None, help="JSON events file (overrides config)")
@click.pass_context
def free_time(ctx, duration_minutes, window_hours, calendar_path):
    """Print up to three start times of open calendar slots."""
    config: AssistConfig = ctx.obj["config"]
    if calendar_path:
        config.calendar_path = calendar_path
    tool = FindFreeTimeTool(make_calendar_store(config))

    async def _run() -> str:
        return await tool.call(
            FindFreeTimeArguments(durationMinutes=duration_minutes, windowHours=window_hours)
        )

    try:
        output = asyncio.run(_run())
    except Exception as e:
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(1)
    click.echo(output or "No free slots in that window.")


def main() -> None:
    """Main CLI entry point (delegates to click)."""
    cli()


if __name__ == "__main__":
    main()
