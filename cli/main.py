"""Huddle CLI: run the backend, read and post to the group chat."""

import asyncio
import mimetypes
from datetime import datetime
from pathlib import Path

import httpx
import typer
import uvicorn

from backend.app.config import settings
from huddle.backend import HttpBackend, WebSocketFeed
from huddle.config import client_settings
from huddle.errors import GifSearchError
from huddle.gifs import Gif, search_gifs
from huddle.log import logger, setup_logging
from huddle.models import AttachmentFile, Message, Notice
from huddle.reactions import REACTION_EMOJIS, has_reacted
from huddle.render import body_text, reply_preview, seen_by_names
from huddle.session import ChatSession
from huddle.store import MessageStore

app = typer.Typer(
    help="Huddle - group chat for accountability circles",
    no_args_is_help=True,
)

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def _user_id(user: str | None) -> str:
    user = user or client_settings.user_id
    if not user:
        typer.secho("No user id. Pass --user or set HUDDLE_USER_ID.", fg=typer.colors.RED)
        raise typer.Exit(1)
    return user


def _backend(user_id: str) -> HttpBackend:
    return HttpBackend(
        client_settings.api_url,
        user_id,
        bucket=client_settings.attachments_bucket,
        timeout=client_settings.request_timeout,
    )


def _author(session: ChatSession, user_id: str) -> str:
    name = session.name_of(user_id)
    return f"{name} • online" if session.is_online(user_id) else name


def _format_message(session: ChatSession, msg: Message, *, seen: bool = False) -> str:
    stamp = msg.created_at.astimezone().strftime("%H:%M")
    line = f"[{stamp}] {_author(session, msg.user_id)}: {body_text(msg)}"
    if msg.edited and not msg.is_deleted:
        line += " (edited)"
    if msg.has_attachment and not msg.is_deleted:
        line += f" [{msg.attachment_name or 'attachment'}: {msg.attachment_url}]"
    preview = reply_preview(session.store, msg)
    if preview is not None:
        who = session.name_of(preview.author_id) if preview.author_id else ""
        line = f"  ↳ {who + ': ' if who else ''}{preview.snippet}\n{line}"
    if msg.reactions and not msg.is_deleted:
        line += "  " + " ".join(f"{r.emoji}{len(r.user_ids)}" for r in msg.reactions)
    if seen:
        line += f"\n    Seen by: {seen_by_names(msg, session.profiles)}"
    return line


def _print_history(
    session: ChatSession, now: datetime | None = None, *, seen: bool = False
) -> None:
    for label, messages in session.store.group_by_day(now):
        typer.secho(f"── {label} ──", fg=typer.colors.CYAN, bold=True)
        for msg in messages:
            typer.echo(_format_message(session, msg, seen=seen))


def _print_notice(notice: Notice) -> None:
    color = typer.colors.RED if notice.level == "error" else typer.colors.YELLOW
    typer.secho(f"! {notice.text}", fg=color)


def _search(query: str, limit: int) -> list[Gif]:
    try:
        return asyncio.run(
            search_gifs(
                query,
                client_settings.tenor_key,
                limit=limit,
                client_key=client_settings.tenor_client_key,
            )
        )
    except GifSearchError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(1) from exc


@app.command()
def serve(
    port: int = typer.Option(settings.port, "--port", "-p", help="API server port"),
    host: str = typer.Option(settings.host, "--host", help="Interface to bind"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on code changes"),
) -> None:
    """Start the Huddle backend (REST API + change feed + file storage)."""
    typer.secho("Huddle backend is starting up", fg=typer.colors.GREEN, bold=True)
    typer.echo(f"  API:       http://localhost:{port}/api")
    typer.echo(f"  Feed:      ws://localhost:{port}/ws")
    typer.echo(f"  API docs:  http://localhost:{port}/docs")
    typer.echo("")

    try:
        uvicorn.run(
            "backend.app.main:app",
            host=host,
            port=port,
            reload=reload,
            reload_dirs=[str(PROJECT_ROOT / "backend")] if reload else None,
            log_level="info",
        )
    except KeyboardInterrupt:
        pass
    typer.secho("Huddle stopped.", fg=typer.colors.GREEN)


@app.command()
def status() -> None:
    """Check whether the backend is up."""
    try:
        resp = httpx.get(f"{client_settings.api_url}/api/health", timeout=3)
        data = resp.json()
        typer.secho(f"API server:  {data.get('status', '?')}", fg=typer.colors.GREEN)
        typer.echo(f"  Database:          {data.get('database', '?')}")
        typer.echo(f"  WebSocket clients: {data.get('ws_clients', '?')}")
    except (httpx.HTTPError, ValueError):
        typer.secho("API server:  not running", fg=typer.colors.RED)
        raise typer.Exit(1)


@app.command()
def profile(
    username: str = typer.Argument(..., help="Public username"),
    full_name: str | None = typer.Option(None, "--name", help="Display name"),
    user: str | None = typer.Option(None, "--user", "-u", help="Your user id"),
) -> None:
    """Create or update your public profile."""
    user_id = _user_id(user)
    resp = httpx.put(
        f"{client_settings.api_url}/api/profiles/me",
        json={"username": username, "full_name": full_name},
        headers={"X-User-Id": user_id},
        timeout=client_settings.request_timeout,
    )
    if resp.status_code >= 400:
        typer.secho(f"Failed: {resp.text}", fg=typer.colors.RED)
        raise typer.Exit(1)
    typer.secho(f"Profile saved for {user_id}", fg=typer.colors.GREEN)


@app.command()
def history(
    user: str | None = typer.Option(None, "--user", "-u", help="Your user id"),
    limit: int | None = typer.Option(None, "--limit", "-n", help="Only the last N messages"),
    seen: bool = typer.Option(False, "--seen", help="Show who has seen each message"),
) -> None:
    """Print the conversation grouped by day."""
    user_id = _user_id(user)

    async def _run() -> None:
        async with _backend(user_id) as backend:
            rows = await backend.select_messages(ascending=limit is None, limit=limit)
            session = ChatSession(user_id, backend, WebSocketFeed(client_settings.ws_url))
            session.store.replace_all(rows)
            await session.refresh_profiles()
            _print_history(session, seen=seen)

    asyncio.run(_run())


@app.command()
def send(
    text: str = typer.Argument("", help="Message text"),
    user: str | None = typer.Option(None, "--user", "-u", help="Your user id"),
    reply_to: str | None = typer.Option(None, "--reply-to", help="Id of the message to reply to"),
    attach: Path | None = typer.Option(None, "--attach", "-a", help="File to attach"),
    gif: str | None = typer.Option(None, "--gif", help="Send a GIF by URL instead of text"),
    gif_search: str | None = typer.Option(
        None, "--gif-search", help="Send the top Tenor result for this search"
    ),
) -> None:
    """Post a message to the group chat."""
    user_id = _user_id(user)
    if gif_search is not None:
        gif = _search(gif_search, limit=1)[0].url

    async def _run() -> bool:
        async with _backend(user_id) as backend:
            session = ChatSession(
                user_id,
                backend,
                WebSocketFeed(client_settings.ws_url, user_id),
                on_notice=_print_notice,
            )
            # Reply validation needs the current history
            session.store.replace_all(await backend.select_messages())
            if gif:
                return await session.send_gif(gif)
            session.composer.draft.content = text
            session.reply_to(reply_to)
            if attach is not None:
                content_type = mimetypes.guess_type(attach.name)[0] or "application/octet-stream"
                session.attach(AttachmentFile(attach.name, attach.read_bytes(), content_type))
            return await session.send()

    if not asyncio.run(_run()):
        raise typer.Exit(1)
    typer.secho("Sent.", fg=typer.colors.GREEN)


@app.command()
def react(
    message_id: str = typer.Argument(..., help="Message id"),
    emoji: str = typer.Argument(REACTION_EMOJIS[0], help="Reaction symbol"),
    user: str | None = typer.Option(None, "--user", "-u", help="Your user id"),
) -> None:
    """Toggle a reaction on a message."""
    user_id = _user_id(user)

    async def _run() -> bool | None:
        async with _backend(user_id) as backend:
            session = ChatSession(
                user_id, backend, WebSocketFeed(client_settings.ws_url), on_notice=_print_notice
            )
            session.store.replace_all(await backend.select_messages())
            if not await session.react(message_id, emoji):
                return None
            message = session.store.get(message_id)
            return message is not None and has_reacted(message, emoji, user_id)

    added = asyncio.run(_run())
    if added is None:
        raise typer.Exit(1)
    typer.echo(f"{'Reacted' if added else 'Removed'} {emoji}")


@app.command()
def gifs(
    query: str = typer.Argument("", help="Search terms (blank for featured GIFs)"),
    limit: int = typer.Option(12, "--limit", "-n", help="How many results"),
) -> None:
    """Search Tenor for GIFs to send with `huddle send --gif URL`."""
    for gif in _search(query, limit):
        typer.echo(f"{gif.id}  {gif.url}")


@app.command()
def watch(
    user: str | None = typer.Option(None, "--user", "-u", help="Your user id"),
) -> None:
    """Follow the conversation live (Ctrl+C to stop)."""
    user_id = _user_id(user)
    setup_logging(client_settings.log_level)

    async def _run() -> None:
        async with _backend(user_id) as backend:
            session = ChatSession(
                user_id,
                backend,
                WebSocketFeed(client_settings.ws_url, user_id),
                on_notice=_print_notice,
            )
            printed: set[str] = set()

            def _on_change(store: MessageStore) -> None:
                for msg in store:
                    if msg.id not in printed:
                        printed.add(msg.id)
                        typer.echo(_format_message(session, msg))

            async with session:
                _print_history(session)
                printed.update(m.id for m in session.store)
                session.store.add_listener(_on_change)
                last_line = ""
                while True:
                    line = session.typing_line()
                    if line != last_line and line:
                        typer.secho(line, dim=True)
                    last_line = line
                    await asyncio.sleep(1)

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        logger.debug("watch interrupted")
    typer.echo("")


if __name__ == "__main__":
    app()
