"""CLI output and error rendering helpers.

This module centralizes user-facing CLI presentation for command diagnostics,
book summaries, and book/voice listing rows.
"""

from __future__ import annotations

from typing import NoReturn

import typer

from .errors import PagevoiceError
from .ledger import current_progress_seconds, current_version, progress_percentage, stale_voice_ids
from .models.datatypes import Book, ResultPage, Voice


def exit_with_command_error(command_name: str, exc: Exception) -> NoReturn:
    """Print concise diagnostics for command failures and exit with code 1."""

    if isinstance(exc, PagevoiceError):
        typer.secho(
            f"{command_name} failed at stage `{exc.stage}`: {exc.detail}",
            fg=typer.colors.RED,
            err=True,
        )
        if exc.hint:
            typer.secho(f"Hint: {exc.hint}", fg=typer.colors.YELLOW, err=True)
    else:
        typer.secho(f"{command_name} failed: {exc}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1) from exc


def echo_book_summary(book: Book) -> None:
    """Print the book's record, renderings, and listening position."""

    typer.echo(f"Book id: {book.id}")
    typer.echo(f"Title: {book.title}")
    typer.echo(f"Status: {book.status}")
    typer.echo(f"Pages: {book.page_count}")
    version = current_version(book)
    if version is None:
        typer.echo("Active voice: (none)")
        return
    typer.echo(f"Active voice: {version.voice_id}")
    typer.echo(f"Audio: {version.audio_ref.as_string()}")
    typer.echo(f"Duration: {version.total_duration:.1f}s")
    typer.echo(
        f"Progress: {current_progress_seconds(book)}s ({progress_percentage(book):.1f}%)"
    )
    stale = set(stale_voice_ids(book))
    typer.echo("Voice versions:")
    for item in book.voice_versions:
        marker = " (stale)" if item.voice_id in stale else ""
        elapsed = book.progress.get(item.voice_id)
        position = f", at {elapsed}s" if elapsed is not None else ""
        typer.echo(
            f"- {item.voice_id}: {item.total_duration:.1f}s, {item.page_count} pages"
            f"{position}{marker}"
        )


def echo_book_rows(page: ResultPage[Book]) -> None:
    """Print compact deterministic book rows and the next cursor."""

    if not page.items:
        typer.echo("No books found.")
    for book in page.items:
        typer.echo(
            f"{book.id}  {book.title}  pages={book.page_count}  "
            f"voice={book.active_voice_id or '-'}  {progress_percentage(book):.1f}%"
        )
    if page.next_cursor is not None:
        typer.echo(f"Next cursor: {page.next_cursor}")


def echo_voice_rows(page: ResultPage[Voice]) -> None:
    """Print compact deterministic voice rows and the next cursor."""

    if not page.items:
        typer.echo("No voices found.")
    for voice in page.items:
        marker = " (default)" if voice.is_default else ""
        typer.echo(f"{voice.id}  {voice.display_name}{marker}")
    if page.next_cursor is not None:
        typer.echo(f"Next cursor: {page.next_cursor}")
