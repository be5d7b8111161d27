"""Command-line interface for Pagevoice.

Responsibilities:
- Expose user-facing commands for book assembly, playback progress, and voices.
- Convert CLI arguments into `PagevoiceConfig` and wired operation facades.

Key public functions:
- `app`: Typer application instance.
- `main`: invoke the Typer application.
"""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Annotated

import typer

from .cli_rendering import (
    echo_book_rows,
    echo_book_summary,
    echo_voice_rows,
    exit_with_command_error,
)
from .cli_runtime import load_command_config, resolve_runtime_sources
from .credentials import PROVIDER_ACCOUNTS, create_credential_store
from .errors import PagevoiceError, ValidationError
from .models.datatypes import PageImage
from .parsing import normalize_optional_string
from .provider_factory import PagevoiceServices, build_services
from .telemetry.logger import RunLogger

app = typer.Typer(
    name="pagevoice",
    no_args_is_help=True,
    help="Pagevoice CLI: photographed pages to voice-cloned audiobooks.",
)
voices_app = typer.Typer(no_args_is_help=True, help="Manage cloned voices.")
app.add_typer(voices_app, name="voices")

OwnerOption = Annotated[
    str,
    typer.Option("--owner", envvar="PAGEVOICE_OWNER", help="Owning user id."),
]
ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", help="Path to YAML config file."),
]
DataDirOption = Annotated[
    Path | None,
    typer.Option("--data-dir", help="Data directory (overrides config value)."),
]
OpenAIKeyOption = Annotated[
    str | None,
    typer.Option("--openai-api-key", help="OpenAI API key override."),
]
ElevenLabsKeyOption = Annotated[
    str | None,
    typer.Option("--elevenlabs-api-key", help="ElevenLabs API key override."),
]
StoreKeysOption = Annotated[
    bool,
    typer.Option(
        "--store-api-keys/--no-store-api-keys",
        help="Persist CLI-entered API keys to secure credential storage.",
    ),
]


def _services(
    config_file: Path | None,
    data_dir: Path | None,
    openai_api_key: str | None = None,
    elevenlabs_api_key: str | None = None,
    store_api_keys: bool = False,
) -> PagevoiceServices:
    """Load config, resolve secrets, and wire operation facades."""

    config = load_command_config(config_file, data_dir)
    sources = resolve_runtime_sources(
        openai_api_key=openai_api_key,
        elevenlabs_api_key=elevenlabs_api_key,
        store_api_keys=store_api_keys,
        credential_store_factory=create_credential_store,
    )
    config = replace(config, runtime_sources=sources)
    return build_services(config, run_logger=RunLogger())


def _read_images(paths: list[Path]) -> list[PageImage]:
    """Read page image files in the given order."""

    images: list[PageImage] = []
    for path in paths:
        try:
            images.append(PageImage(name=path.name, data=path.read_bytes()))
        except OSError as exc:
            raise ValidationError(
                f"Cannot read page image `{path}`: {exc.strerror or exc}",
                stage="input",
                hint="Pass existing, readable image files.",
            ) from exc
    return images


@app.command("create")
def create_command(
    images: Annotated[list[Path], typer.Argument(help="Page images in reading order (1-10).")],
    owner: OwnerOption,
    voice: Annotated[str, typer.Option("--voice", help="Voice id narrating the book.")],
    title: Annotated[
        str | None, typer.Option("--title", help="Book title; detected when omitted.")
    ] = None,
    config_file: ConfigOption = None,
    data_dir: DataDirOption = None,
    openai_api_key: OpenAIKeyOption = None,
    elevenlabs_api_key: ElevenLabsKeyOption = None,
    store_api_keys: StoreKeysOption = False,
) -> None:
    """Create a book from photographed pages."""

    try:
        services = _services(
            config_file, data_dir, openai_api_key, elevenlabs_api_key, store_api_keys
        )
        book = services.orchestrator.create_book(
            owner, _read_images(images), voice, normalize_optional_string(title)
        )
    except PagevoiceError as exc:
        exit_with_command_error("create", exc)

    echo_book_summary(book)


@app.command("add-pages")
def add_pages_command(
    book_id: Annotated[str, typer.Argument(help="Book id.")],
    images: Annotated[list[Path], typer.Argument(help="New page images in reading order.")],
    owner: OwnerOption,
    voice: Annotated[
        str | None, typer.Option("--voice", help="Must equal the active voice when given.")
    ] = None,
    config_file: ConfigOption = None,
    data_dir: DataDirOption = None,
    openai_api_key: OpenAIKeyOption = None,
    elevenlabs_api_key: ElevenLabsKeyOption = None,
    store_api_keys: StoreKeysOption = False,
) -> None:
    """Append pages to a book and extend its active rendering."""

    try:
        services = _services(
            config_file, data_dir, openai_api_key, elevenlabs_api_key, store_api_keys
        )
        book = services.orchestrator.add_pages(owner, book_id, _read_images(images), voice)
    except PagevoiceError as exc:
        exit_with_command_error("add-pages", exc)

    echo_book_summary(book)


@app.command("change-voice")
def change_voice_command(
    book_id: Annotated[str, typer.Argument(help="Book id.")],
    voice_id: Annotated[str, typer.Argument(help="Voice id to narrate the book.")],
    owner: OwnerOption,
    config_file: ConfigOption = None,
    data_dir: DataDirOption = None,
    elevenlabs_api_key: ElevenLabsKeyOption = None,
    store_api_keys: StoreKeysOption = False,
) -> None:
    """Switch the narrating voice, rendering the book first when needed."""

    try:
        services = _services(config_file, data_dir, None, elevenlabs_api_key, store_api_keys)
        book = services.orchestrator.change_voice(owner, book_id, voice_id)
    except PagevoiceError as exc:
        exit_with_command_error("change-voice", exc)

    echo_book_summary(book)


@app.command("progress")
def progress_command(
    book_id: Annotated[str, typer.Argument(help="Book id.")],
    owner: OwnerOption,
    seconds: Annotated[
        float | None,
        typer.Option("--seconds", help="Elapsed listening seconds to record."),
    ] = None,
    config_file: ConfigOption = None,
    data_dir: DataDirOption = None,
) -> None:
    """Record or show listening progress of the active voice."""

    try:
        services = _services(config_file, data_dir)
        if seconds is None:
            book = services.books.get_book(owner, book_id)
        else:
            book = services.books.record_progress(owner, book_id, seconds)
    except PagevoiceError as exc:
        exit_with_command_error("progress", exc)

    echo_book_summary(book)


@app.command("show")
def show_command(
    book_id: Annotated[str, typer.Argument(help="Book id.")],
    owner: OwnerOption,
    config_file: ConfigOption = None,
    data_dir: DataDirOption = None,
) -> None:
    """Show one book."""

    try:
        book = _services(config_file, data_dir).books.get_book(owner, book_id)
    except PagevoiceError as exc:
        exit_with_command_error("show", exc)

    echo_book_summary(book)
    for index, text in enumerate(book.pages, start=1):
        preview = " ".join(text.split())[:60]
        typer.echo(f"{index}. {preview}")


@app.command("list")
def list_command(
    owner: OwnerOption,
    cursor: Annotated[str | None, typer.Option("--cursor", help="Book id to page after.")] = None,
    limit: Annotated[int, typer.Option("--limit", help="Page size (1-50).")] = 10,
    config_file: ConfigOption = None,
    data_dir: DataDirOption = None,
) -> None:
    """List books, newest first."""

    try:
        page = _services(config_file, data_dir).books.list_books(owner, cursor, limit)
    except PagevoiceError as exc:
        exit_with_command_error("list", exc)

    echo_book_rows(page)


@app.command("delete")
def delete_command(
    book_id: Annotated[str, typer.Argument(help="Book id.")],
    owner: OwnerOption,
    config_file: ConfigOption = None,
    data_dir: DataDirOption = None,
) -> None:
    """Delete a book and its audio renderings."""

    try:
        removed = _services(config_file, data_dir).books.delete_book(owner, book_id)
    except PagevoiceError as exc:
        exit_with_command_error("delete", exc)

    typer.echo(f"Deleted book {book_id} ({removed} audio artifact(s) removed).")


@app.command("play")
def play_command(
    book_id: Annotated[str, typer.Argument(help="Book id.")],
    owner: OwnerOption,
    out: Annotated[Path, typer.Option("--out", help="File receiving the audio bytes.")],
    start: Annotated[int, typer.Option("--start", help="First byte offset.")] = 0,
    end: Annotated[
        int | None, typer.Option("--end", help="Last byte offset (inclusive).")
    ] = None,
    config_file: ConfigOption = None,
    data_dir: DataDirOption = None,
) -> None:
    """Write a byte range of the active rendering to a file."""

    try:
        playback = _services(config_file, data_dir).books.open_playback(owner, book_id, start, end)
        out.write_bytes(playback.data)
    except PagevoiceError as exc:
        exit_with_command_error("play", exc)
    except OSError as exc:
        exit_with_command_error("play", exc)

    typer.echo(f"Voice: {playback.voice_id}")
    typer.echo(f"Bytes: {playback.start}-{playback.end} written to {out}")


@voices_app.command("list")
def voices_list_command(
    owner: OwnerOption,
    cursor: Annotated[str | None, typer.Option("--cursor", help="Voice id to page after.")] = None,
    limit: Annotated[int, typer.Option("--limit", help="Page size (1-50).")] = 10,
    config_file: ConfigOption = None,
    data_dir: DataDirOption = None,
) -> None:
    """List voices, default first."""

    try:
        page = _services(config_file, data_dir).voices.list_voices(owner, cursor, limit)
    except PagevoiceError as exc:
        exit_with_command_error("voices list", exc)

    echo_voice_rows(page)


@voices_app.command("clone")
def voices_clone_command(
    name: Annotated[str, typer.Argument(help="Display name of the voice.")],
    sample: Annotated[Path, typer.Argument(help="Recorded voice sample.")],
    owner: OwnerOption,
    description: Annotated[str, typer.Option("--description", help="Voice description.")] = "",
    config_file: ConfigOption = None,
    data_dir: DataDirOption = None,
    elevenlabs_api_key: ElevenLabsKeyOption = None,
    store_api_keys: StoreKeysOption = False,
) -> None:
    """Clone a voice from a recorded sample."""

    try:
        services = _services(config_file, data_dir, None, elevenlabs_api_key, store_api_keys)
        try:
            sample_bytes = sample.read_bytes()
        except OSError as exc:
            raise ValidationError(
                f"Cannot read voice sample `{sample}`: {exc.strerror or exc}", stage="input"
            ) from exc
        voice = services.voices.clone_voice(owner, name, sample_bytes, sample.name, description)
    except PagevoiceError as exc:
        exit_with_command_error("voices clone", exc)

    marker = " (default)" if voice.is_default else ""
    typer.echo(f"Voice id: {voice.id}{marker}")


@voices_app.command("set-default")
def voices_set_default_command(
    voice_id: Annotated[str, typer.Argument(help="Voice id.")],
    owner: OwnerOption,
    config_file: ConfigOption = None,
    data_dir: DataDirOption = None,
) -> None:
    """Make a voice the default."""

    try:
        voice = _services(config_file, data_dir).voices.set_default_voice(owner, voice_id)
    except PagevoiceError as exc:
        exit_with_command_error("voices set-default", exc)

    typer.echo(f"Default voice: {voice.id}")


@voices_app.command("delete")
def voices_delete_command(
    voice_id: Annotated[str, typer.Argument(help="Voice id.")],
    owner: OwnerOption,
    config_file: ConfigOption = None,
    data_dir: DataDirOption = None,
) -> None:
    """Delete a voice."""

    try:
        promoted = _services(config_file, data_dir).voices.delete_voice(owner, voice_id)
    except PagevoiceError as exc:
        exit_with_command_error("voices delete", exc)

    typer.echo(f"Deleted voice {voice_id}.")
    if promoted is not None:
        typer.echo(f"Default voice: {promoted.id}")


@app.command("credentials")
def credentials_command(
    provider: Annotated[
        str,
        typer.Option("--provider", help="Provider: `openai`, `elevenlabs`, or `supabase`."),
    ] = "openai",
    set_api_key: Annotated[
        bool,
        typer.Option(
            "--set-api-key",
            help="Prompt for API key with hidden input and store it securely.",
        ),
    ] = False,
    clear_api_key: Annotated[
        bool,
        typer.Option(
            "--clear-api-key",
            help="Clear stored API key from secure credential storage.",
        ),
    ] = False,
) -> None:
    """Manage securely stored provider API keys."""

    if provider not in PROVIDER_ACCOUNTS:
        supported = ", ".join(sorted(PROVIDER_ACCOUNTS))
        exit_with_command_error(
            "credentials",
            ValidationError(
                f"Unsupported provider `{provider}`.",
                stage="credentials",
                hint=f"Use one of: {supported}.",
            ),
        )
    if set_api_key and clear_api_key:
        exit_with_command_error(
            "credentials",
            ValidationError(
                "`--set-api-key` and `--clear-api-key` cannot be used together.",
                stage="credentials",
                hint="Run one credentials action per command invocation.",
            ),
        )

    credential_store = create_credential_store()
    if set_api_key:
        prompted_api_key = normalize_optional_string(
            typer.prompt(
                f"{provider} API key (hidden input)",
                default="",
                hide_input=True,
                show_default=False,
            )
        )
        if prompted_api_key is None:
            exit_with_command_error(
                "credentials",
                ValidationError(
                    "No API key entered.",
                    stage="credentials",
                    hint="Provide a non-empty API key when using `--set-api-key`.",
                ),
            )
        try:
            credential_store.set_api_key(provider, prompted_api_key)
        except (RuntimeError, ValueError) as exc:
            exit_with_command_error(
                "credentials",
                PagevoiceError(
                    stage="credentials",
                    detail=f"Failed to store API key securely: {exc}",
                    hint="Install and configure a keyring backend and retry.",
                ),
            )
        typer.echo(f"{provider} API key stored in secure credential storage.")
        return

    if clear_api_key:
        removed = credential_store.clear_api_key(provider)
        if removed:
            typer.echo(f"Stored {provider} API key cleared from secure credential storage.")
        else:
            typer.echo(f"No stored {provider} API key found in secure credential storage.")
        return

    availability = "available" if credential_store.is_available() else "unavailable"
    typer.echo(f"Secure credential storage: {availability}")
    for name in sorted(PROVIDER_ACCOUNTS):
        status = "present" if credential_store.get_api_key(name) is not None else "not set"
        typer.echo(f"Stored {name} API key: {status}")


def main() -> None:
    """CLI entrypoint for console scripts."""
    app()


if __name__ == "__main__":
    main()
