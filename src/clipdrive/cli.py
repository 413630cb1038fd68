"""
CLI Entrypoint for clipdrive

Provides a command-line interface for connecting a Google Drive account and
uploading markdown documents into a Drive folder hierarchy.

Usage:
    clipdrive connect [OPTIONS]
    clipdrive disconnect [OPTIONS]
    clipdrive status [OPTIONS]
    clipdrive upload FILE [OPTIONS]
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn

from clipdrive.gdrive.auth import CredentialManager, create_identity_provider
from clipdrive.gdrive.config import DriveConfig, load_config
from clipdrive.gdrive.errors import AuthError
from clipdrive.pipeline import PipelineResult, create_pipeline, parse_folder_id

app = typer.Typer(
    name="clipdrive",
    help="Upload markdown documents to Google Drive",
    add_completion=False,
)

console = Console()

CONFIG_OPTION_HELP = "Path to settings.yaml configuration file"


def save_local_copy(content: str, title: str, download_dir: Path) -> Path:
    """
    Write the document to the local download directory.

    Args:
        content: Markdown content
        title: File name without extension
        download_dir: Target directory, created if missing

    Returns:
        Path to the written file
    """
    download_dir.mkdir(parents=True, exist_ok=True)
    path = download_dir / f"{title}.md"
    path.write_text(content, encoding="utf-8")
    return path


@app.command()
def connect(
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help=CONFIG_OPTION_HELP,
    ),
) -> None:
    """
    Authorize clipdrive to upload to your Google Drive.

    Opens a browser window for consent if no token is cached yet.
    """
    drive_config = load_config(config)
    credentials = CredentialManager(create_identity_provider(drive_config))

    async def _connect() -> None:
        try:
            await credentials.acquire(interactive=True)
        finally:
            await credentials.aclose()

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        progress.add_task("Connecting to Google Drive...", total=None)
        try:
            asyncio.run(_connect())
        except AuthError as e:
            console.print(f"[red]Authentication failed:[/] {e}")
            console.print("[yellow]Download client_secrets.json from Google Cloud Console > APIs & Services > Credentials[/]")
            raise typer.Exit(1) from e

    console.print("[bold green]Successfully connected to Google Drive[/]")


@app.command()
def disconnect(
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help=CONFIG_OPTION_HELP,
    ),
) -> None:
    """Revoke the cached Google Drive token."""
    drive_config = load_config(config)
    credentials = CredentialManager(create_identity_provider(drive_config))

    async def _disconnect() -> None:
        try:
            await credentials.revoke()
        finally:
            await credentials.aclose()

    asyncio.run(_disconnect())
    console.print("[bold green]Disconnected from Google Drive[/]")


@app.command()
def status(
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help=CONFIG_OPTION_HELP,
    ),
) -> None:
    """Show whether Google Drive is connected and the target folder is reachable."""
    drive_config = load_config(config)
    pipeline, transport = create_pipeline(drive_config)

    async def _status() -> tuple[bool, Optional[bool]]:
        try:
            connected = await pipeline.credentials.check_connection()
            folder_id = parse_folder_id(drive_config.target.folder_id)
            if not connected or folder_id is None:
                return connected, None
            return connected, await pipeline.resolver.validate_folder_access(folder_id)
        finally:
            await transport.aclose()
            await pipeline.credentials.aclose()

    connected, folder_ok = asyncio.run(_status())

    console.print(f"  Upload enabled: {drive_config.target.enabled}")
    if connected:
        console.print("  Connection: [green]connected[/]")
    else:
        console.print("  Connection: [red]not connected[/] (run 'clipdrive connect')")

    folder_value = drive_config.target.folder_id or "[dim]not set[/]"
    if folder_ok is None:
        console.print(f"  Folder: {folder_value}")
    elif folder_ok:
        console.print(f"  Folder: {folder_value} [green]accessible[/]")
    else:
        console.print(f"  Folder: {folder_value} [red]not accessible[/]")

    console.print(f"  Fall back to local download: {drive_config.target.fallback_to_download}")

    if not connected:
        raise typer.Exit(1)


@app.command()
def upload(
    input_path: Path = typer.Argument(
        ...,
        help="Markdown file to upload",
        exists=True,
        dir_okay=False,
    ),
    title: Optional[str] = typer.Option(
        None, "--title", "-t", help="Remote file name without extension (default: input file stem)",
    ),
    folder_path: str = typer.Option(
        "", "--folder-path", "-f", help="Slash-delimited folder path below the root folder",
    ),
    folder_id: Optional[str] = typer.Option(
        None, "--folder-id", help="Root folder id or sharing URL (overrides config)",
    ),
    download_dir: Path = typer.Option(
        Path("."), "--download-dir", "-o", help="Where to save the file if upload fails and fallback is on",
    ),
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help=CONFIG_OPTION_HELP,
    ),
) -> None:
    """
    Upload a markdown file to Google Drive.

    Examples:
        # Upload into the configured root folder
        clipdrive upload notes.md

        # Upload into 2024/January below the root, creating folders as needed
        clipdrive upload notes.md -f "2024/January/"

        # Override the root folder with a sharing URL
        clipdrive upload notes.md --folder-id https://drive.google.com/drive/folders/XYZ123
    """
    drive_config = load_config(config)
    if folder_id:
        drive_config.target.folder_id = folder_id

    content = input_path.read_text(encoding="utf-8")
    doc_title = title or input_path.stem

    if not drive_config.target.enabled:
        path = save_local_copy(content, doc_title, download_dir)
        console.print(f"[yellow]Google Drive upload disabled.[/] Saved locally: {path}")
        return

    result = asyncio.run(_run_upload(drive_config, content, doc_title, folder_path))

    if result.success:
        console.print(f"[bold green]{result.message}[/]")
        if result.folder_fallback:
            console.print("[yellow]Folder path could not be created; file was placed in the root folder.[/]")
        return

    if not drive_config.target.fallback_to_download:
        console.print(f"[red]Upload Failed:[/] {result.message}")
        raise typer.Exit(1)

    path = save_local_copy(content, doc_title, download_dir)
    console.print(f"[yellow]Upload Failed:[/] Falling back to local download. {result.message}")
    console.print(f"Saved locally: {path}")


async def _run_upload(
    drive_config: DriveConfig,
    content: str,
    title: str,
    folder_path: str,
) -> PipelineResult:
    pipeline, transport = create_pipeline(drive_config)
    try:
        return await pipeline.run(content, title, folder_path, drive_config.target)
    finally:
        await transport.aclose()
        await pipeline.credentials.aclose()


def main() -> None:
    app()


if __name__ == "__main__":
    main()
