"""Entry-point for the Study Portal application."""

from __future__ import annotations

import inspect
import json
import logging
from enum import Enum
from pathlib import Path
from typing import Optional

import uvicorn
import typer

from study_portal.bootstrap import BootstrapError, Bootstrapper
from study_portal.config import load_config
from study_portal.logging_utils import build_handlers, configure_logging
from study_portal.services.storage import FileStore
from study_portal.ui.console import ConsoleUI
from study_portal.ui.modern import ModernUI
from study_portal.web import create_app
from study_portal.web.server import get_max_upload_bytes


LOGGER = logging.getLogger("study_portal.run")


cli = typer.Typer(add_completion=False, help="Study Portal management commands")


def _prepare_logging(storage_root: Path) -> None:
    configure_logging(handlers=build_handlers(storage_root))


def _open_store(config_path: Optional[Path] = None, *, reconcile: bool = True) -> FileStore:
    """Load configuration, start logging, then bootstrap and reconcile the store."""

    config = load_config(config_path=config_path)
    _prepare_logging(config.storage_root)
    try:
        return Bootstrapper(config).initialize(reconcile=reconcile)
    except BootstrapError as error:
        typer.echo(f"Startup failed: {error}", err=True)
        raise typer.Exit(code=1) from error


class UIStyle(str, Enum):
    MODERN = "modern"
    CONSOLE = "console"


style_option = typer.Option(
    UIStyle.MODERN,
    "--style",
    "-s",
    help="Select the overview presentation style.",
    show_default=True,
)


DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 5000


@cli.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Launch the web server when no explicit command is provided."""

    if ctx.invoked_subcommand is None:
        ctx.invoke(serve, host=DEFAULT_HOST, port=DEFAULT_PORT, root_path=None, config_path=None)


def _normalize_root_path(root_path: Optional[str]) -> str:
    if root_path is None:
        return ""
    normalized = root_path.strip().rstrip("/")
    if not normalized:
        return ""
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized


config_option = typer.Option(
    None,
    "--config",
    help="Path to a JSON configuration file (defaults to config/default.json).",
    exists=True,
    dir_okay=False,
)


@cli.command()
def serve(
    host: str = typer.Option(DEFAULT_HOST, help="Host interface for the web server"),
    port: int = typer.Option(DEFAULT_PORT, envvar="PORT", help="Port for the web server"),
    root_path: Optional[str] = typer.Option(
        None,
        help="Prefix the application expects when mounted behind a proxy",
        envvar="STUDY_PORTAL_ROOT_PATH",
    ),
    config_path: Optional[Path] = config_option,
) -> None:
    """Run the FastAPI web server."""

    store = _open_store(config_path)
    normalized_root = _normalize_root_path(root_path)
    app = create_app(store, config=store.config, root_path=normalized_root)

    config_kwargs = {}
    max_upload_bytes = get_max_upload_bytes()
    if max_upload_bytes > 0:
        config_signature = inspect.signature(uvicorn.Config.__init__)
        if "limit_max_request_size" in config_signature.parameters:
            config_kwargs["limit_max_request_size"] = max_upload_bytes
        else:
            LOGGER.warning(
                "Ignoring max upload size limit; uvicorn.Config does not support "
                "'limit_max_request_size'.",
            )

    server_config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_config=None,
        root_path=normalized_root,
        **config_kwargs,
    )
    server = uvicorn.Server(server_config)
    app.state.server = server
    LOGGER.info("Serving storage from %s on %s:%s", store.storage_root, host, port)
    server.run()


@cli.command()
def reconcile(config_path: Optional[Path] = config_option) -> None:
    """Repair the metadata index and backup against the storage tree."""

    store = _open_store(config_path, reconcile=False)
    report = store.reconcile()
    typer.echo(
        json.dumps(
            {
                "indexEntriesAdded": report.index_entries_added,
                "subjectsRebuilt": report.subjects_rebuilt,
                "filesRelocated": report.files_relocated,
                "pathsCorrected": report.paths_corrected,
                "missingFiles": report.missing_files,
                "persisted": report.persisted,
            },
            indent=2,
        )
    )


@cli.command()
def overview(
    style: UIStyle = style_option,
    config_path: Optional[Path] = config_option,
) -> None:
    """Render an overview of subjects and stored files using the chosen UI style."""

    store = _open_store(config_path)
    if style is UIStyle.MODERN:
        ui = ModernUI(store)
    else:
        ui = ConsoleUI(store)
    ui.run()


if __name__ == "__main__":
    cli()
