"""Operator CLI for the media vault: schema, users, local ingest, and duplicate jobs."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import typer

from media_vault.access import AuthContext
from media_vault.config import load_settings
from media_vault.db import open_primary_session
from media_vault.dtos import AssetMediaCreateDto, UploadFile
from media_vault.enums import JobName, UploadFieldName
from media_vault.factory import build_asset_media_service, build_duplicate_service
from media_vault.repositories.event import EventRepository
from media_vault.repositories.job import JobItem
from media_vault.repositories.user import UserRepository
from media_vault.task_queue import job_repository
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "cli"})

app = typer.Typer(help="Manage the media vault asset store.")


def _primary_url(db: Optional[str]) -> str:
    return db or load_settings().databases.primary_url


@app.command("init-db")
def init_db(
    db: Optional[str] = typer.Option(None, "--db", help="Database URL or SQLite path; defaults to settings.yaml."),
) -> None:
    """Create the schema if it does not exist yet."""

    target = _primary_url(db)
    with open_primary_session(target):
        pass
    LOGGER.info("cli_init_db", extra={"target": target})


@app.command("create-user")
def create_user(
    email: str = typer.Argument(..., help="Unique e-mail address of the user."),
    name: str = typer.Option("", "--name", help="Display name."),
    quota: Optional[int] = typer.Option(None, "--quota", min=0, help="Storage quota in bytes; unlimited when omitted."),
    db: Optional[str] = typer.Option(None, "--db", help="Database URL or SQLite path; defaults to settings.yaml."),
) -> None:
    """Create a user and print its id."""

    with open_primary_session(_primary_url(db)) as session:
        users = UserRepository(session)
        existing = users.get_by_email(email)
        if existing is not None:
            typer.echo(f"User {email} already exists: {existing.id}", err=True)
            raise typer.Exit(code=1)
        user = users.create(email=email, name=name, quota_size_in_bytes=quota)
        session.commit()
        typer.echo(user.id)


@app.command("upload")
def upload(
    owner: str = typer.Option(..., "--owner", help="Id of the user who will own the asset."),
    path: Path = typer.Argument(..., exists=True, file_okay=True, dir_okay=False, readable=True),
    device_id: str = typer.Option("cli", "--device-id", help="Device id recorded on the asset."),
    sidecar: Optional[Path] = typer.Option(None, "--sidecar", exists=True, dir_okay=False, help="XMP sidecar."),
) -> None:
    """Ingest a local file as if it was uploaded by ``owner``."""

    settings = load_settings()
    stat = path.stat()
    modified = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
    dto = AssetMediaCreateDto(
        device_asset_id=f"{path.name}-{stat.st_size}",
        device_id=device_id,
        file_created_at=modified,
        file_modified_at=modified,
        filename=path.name,
    )
    file = UploadFile.from_path(UploadFieldName.ASSET_DATA, path)
    sidecar_file = UploadFile.from_path(UploadFieldName.SIDECAR_DATA, sidecar) if sidecar else None

    with open_primary_session(settings.databases.primary_url) as session:
        service = build_asset_media_service(session, settings, job_repository(), EventRepository())
        response = service.upload_asset(AuthContext(user_id=owner), dto, file, sidecar_file)

    typer.echo(f"{response.status.value} {response.id}")


@app.command("queue-duplicates")
def queue_duplicates(
    force: bool = typer.Option(False, "--force", help="Re-evaluate every asset, not only stale ones."),
) -> None:
    """Queue the bulk duplicate detection driver on the workers."""

    job_repository().queue(JobItem(JobName.ASSET_DETECT_DUPLICATES_QUEUE_ALL, {"force": force}))
    LOGGER.info("cli_queue_duplicates", extra={"force": force})


@app.command("list-duplicates")
def list_duplicates(
    owner: str = typer.Option(..., "--owner", help="Id of the user whose clusters are listed."),
) -> None:
    """Print every duplicate cluster of ``owner`` with its member paths."""

    settings = load_settings()
    with open_primary_session(settings.databases.primary_url) as session:
        service = build_duplicate_service(session, settings, job_repository(), EventRepository())
        groups = service.get_duplicates(AuthContext(user_id=owner))
        for group in groups:
            typer.echo(group.duplicate_id)
            for asset in group.assets:
                typer.echo(f"  {asset.id} {asset.original_path}")

    if not groups:
        typer.echo("no duplicates")


def main() -> None:
    """Entrypoint used when invoking the module as a script."""

    app()


if __name__ == "__main__":
    main()


__all__ = ["app", "main"]
