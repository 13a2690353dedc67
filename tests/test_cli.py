from __future__ import annotations

from typer.testing import CliRunner

from media_vault.cli import app


def test_create_user_rejects_existing_email(tmp_path) -> None:
    runner = CliRunner()
    db = str(tmp_path / "cli.db")

    created = runner.invoke(app, ["create-user", "owner@example.com", "--db", db, "--quota", "100"])
    assert created.exit_code == 0, created.output
    user_id = created.output.strip().splitlines()[-1]

    repeated = runner.invoke(app, ["create-user", "owner@example.com", "--db", db])
    assert repeated.exit_code == 1
    assert "already exists" in repeated.output
    assert user_id in repeated.output
