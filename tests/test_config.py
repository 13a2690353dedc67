from __future__ import annotations

from media_vault.config import Settings, load_settings


def test_missing_file_yields_defaults(tmp_path) -> None:
    settings = load_settings(tmp_path / "absent.yaml")

    assert settings == Settings()
    assert settings.machine_learning.duplicate_detection.max_distance == 0.01
    assert settings.is_duplicate_detection_enabled()


def test_values_are_loaded_and_bad_types_ignored(tmp_path) -> None:
    path = tmp_path / "settings.yaml"
    path.write_text(
        """
databases:
  primary_url: "sqlite:///tmp/vault.db"
queues:
  duplicate_queue: "dupes"
  backfill_batch_size: -5
  default_concurrency: "many"
machine_learning:
  enabled: true
  duplicate_detection:
    enabled: false
    max_distance: 0.03
upload:
  sidecar_extensions: [".XMP", ""]
""",
        encoding="utf-8",
    )

    settings = load_settings(path)

    assert settings.databases.primary_url == "sqlite:///tmp/vault.db"
    assert settings.queues.duplicate_queue == "dupes"
    assert settings.queues.backfill_batch_size == 1000
    assert settings.queues.default_concurrency == 2
    assert settings.machine_learning.duplicate_detection.max_distance == 0.03
    assert not settings.is_duplicate_detection_enabled()
    assert settings.upload.sidecar_extensions == [".xmp"]


def test_environment_variable_selects_file(tmp_path, monkeypatch) -> None:
    path = tmp_path / "custom.yaml"
    path.write_text("storage:\n  media_root: /srv/media\n", encoding="utf-8")
    monkeypatch.setenv("MEDIA_VAULT_SETTINGS", str(path))

    assert load_settings().storage.media_root == "/srv/media"


def test_non_mapping_document_yields_defaults(tmp_path) -> None:
    path = tmp_path / "list.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")

    assert load_settings(path) == Settings()
