"""Behavioural tests for upload, replace, and pre-upload checks."""

from __future__ import annotations

import base64
from pathlib import Path

import pytest
from sqlalchemy import func, select

from conftest import RecordingEvents, RecordingJobs, make_dto, make_file
from media_vault.access import AuthContext, SharedLinkAuth
from media_vault.db import Asset, User, open_primary_session
from media_vault.dtos import AssetBulkUploadCheckItem, AssetMediaReplaceDto, CheckExistingAssetsDto
from media_vault.enums import (
    AssetMediaStatus,
    AssetRejectReason,
    AssetStatus,
    AssetUploadAction,
    AssetVisibility,
    JobName,
    Permission,
    UploadFieldName,
)
from media_vault.errors import BadRequestError, ForbiddenError, NotFoundError
from media_vault.hasher import checksum_of_bytes
from media_vault.repositories.access import AccessRepository
from media_vault.repositories.asset import AssetRepository
from media_vault.repositories.event import ASSET_HIDE, ASSET_TRASH
from media_vault.repositories.user import UserRepository
from media_vault.services import AssetMediaService


def _files_under(root: Path) -> list[Path]:
    if not root.exists():
        return []
    return [path for path in root.rglob("*") if path.is_file()]


def _asset_count(session) -> int:
    return session.execute(select(func.count(Asset.id))).scalar_one()


def test_upload_creates_asset_and_schedules_metadata(media_service, session, storage, jobs, user) -> None:
    data = b"first image bytes"

    response = media_service.upload_asset(AuthContext(user_id=user.id), make_dto(), make_file(data))

    assert response.status == AssetMediaStatus.CREATED
    asset = session.get(Asset, response.id)
    assert asset is not None
    assert asset.checksum == checksum_of_bytes(data)
    assert asset.type == "image"
    assert asset.original_file_name == "IMG_0001.jpg"
    assert Path(asset.original_path).read_bytes() == data
    assert Path(asset.original_path).parent.parent.parent == storage.root / "upload" / user.id

    exif = AssetRepository(session).get_exif(asset.id)
    assert exif is not None and exif.file_size_in_byte == len(data)

    session.expire_all()
    assert session.get(User, user.id).quota_usage_in_bytes == len(data)

    assert [(job.name, job.data) for job in jobs.jobs] == [
        (JobName.ASSET_EXTRACT_METADATA, {"asset_id": asset.id, "source": "upload"})
    ]


def test_upload_same_content_twice_returns_duplicate(media_service, session, jobs, user) -> None:
    auth = AuthContext(user_id=user.id)
    data = b"same bytes"
    first = media_service.upload_asset(auth, make_dto(), make_file(data))
    second_file = make_file(data, name="copy.jpg")

    second = media_service.upload_asset(auth, make_dto(device_asset_id="device-asset-2"), second_file)

    assert second.status == AssetMediaStatus.DUPLICATE
    assert second.id == first.id
    assert _asset_count(session) == 1

    cleanup = jobs.named(JobName.FILE_DELETE)
    assert len(cleanup) == 1
    assert cleanup[0].data["files"] == [second_file.original_path]
    assert session.get(Asset, first.id).original_path != second_file.original_path

    session.expire_all()
    assert session.get(User, user.id).quota_usage_in_bytes == len(data)


def test_quota_exceeded_rejects_without_side_effects(media_service, session, storage, jobs) -> None:
    small = UserRepository(session).create(email="small@example.com", quota_size_in_bytes=8)
    session.commit()

    with pytest.raises(BadRequestError, match="Quota"):
        media_service.upload_asset(AuthContext(user_id=small.id), make_dto(), make_file(b"0123456789"))

    assert _files_under(storage.root) == []
    assert _asset_count(session) == 0
    assert jobs.jobs == []


def test_quota_allows_upload_that_fills_it_exactly(media_service, session) -> None:
    exact = UserRepository(session).create(email="exact@example.com", quota_size_in_bytes=10)
    session.commit()

    response = media_service.upload_asset(AuthContext(user_id=exact.id), make_dto(), make_file(b"0123456789"))

    assert response.status == AssetMediaStatus.CREATED


def test_unsupported_extension_is_rejected_before_write(media_service, session, storage, jobs, user) -> None:
    with pytest.raises(BadRequestError, match="Unsupported file type"):
        media_service.upload_asset(AuthContext(user_id=user.id), make_dto(), make_file(b"text", name="notes.txt"))

    assert _files_under(storage.root) == []
    assert _asset_count(session) == 0
    assert jobs.jobs == []


@pytest.mark.parametrize(
    "auth_kwargs",
    [
        {"shared_link": SharedLinkAuth(id="link", allow_upload=False)},
        {"api_key_permissions": frozenset({Permission.ASSET_READ})},
    ],
)
def test_upload_without_permission_is_forbidden(media_service, session, storage, user, auth_kwargs) -> None:
    with pytest.raises(ForbiddenError):
        media_service.upload_asset(AuthContext(user_id=user.id, **auth_kwargs), make_dto(), make_file())

    assert _files_under(storage.root) == []
    assert _asset_count(session) == 0


def test_shared_link_with_upload_permission_can_upload(media_service, user) -> None:
    auth = AuthContext(user_id=user.id, shared_link=SharedLinkAuth(id="link", allow_upload=True))

    response = media_service.upload_asset(auth, make_dto(), make_file())

    assert response.status == AssetMediaStatus.CREATED


def test_sidecar_is_stored_as_xmp(media_service, session, user) -> None:
    sidecar = make_file(b"<x:xmpmeta/>", name="IMG_0001.XMP", field_name=UploadFieldName.SIDECAR_DATA)

    response = media_service.upload_asset(AuthContext(user_id=user.id), make_dto(), make_file(), sidecar)

    asset = session.get(Asset, response.id)
    assert asset.sidecar_path == sidecar.original_path
    assert asset.sidecar_path.endswith(f"{sidecar.uuid}.xmp")
    assert Path(asset.sidecar_path).read_bytes() == b"<x:xmpmeta/>"


def test_live_photo_link_hides_motion_part(media_service, session, events, user) -> None:
    auth = AuthContext(user_id=user.id)
    motion = media_service.upload_asset(auth, make_dto(device_asset_id="mov"), make_file(b"video", name="IMG_0001.MOV"))

    still = media_service.upload_asset(
        auth,
        make_dto(device_asset_id="still", live_photo_video_id=motion.id),
        make_file(b"still", name="IMG_0001.HEIC"),
    )

    assert still.status == AssetMediaStatus.CREATED
    session.expire_all()
    assert session.get(Asset, still.id).live_photo_video_id == motion.id
    assert session.get(Asset, motion.id).visibility == AssetVisibility.HIDDEN.value
    assert (ASSET_HIDE, {"asset_id": motion.id, "user_id": user.id}) in events.emitted


def test_live_photo_link_validation(media_service, session, storage, user) -> None:
    auth = AuthContext(user_id=user.id)
    image = media_service.upload_asset(auth, make_dto(device_asset_id="img"), make_file(b"img"))
    motion = media_service.upload_asset(auth, make_dto(device_asset_id="mov"), make_file(b"mov", name="clip.mp4"))
    media_service.upload_asset(
        auth,
        make_dto(device_asset_id="still-1", live_photo_video_id=motion.id),
        make_file(b"still-1", name="still-1.jpg"),
    )
    files_before = _files_under(storage.root)

    for video_id, message in (
        ("missing", "not found"),
        (image.id, "must be a video"),
        (motion.id, "already linked"),
    ):
        with pytest.raises(BadRequestError, match=message):
            media_service.upload_asset(
                auth,
                make_dto(device_asset_id="still-2", live_photo_video_id=video_id),
                make_file(b"still-2", name="still-2.jpg"),
            )

    assert sorted(_files_under(storage.root)) == sorted(files_before)


def test_live_photo_link_requires_same_owner(media_service, session, user) -> None:
    other = UserRepository(session).create(email="other@example.com")
    session.commit()
    motion = media_service.upload_asset(AuthContext(user_id=other.id), make_dto(), make_file(b"mov", name="a.mov"))

    with pytest.raises(BadRequestError, match="does not belong"):
        media_service.upload_asset(
            AuthContext(user_id=user.id),
            make_dto(live_photo_video_id=motion.id),
            make_file(b"still"),
        )


def test_failure_after_write_queues_cleanup_and_rethrows(media_service, session, jobs, user, monkeypatch) -> None:
    def _explode(self, **values):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(AssetRepository, "create", _explode)
    upload = make_file(b"doomed")

    with pytest.raises(RuntimeError, match="database unavailable"):
        media_service.upload_asset(AuthContext(user_id=user.id), make_dto(), upload)

    cleanup = jobs.named(JobName.FILE_DELETE)
    assert [job.data["files"] for job in cleanup] == [[upload.original_path]]
    assert jobs.named(JobName.ASSET_EXTRACT_METADATA) == []


def test_declared_size_mismatch_is_rejected(media_service, session, jobs, user) -> None:
    upload = make_file(b"twelve bytes", size=4)

    with pytest.raises(BadRequestError, match="size mismatch"):
        media_service.upload_asset(AuthContext(user_id=user.id), make_dto(), upload)

    assert _asset_count(session) == 0
    assert jobs.named(JobName.FILE_DELETE)[0].data["files"] == [upload.original_path]


def test_replace_keeps_id_and_trashes_copy_of_old_content(media_service, session, jobs, events, user) -> None:
    auth = AuthContext(user_id=user.id)
    old_data = b"original content"
    new_data = b"edited content, longer"
    original = media_service.upload_asset(auth, make_dto(), make_file(old_data))
    old_path = session.get(Asset, original.id).original_path
    jobs.jobs.clear()

    replace_dto = AssetMediaReplaceDto(
        device_asset_id="device-asset-1",
        device_id="phone",
        file_created_at=make_dto().file_created_at,
        file_modified_at=make_dto().file_modified_at,
    )
    response = media_service.replace_asset(auth, original.id, replace_dto, make_file(new_data, name="edit.jpg"))

    assert response.status == AssetMediaStatus.REPLACED
    assert response.id != original.id

    session.expire_all()
    current = session.get(Asset, original.id)
    assert current.checksum == checksum_of_bytes(new_data)
    assert current.original_file_name == "edit.jpg"
    assert current.deleted_at is None

    copy = session.get(Asset, response.id)
    assert copy.checksum == checksum_of_bytes(old_data)
    assert copy.original_path == old_path
    assert copy.status == AssetStatus.TRASHED.value
    assert copy.deleted_at is not None
    assert AssetRepository(session).get_exif(copy.id).file_size_in_byte == len(old_data)
    assert AssetRepository(session).get_exif(original.id).file_size_in_byte == len(new_data)

    assert [(job.name, job.data) for job in jobs.jobs] == [
        (JobName.ASSET_EXTRACT_METADATA, {"asset_id": original.id, "source": "upload"}),
        (JobName.ASSET_EXTRACT_METADATA, {"asset_id": copy.id, "source": "copy"}),
    ]
    assert (ASSET_TRASH, {"asset_id": copy.id, "user_id": user.id}) in events.emitted
    assert session.get(User, user.id).quota_usage_in_bytes == len(old_data) + len(new_data)


def test_replace_with_content_of_another_asset_returns_duplicate(media_service, session, jobs, user) -> None:
    auth = AuthContext(user_id=user.id)
    first = media_service.upload_asset(auth, make_dto(device_asset_id="a"), make_file(b"aaa"))
    second = media_service.upload_asset(auth, make_dto(device_asset_id="b"), make_file(b"bbb", name="b.jpg"))
    jobs.jobs.clear()

    replacement = make_file(b"aaa", name="again.jpg")
    response = media_service.replace_asset(
        auth,
        second.id,
        AssetMediaReplaceDto(
            device_asset_id="b",
            device_id="phone",
            file_created_at=make_dto().file_created_at,
            file_modified_at=make_dto().file_modified_at,
        ),
        replacement,
    )

    assert response.status == AssetMediaStatus.DUPLICATE
    assert response.id == first.id
    session.expire_all()
    assert session.get(Asset, second.id).checksum == checksum_of_bytes(b"bbb")
    assert [job.data["files"] for job in jobs.named(JobName.FILE_DELETE)] == [[replacement.original_path]]


def test_replace_requires_ownership(media_service, session, user) -> None:
    other = UserRepository(session).create(email="intruder@example.com")
    session.commit()
    original = media_service.upload_asset(AuthContext(user_id=user.id), make_dto(), make_file(b"mine"))

    with pytest.raises(ForbiddenError):
        media_service.replace_asset(
            AuthContext(user_id=other.id),
            original.id,
            AssetMediaReplaceDto(
                device_asset_id="x",
                device_id="phone",
                file_created_at=make_dto().file_created_at,
                file_modified_at=make_dto().file_modified_at,
            ),
            make_file(b"theirs"),
        )


def test_bulk_upload_check_reports_duplicates_and_trash_state(media_service, session, user) -> None:
    auth = AuthContext(user_id=user.id)
    live = media_service.upload_asset(auth, make_dto(), make_file(b"live"))
    trashed = media_service.upload_asset(auth, make_dto(device_asset_id="t"), make_file(b"gone", name="gone.jpg"))
    AssetRepository(session).update_all([trashed.id], status=AssetStatus.TRASHED.value, deleted_at=1.0)
    session.commit()

    results = media_service.bulk_upload_check(
        auth,
        [
            AssetBulkUploadCheckItem(id="c1", checksum=checksum_of_bytes(b"live").hex()),
            AssetBulkUploadCheckItem(id="c2", checksum=base64.b64encode(checksum_of_bytes(b"gone")).decode()),
            AssetBulkUploadCheckItem(id="c3", checksum=checksum_of_bytes(b"new").hex()),
        ],
    )

    assert [(result.id, result.action) for result in results] == [
        ("c1", AssetUploadAction.REJECT),
        ("c2", AssetUploadAction.REJECT),
        ("c3", AssetUploadAction.ACCEPT),
    ]
    assert results[0].reason == AssetRejectReason.DUPLICATE
    assert (results[0].asset_id, results[0].is_trashed) == (live.id, False)
    assert (results[1].asset_id, results[1].is_trashed) == (trashed.id, True)
    assert results[2].asset_id is None


def test_bulk_upload_check_rejects_malformed_checksum(media_service, user) -> None:
    with pytest.raises(BadRequestError):
        media_service.bulk_upload_check(AuthContext(user_id=user.id), [AssetBulkUploadCheckItem(id="c", checksum="zz")])


def test_check_existing_assets_and_checksum_probe(media_service, user) -> None:
    auth = AuthContext(user_id=user.id)
    created = media_service.upload_asset(auth, make_dto(device_asset_id="on-phone"), make_file(b"probe"))

    existing = media_service.check_existing_assets(
        auth, CheckExistingAssetsDto(device_id="phone", device_asset_ids=["on-phone", "not-yet"])
    )
    assert existing == ["on-phone"]

    probe = media_service.get_upload_asset_id_by_checksum(auth, checksum_of_bytes(b"probe").hex())
    assert probe is not None and (probe.id, probe.status) == (created.id, AssetMediaStatus.DUPLICATE)
    assert media_service.get_upload_asset_id_by_checksum(auth, checksum_of_bytes(b"other").hex()) is None
    assert media_service.get_upload_asset_id_by_checksum(auth, None) is None


def test_download_original_returns_file_descriptor(media_service, session, user) -> None:
    auth = AuthContext(user_id=user.id)
    created = media_service.upload_asset(auth, make_dto(filename="Holiday.jpg"), make_file(b"download me"))

    response = media_service.download_original(auth, created.id)

    assert response.path == session.get(Asset, created.id).original_path
    assert response.file_name == "Holiday.jpg"
    assert response.content_type == "image/jpeg"


def test_upload_folder_layout(media_service, storage, user) -> None:
    auth = AuthContext(user_id=user.id)
    upload = make_file(name="IMG.JPG")
    profile = make_file(name="me.png", field_name=UploadFieldName.PROFILE_DATA)

    assert media_service.get_upload_folder(auth, upload) == (
        storage.root / "upload" / user.id / upload.uuid[0:2] / upload.uuid[2:4]
    )
    assert media_service.get_upload_filename(auth, upload) == f"{upload.uuid}.jpg"
    assert media_service.get_upload_folder(auth, profile) == storage.root / "profile" / user.id


def test_on_upload_error_queues_delete_of_target_path(media_service, jobs, storage, user) -> None:
    auth = AuthContext(user_id=user.id)
    upload = make_file(name="partial.jpg")

    media_service.on_upload_error(auth, upload)

    expected = media_service.get_upload_folder(auth, upload) / f"{upload.uuid}.jpg"
    assert [job.data for job in jobs.named(JobName.FILE_DELETE)] == [{"files": [str(expected)]}]


def _service_for(session, settings, storage) -> AssetMediaService:
    return AssetMediaService(
        session=session,
        assets=AssetRepository(session),
        users=UserRepository(session),
        access=AccessRepository(session),
        storage=storage,
        jobs=RecordingJobs(),
        events=RecordingEvents(),
        settings=settings,
    )


def test_second_session_upload_of_same_content_resolves_to_winner(
    media_service, session, settings, storage, user
) -> None:
    auth = AuthContext(user_id=user.id)
    data = b"raced bytes"
    winner = media_service.upload_asset(auth, make_dto(), make_file(data))

    with open_primary_session(settings.databases.primary_url) as other:
        loser_service = _service_for(other, settings, storage)
        loser = loser_service.upload_asset(auth, make_dto(device_asset_id="device-asset-2"), make_file(data))

    assert loser.status == AssetMediaStatus.DUPLICATE
    assert loser.id == winner.id
    session.expire_all()
    assert _asset_count(session) == 1
    assert session.get(User, user.id).quota_usage_in_bytes == len(data)


def test_usage_increments_from_two_sessions_are_not_lost(session, settings, user) -> None:
    with open_primary_session(settings.databases.primary_url) as first, open_primary_session(
        settings.databases.primary_url
    ) as second:
        stale_first = first.get(User, user.id)
        stale_second = second.get(User, user.id)
        assert stale_first.quota_usage_in_bytes == stale_second.quota_usage_in_bytes == 0

        UserRepository(first).update_usage(user.id, 5)
        first.commit()
        UserRepository(second).update_usage(user.id, 7)
        second.commit()

    session.expire_all()
    assert session.get(User, user.id).quota_usage_in_bytes == 12


def test_update_of_missing_asset_raises_not_found(session) -> None:
    with pytest.raises(NotFoundError):
        AssetRepository(session).update("missing", is_favorite=True)
