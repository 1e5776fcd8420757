import pytest
from pathlib import Path
from urllib.parse import parse_qs, urlparse

from ipcr_portal.core.config import EvidenceSettings
from ipcr_portal.core.exceptions import NotFoundError, StorageError
from ipcr_portal.models import Attachment, PerformanceForm
from ipcr_portal.schemas.ipcr import FormCreate, IndicatorCreate
from ipcr_portal.services import evidence as evidence_module
from ipcr_portal.services.evidence import EvidenceQuotaManager
from ipcr_portal.services.ipcr_lifecycle import PerformanceFormLifecycle
from ipcr_portal.services.storage import LocalBlobStore, build_storage_path, safe_file_name

PDF = b"%PDF-1.4 evidence"
MB = 1024 * 1024


@pytest.fixture
def draft(db_session, employee, actor_of, active_cycle):
    """A draft form with one indicator: (form_id, indicator_id)."""
    lifecycle = PerformanceFormLifecycle(db_session)
    form_id = lifecycle.create_form(actor_of(employee), FormCreate()).data.form_id
    indicator = lifecycle.add_indicator(
        actor_of(employee), form_id, IndicatorCreate(category="core", description="Processed vouchers")
    ).data
    return form_id, indicator.id


@pytest.fixture
def manager(db_session, blob_store):
    return EvidenceQuotaManager(db_session, blob_store, EvidenceSettings(allow_admin_delete=True))


def _blobs(store):
    return [p for p in Path(store.root).rglob("*") if p.is_file()]


def _upload(manager, actor, form_id, name="proof.pdf", content=PDF, content_type="application/pdf", indicator_id=None):
    return manager.upload(actor, form_id, name, content_type, content, indicator_id=indicator_id)


def _finalize_directly(db, form_id):
    form = db.get(PerformanceForm, form_id)
    form.status = "finalized"
    db.commit()


# --- Upload ---

def test_upload_writes_blob_then_metadata(db_session, manager, blob_store, employee, actor_of, draft):
    form_id, _ = draft
    result = _upload(manager, actor_of(employee), form_id, name="Travel Order #12.pdf")
    assert result.success, result.error

    attachment = db_session.get(Attachment, result.data.id)
    assert attachment.storage_path.startswith(f"{employee.id}/form/{form_id}/")
    assert attachment.storage_path.endswith("_Travel_Order__12.pdf")
    assert attachment.file_size == len(PDF)
    assert blob_store.resolve(attachment.storage_path).read_bytes() == PDF
    assert result.data.download_url.startswith("/api/ipcr/attachments/download?")


def test_oversized_file_is_rejected_without_writing(db_session, manager, blob_store, employee, actor_of, draft):
    form_id, _ = draft
    result = _upload(manager, actor_of(employee), form_id, content=b"x" * (11 * MB))
    assert result.error.code == "VALIDATION_ERROR"
    assert "10MB" in result.error.message
    assert _blobs(blob_store) == []
    assert db_session.query(Attachment).count() == 0


def test_size_is_checked_before_status(db_session, manager, employee, actor_of, draft):
    form_id, _ = draft
    _finalize_directly(db_session, form_id)
    oversized = _upload(manager, actor_of(employee), form_id, content=b"x" * (11 * MB))
    assert "10MB" in oversized.error.message
    finalized = _upload(manager, actor_of(employee), form_id)
    assert finalized.error.code == "VALIDATION_ERROR"
    assert "finalized" in finalized.error.message


def test_form_level_quota(db_session, manager, blob_store, employee, actor_of, draft):
    form_id, indicator_id = draft
    actor = actor_of(employee)
    _upload(manager, actor, form_id, name="indicator-proof.pdf", indicator_id=indicator_id)
    for i in range(10):
        assert _upload(manager, actor, form_id, name=f"proof{i}.pdf").success

    result = _upload(manager, actor, form_id, name="proof10.pdf")
    assert result.error.code == "VALIDATION_ERROR"
    assert result.error.details == {"limit": 10, "current": 10}
    assert len(_blobs(blob_store)) == 11


def test_indicator_level_quota(db_session, manager, employee, actor_of, draft):
    form_id, indicator_id = draft
    actor = actor_of(employee)
    for i in range(5):
        assert _upload(manager, actor, form_id, name=f"out{i}.png", content_type="image/png",
                       indicator_id=indicator_id).success

    result = _upload(manager, actor, form_id, name="out5.png", content_type="image/png", indicator_id=indicator_id)
    assert result.error.code == "VALIDATION_ERROR"
    assert "per output" in result.error.message
    # Form-level slots are counted separately
    assert _upload(manager, actor, form_id, name="summary.pdf").success


def test_only_images_and_pdfs(db_session, manager, blob_store, employee, actor_of, draft):
    form_id, _ = draft
    result = _upload(manager, actor_of(employee), form_id, name="notes.txt", content_type="text/plain")
    assert result.error.code == "VALIDATION_ERROR"
    assert _blobs(blob_store) == []


def test_pdf_type_must_match_exactly(db_session, manager, blob_store, employee, actor_of, draft):
    form_id, _ = draft
    actor = actor_of(employee)
    for content_type in ("application/pdfx", "application/pdf-archive", "image/"):
        result = _upload(manager, actor, form_id, name="lookalike.pdf", content_type=content_type)
        assert result.error.code == "VALIDATION_ERROR", content_type
    assert _blobs(blob_store) == []

    assert _upload(manager, actor, form_id, name="scan.pdf", content_type="Application/PDF").success
    assert _upload(manager, actor, form_id, name="photo.jpg", content_type="image/jpeg").success


def test_upload_scope_checks(db_session, manager, employee, coworker, chief, actor_of, draft):
    form_id, _ = draft
    assert _upload(manager, actor_of(coworker), form_id).error.code == "FORBIDDEN"
    assert _upload(manager, actor_of(chief), form_id).success
    assert _upload(manager, actor_of(employee), form_id, indicator_id=999).error.code == "NOT_FOUND"
    assert _upload(manager, actor_of(employee), 999).error.code == "NOT_FOUND"


def test_failed_metadata_insert_removes_blob(db_session, manager, blob_store, employee, actor_of, draft, monkeypatch):
    form_id, _ = draft
    taken = f"{employee.id}/form/{form_id}/1700000000000_proof.pdf"
    db_session.add(Attachment(
        form_id=form_id, file_name="proof.pdf", file_size=1, file_type="application/pdf",
        storage_path=taken, uploaded_by=employee.id
    ))
    db_session.commit()
    monkeypatch.setattr(evidence_module, "build_storage_path", lambda *args, **kwargs: taken)

    result = _upload(manager, actor_of(employee), form_id)
    assert result.error.code == "STORAGE_ERROR"
    assert _blobs(blob_store) == []
    assert db_session.query(Attachment).count() == 1


# --- Delete ---

def _stored(manager, actor, form_id):
    result = _upload(manager, actor, form_id)
    assert result.success, result.error
    return result.data


def test_uploader_deletes_storage_then_row(db_session, manager, blob_store, employee, actor_of, draft):
    form_id, _ = draft
    stored = _stored(manager, actor_of(employee), form_id)
    result = manager.delete(actor_of(employee), stored.id)
    assert result.success
    assert db_session.get(Attachment, stored.id) is None
    assert not blob_store.exists(stored.storage_path)


def test_peer_cannot_delete(db_session, manager, employee, coworker, chief, actor_of, draft):
    form_id, _ = draft
    stored = _stored(manager, actor_of(employee), form_id)
    assert manager.delete(actor_of(coworker), stored.id).error.code == "FORBIDDEN"
    assert manager.delete(actor_of(chief), stored.id).error.code == "FORBIDDEN"
    assert db_session.get(Attachment, stored.id) is not None


def test_admin_delete_allowed_when_enabled(db_session, manager, blob_store, employee, hr_manager, actor_of, draft):
    form_id, _ = draft
    stored = _stored(manager, actor_of(employee), form_id)
    result = manager.delete(actor_of(hr_manager), stored.id)
    assert result.success
    assert db_session.get(Attachment, stored.id) is None
    assert not blob_store.exists(stored.storage_path)


def test_admin_delete_refused_when_disabled(db_session, tmp_path, employee, hr_manager, actor_of, draft):
    form_id, _ = draft
    store = LocalBlobStore(root=str(tmp_path / "strict"), secret_key="k", allow_admin_delete=False)
    manager = EvidenceQuotaManager(db_session, store, EvidenceSettings(allow_admin_delete=False))
    stored = _stored(manager, actor_of(employee), form_id)

    result = manager.delete(actor_of(hr_manager), stored.id)
    assert result.error.code == "FORBIDDEN"
    assert db_session.get(Attachment, stored.id) is not None
    assert store.exists(stored.storage_path)


def test_storage_refusal_keeps_the_row(db_session, tmp_path, employee, hr_manager, actor_of, draft):
    """Policy allows admin delete but the blob store does not: nothing is lost track of."""
    form_id, _ = draft
    store = LocalBlobStore(root=str(tmp_path / "mismatch"), secret_key="k", allow_admin_delete=False)
    manager = EvidenceQuotaManager(db_session, store, EvidenceSettings(allow_admin_delete=True))
    stored = _stored(manager, actor_of(employee), form_id)

    result = manager.delete(actor_of(hr_manager), stored.id)
    assert result.error.code == "STORAGE_ERROR"
    assert db_session.get(Attachment, stored.id) is not None
    assert store.exists(stored.storage_path)


def test_storage_failure_keeps_the_row(db_session, manager, blob_store, employee, actor_of, draft, monkeypatch):
    form_id, _ = draft
    stored = _stored(manager, actor_of(employee), form_id)

    def broken_delete(path, actor=None):
        raise StorageError("disk unavailable")
    monkeypatch.setattr(blob_store, "delete", broken_delete)

    result = manager.delete(actor_of(employee), stored.id)
    assert result.error.code == "STORAGE_ERROR"
    assert db_session.get(Attachment, stored.id) is not None


def test_delete_on_finalized_form(db_session, manager, employee, actor_of, draft):
    form_id, _ = draft
    stored = _stored(manager, actor_of(employee), form_id)
    _finalize_directly(db_session, form_id)
    assert manager.delete(actor_of(employee), stored.id).error.code == "VALIDATION_ERROR"


def test_delete_missing_attachment(db_session, manager, employee, actor_of):
    assert manager.delete(actor_of(employee), 404).error.code == "NOT_FOUND"


# --- Listing and links ---

def test_list_groups_by_scope(db_session, manager, employee, coworker, actor_of, draft):
    form_id, indicator_id = draft
    actor = actor_of(employee)
    _upload(manager, actor, form_id, name="a.pdf")
    _upload(manager, actor, form_id, name="b.png", content_type="image/png", indicator_id=indicator_id)

    listing = manager.list_attachments(actor, form_id).data
    assert [a.file_name for a in listing.form_attachments] == ["a.pdf"]
    assert [a.file_name for a in listing.indicator_attachments[indicator_id]] == ["b.png"]
    assert all(a.download_url for a in listing.form_attachments)
    assert manager.list_attachments(actor_of(coworker), form_id).error.code == "FORBIDDEN"


def test_signed_urls(blob_store):
    url = blob_store.signed_url("1/form/2/123_a.pdf", ttl=3600)
    params = {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}
    assert params["path"] == "1/form/2/123_a.pdf"
    assert blob_store.verify_signature(params["path"], int(params["expires"]), params["signature"])
    assert not blob_store.verify_signature("1/form/2/other.pdf", int(params["expires"]), params["signature"])
    assert not blob_store.verify_signature(params["path"], int(params["expires"]) + 1, params["signature"])

    expired = blob_store.signed_url("1/form/2/123_a.pdf", ttl=-10)
    params = {k: v[0] for k, v in parse_qs(urlparse(expired).query).items()}
    assert not blob_store.verify_signature(params["path"], int(params["expires"]), params["signature"])


def test_storage_paths_are_namespaced():
    assert safe_file_name("../../etc/passwd") == "_.._etc_passwd"
    assert build_storage_path(7, "indicator", 42, "My Report.pdf", timestamp_ms=1700000000000) == \
        "7/indicator/42/1700000000000_My_Report.pdf"


def test_store_rejects_paths_outside_root(blob_store):
    with pytest.raises(NotFoundError):
        blob_store.resolve("../outside.pdf")
