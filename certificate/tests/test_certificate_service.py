"""
certificate/tests/test_certificate_service.py

Certificate issue, idempotency, tamper detection and signature token checks.
"""

from __future__ import annotations

import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime, timezone
from io import BytesIO

import pytest
from pypdf import PdfReader

from certificate.logic.hashing import certificate_hash, certificate_id
from certificate.repository.sqlite_certificate_repository import SQLiteCertificateRepository
from conftest import two_signer_document
from signing.exceptions.errors import DocumentNotFoundError, InvalidStateError
from signing.logic import events
from signing.models.audit_entry import AuditEvent


def _complete(services, source_ref, png_bytes, metadata=None):
    doc = two_signer_document(services, source_ref, metadata=metadata)
    services.workflow.dispatch(doc.id)
    alice, bob = doc.ordered_recipients
    services.workflow.record_signature(alice.id, {}, png_bytes, "198.51.100.4", "Firefox")
    services.workflow.record_signature(bob.id, {}, png_bytes, "198.51.100.5", "Safari")
    return services.workflow.get_document(doc.id)


# ---- pure helpers ---------------------------------------------------------------

def test_certificate_id_format_and_determinism():
    at = datetime(2024, 2, 1, 12, 0, tzinfo=timezone.utc)
    cid = certificate_id("doc-1", at, "1.0")
    assert re.fullmatch(r"[0-9A-F]{16}", cid)
    assert cid == certificate_id("doc-1", at, "1.0")
    assert cid != certificate_id("doc-1", at, "2.0")
    assert cid != certificate_id("doc-2", at, "1.0")


def test_certificate_hash_covers_signatures():
    at = datetime(2024, 2, 1, tzinfo=timezone.utc)
    kw = dict(cert_id="ABC", document_id="d", document_hash="sha256:00", completed_at=at)
    assert certificate_hash(signature_hashes=["a", "b"], **kw) != certificate_hash(signature_hashes=["a"], **kw)


# ---- service --------------------------------------------------------------------

def test_completion_pregenerates_certificate(services, source_ref, png_bytes):
    doc = _complete(services, source_ref, png_bytes)
    record = services.certificates.record_for(doc.id)
    assert record is not None
    assert record.certificate_id == certificate_id(doc.id, doc.completed_at, "1.0")
    assert record.document_hash.startswith("sha256:")
    generated = [e for e in services.workflow.audit_entries(doc.id) if e.event == AuditEvent.CERTIFICATE_GENERATED]
    assert len(generated) == 1


def test_generate_is_idempotent(services, source_ref, png_bytes):
    doc = _complete(services, source_ref, png_bytes)
    first = services.certificates.generate_certificate(doc.id)
    second = services.certificates.generate_certificate(doc.id)

    assert first.certificate_id == second.certificate_id
    assert first.document_hash == second.document_hash
    assert first.record.generated_at == second.record.generated_at
    assert [s.email for s in first.signers] == ["alice@example.com", "bob@example.com"]
    assert first.signers[0].ip_address == "198.51.100.4"

    pdf = PdfReader(BytesIO(first.pdf))
    text = "".join(p.extract_text() or "" for p in pdf.pages)
    assert first.certificate_id in text
    assert "alice@example.com" in text


def test_second_record_for_a_document_is_ignored(services, source_ref, png_bytes):
    doc = _complete(services, source_ref, png_bytes)
    existing = services.certificates.record_for(doc.id)
    late = replace(existing, document_hash="sha256:" + "0" * 64, generated_at=datetime.now(timezone.utc))

    stored, created = SQLiteCertificateRepository(services.repository).save_once(late)
    assert not created
    assert stored == existing


def test_verify_untouched_document(services, source_ref, png_bytes):
    doc = _complete(services, source_ref, png_bytes)
    cert = services.certificates.generate_certificate(doc.id)

    result = services.certificates.verify_certificate(cert.certificate_id.lower())
    assert result.verified
    assert result.current_hash == result.recorded_hash == cert.document_hash
    assert result.completed_at == doc.completed_at
    assert services.workflow.audit_entries(doc.id)[-1].event == AuditEvent.CERTIFICATE_VERIFIED


def test_verify_detects_modified_artifact(services, source_ref, png_bytes):
    doc = _complete(services, source_ref, png_bytes)
    cert = services.certificates.generate_certificate(doc.id)
    stored = services.storage.fetch_file_bytes(doc.completed_file)
    services.storage.put_file_bytes(doc.completed_file, stored + b"\n% appended", overwrite=True)

    result = services.certificates.verify_certificate(cert.certificate_id)
    assert not result.verified
    assert result.error_code == "integrity_error"
    assert "document hash mismatch" in result.reason
    assert result.recorded_hash == cert.document_hash
    assert result.current_hash != cert.document_hash

    # the recorded hash is never recomputed from the modified file
    again = services.certificates.generate_certificate(doc.id)
    assert again.document_hash == cert.document_hash


def test_verify_missing_file(services, source_ref, png_bytes):
    doc = _complete(services, source_ref, png_bytes)
    cert = services.certificates.generate_certificate(doc.id)
    (services.storage.root / doc.completed_file.key).unlink()

    result = services.certificates.verify_certificate(cert.certificate_id)
    assert not result.verified
    assert result.error_code == "storage_error"


def test_verify_unknown_certificate(services):
    result = services.certificates.verify_certificate("0000000000000000")
    assert not result.verified
    assert result.reason == "certificate not found"
    assert result.as_dict()["verified"] is False


def test_certificate_requires_completed_document(services, sent_document):
    with pytest.raises(InvalidStateError):
        services.certificates.generate_certificate(sent_document.id)
    with pytest.raises(DocumentNotFoundError):
        services.certificates.generate_certificate("missing")


def test_download_is_audited(services, source_ref, png_bytes):
    doc = _complete(services, source_ref, png_bytes)
    cert = services.certificates.download_certificate(doc.id)
    last = services.workflow.audit_entries(doc.id)[-1]
    assert last.event == AuditEvent.CERTIFICATE_DOWNLOADED
    assert last.metadata["certificate_id"] == cert.certificate_id


def test_kyc_trigger_notification(services, source_ref, png_bytes, notifier):
    _complete(services, source_ref, png_bytes, metadata={"trigger_kyc_on_completion": True})
    assert events.KYC_TRIGGER in notifier.events()
    completed = dict(notifier.sent)[events.DOCUMENT_COMPLETED]
    assert completed["status"] == "COMPLETED"
    assert {r["status"] for r in completed["allRecipients"]} == {"SIGNED"}


def test_no_kyc_trigger_by_default(services, source_ref, png_bytes, notifier):
    _complete(services, source_ref, png_bytes)
    assert events.KYC_TRIGGER not in notifier.events()
    assert services.repository.pending_outbox() == []


def test_concurrent_generation_issues_one_certificate(services, source_ref, png_bytes):
    doc = _complete(services, source_ref, png_bytes)
    with ThreadPoolExecutor(max_workers=6) as pool:
        certs = list(pool.map(lambda _: services.certificates.generate_certificate(doc.id), range(12)))

    assert len({c.certificate_id for c in certs}) == 1
    assert len({c.document_hash for c in certs}) == 1
    assert certs[0].certificate_id == services.certificates.record_for(doc.id).certificate_id
    generated = [e for e in services.workflow.audit_entries(doc.id) if e.event == AuditEvent.CERTIFICATE_GENERATED]
    assert len(generated) == 1


# ---- signature tokens -----------------------------------------------------------

def test_verify_signature_token(services, source_ref, png_bytes):
    doc = _complete(services, source_ref, png_bytes)
    alice = doc.ordered_recipients[0]

    result = services.certificates.verify_signature(alice.verification_token)
    assert result.verified
    assert result.recipient_id == alice.id
    assert result.recipient_email == "alice@example.com"
    assert result.ip_address == "198.51.100.4"
    assert result.signed_at == alice.signed_at
    assert result.as_dict()["documentStatus"] == "COMPLETED"
    last = services.workflow.audit_entries(doc.id)[-1]
    assert last.event == AuditEvent.SIGNATURE_VERIFIED
    assert last.recipient_id == alice.id


def test_verify_signature_unknown_token(services, source_ref, png_bytes):
    _complete(services, source_ref, png_bytes)
    for token in ("0" * 32, ""):
        result = services.certificates.verify_signature(token)
        assert not result.verified
        assert result.error_code == "not_found"
        assert result.document_id is None


def test_verify_signature_detects_modified_source(services, source_ref, png_bytes):
    doc = _complete(services, source_ref, png_bytes)
    bob = doc.ordered_recipients[1]
    original = services.storage.fetch_file_bytes(source_ref)
    services.storage.put_file_bytes(source_ref, original + b"\n% edited", overwrite=True)

    result = services.certificates.verify_signature(bob.verification_token)
    assert not result.verified
    assert result.error_code == "integrity_error"
    assert "document hash mismatch" in result.reason


def test_verify_signature_detects_altered_evidence(services, source_ref, png_bytes):
    doc = _complete(services, source_ref, png_bytes)
    alice = doc.ordered_recipients[0]
    with services.repository.transaction() as conn:
        conn.execute("UPDATE signature_recipients SET ip_address = '203.0.113.9' WHERE id = ?", (alice.id,))

    result = services.certificates.verify_signature(alice.verification_token)
    assert not result.verified
    assert result.reason == "signature hash mismatch"
