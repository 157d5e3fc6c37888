"""
signing/tests/test_workflow_engine.py

Guard logic of SigningEngine on plain in-memory models.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from signing.exceptions.errors import InvalidStateError, OrderViolationError, ValidationError
from signing.logic.workflow_engine import SigningEngine, has_value, is_checked
from signing.models.document import Field, Recipient, SignatureDocument, StorageRef
from signing.models.enums import DocumentStatus, FieldType, RecipientRole, RecipientStatus

engine = SigningEngine()


def _doc(*recipients: Recipient, status: DocumentStatus = DocumentStatus.SENT) -> SignatureDocument:
    return SignatureDocument(id="d1", team_id="t", title="Doc", file=StorageRef.local("a.pdf"), page_count=3,
                             status=status, recipients=list(recipients))


def _r(rid: str, order: int, *, status=RecipientStatus.SENT, required=True,
       role=RecipientRole.SIGNER) -> Recipient:
    return Recipient(id=rid, document_id="d1", name=rid, email=f"{rid}@example.com", signing_order=order,
                     status=status, required=required, role=role)


def _field(**kw) -> Field:
    base = dict(id="f1", document_id="d1", type=FieldType.TEXT, page_number=1, x=10, y=10, width=10, height=5)
    base.update(kw)
    return Field(**base)


def test_order_gate_blocks_on_lower_unsigned_required():
    a, b, c = _r("a", 1), _r("b", 2), _r("c", 3)
    doc = _doc(a, b, c)
    assert engine.blocking_recipients(doc, c) == [a, b]
    with pytest.raises(OrderViolationError):
        engine.ensure_can_sign(doc, b)
    engine.ensure_can_sign(doc, a)


def test_order_gate_ignores_equal_orders_signed_and_optional():
    a = _r("a", 1, status=RecipientStatus.SIGNED)
    b = _r("b", 2, required=False)
    v = _r("v", 2, role=RecipientRole.VIEWER)
    c = _r("c", 3)
    d = _r("d", 3)
    doc = _doc(a, b, v, c, d)
    assert engine.blocking_recipients(doc, c) == []
    engine.ensure_can_sign(doc, d)


@pytest.mark.parametrize("status, reason", [
    (DocumentStatus.DRAFT, "document has not been sent yet"),
    (DocumentStatus.COMPLETED, "document already completed"),
    (DocumentStatus.DECLINED, "document was declined"),
    (DocumentStatus.VOIDED, "document was voided"),
    (DocumentStatus.EXPIRED, "document has expired"),
])
def test_signing_requires_sent_document(status, reason):
    a = _r("a", 1)
    with pytest.raises(InvalidStateError) as err:
        engine.ensure_can_sign(_doc(a, status=status), a)
    assert err.value.reason == reason


def test_pending_recipient_cannot_sign_or_view():
    a = _r("a", 1, status=RecipientStatus.PENDING)
    doc = _doc(a)
    with pytest.raises(InvalidStateError):
        engine.ensure_can_sign(doc, a)
    with pytest.raises(InvalidStateError):
        engine.ensure_can_view(doc, a)


def test_completed_document_stays_viewable():
    a = _r("a", 1, status=RecipientStatus.SIGNED)
    engine.ensure_can_view(_doc(a, status=DocumentStatus.COMPLETED), a)


def test_should_complete_only_counts_required_recipients():
    a = _r("a", 1, status=RecipientStatus.SIGNED)
    opt = _r("o", 1, required=False)
    viewer = _r("v", 1, role=RecipientRole.VIEWER)
    assert engine.should_complete(_doc(a, opt, viewer))
    assert not engine.should_complete(_doc(a, _r("b", 2)))
    assert not engine.should_complete(_doc(opt))


def test_is_overdue():
    now = datetime(2024, 6, 1, tzinfo=timezone.utc)
    doc = _doc(_r("a", 1))
    assert not engine.is_overdue(doc, now)
    doc.expires_at = now
    assert engine.is_overdue(doc, now)
    doc.expires_at = now + timedelta(seconds=1)
    assert not engine.is_overdue(doc, now)
    doc.expires_at = now - timedelta(days=1)
    doc.status = DocumentStatus.COMPLETED
    assert not engine.is_overdue(doc, now)


def test_missing_required_fields():
    sig = _field(id="s", type=FieldType.SIGNATURE, required=True)
    box = _field(id="c", type=FieldType.CHECKBOX, required=True)
    txt = _field(id="t", type=FieldType.TEXT, required=True)
    opt = _field(id="o", type=FieldType.TEXT)
    missing = engine.missing_required_fields([sig, box, txt, opt], {"c": "false", "t": "  "},
                                             has_signature_image=False)
    assert [f.id for f in missing] == ["s", "c", "t"]
    assert engine.missing_required_fields([sig, box, txt], {"c": "on", "t": "x"}, has_signature_image=True) == []


def test_checkbox_values():
    assert is_checked("Yes") and is_checked("true") and is_checked("1")
    assert not is_checked("false") and not is_checked(None)
    assert has_value(_field(type=FieldType.TEXT), "x")
    assert not has_value(_field(type=FieldType.CHECKBOX), "no")


def test_field_geometry_validation():
    engine.validate_field_geometry(_field(x=100, y=100, width=100, height=100), 3)
    engine.validate_field_geometry(_field(x=0, y=0, width=0.1, height=0.1), 3)
    for bad in (dict(page_number=0), dict(page_number=4), dict(x=-1), dict(y=100.5),
                dict(width=0), dict(height=101)):
        with pytest.raises(ValidationError):
            engine.validate_field_geometry(_field(**bad), 3)


def test_dispatch_and_void_guards():
    with pytest.raises(ValidationError):
        engine.ensure_can_dispatch(_doc(status=DocumentStatus.DRAFT))
    with pytest.raises(InvalidStateError):
        engine.ensure_can_dispatch(_doc(_r("a", 1), status=DocumentStatus.SENT))
    engine.ensure_can_void(_doc(status=DocumentStatus.DRAFT))
    with pytest.raises(InvalidStateError):
        engine.ensure_can_void(_doc(status=DocumentStatus.EXPIRED))
    for status in (DocumentStatus.COMPLETED, DocumentStatus.DECLINED, DocumentStatus.VOIDED):
        with pytest.raises(InvalidStateError):
            engine.ensure_can_void(_doc(status=status))
    engine.ensure_can_void(_doc(_r("a", 1), status=DocumentStatus.SENT))


def test_dispatch_needs_a_required_signer():
    draft = _doc(_r("o", 1, required=False), _r("v", 1, role=RecipientRole.VIEWER), status=DocumentStatus.DRAFT)
    with pytest.raises(ValidationError, match="at least one required signer"):
        engine.ensure_can_dispatch(draft)
    draft.recipients.append(_r("a", 2))
    engine.ensure_can_dispatch(draft)


def test_empty_required_unassigned_field_blocks_completion():
    doc = _doc(_r("a", 1, status=RecipientStatus.SIGNED))
    fund = _field(id="fund", required=True, label="Fund Name")
    doc.fields = [fund]
    assert engine.unfilled_unassigned_fields(doc) == [fund]
    assert not engine.should_complete(doc)

    fund.value = "Growth Fund III"
    assert engine.unfilled_unassigned_fields(doc) == []
    assert engine.should_complete(doc)

    doc.fields.append(_field(id="note", required=False))
    assert engine.should_complete(doc)
