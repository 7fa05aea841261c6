"""
Work Permit Kernel: Hazard & Precaution Ledger Tests

Covers:
  - Risk level always derived; clamping of raw payload scores
  - Update / remove by id, NotFound on unknown ids
  - Control implementation recomputes residual risk
  - Precaution K3 reference rule, completion, verification ordering
  - Completion/verification stay editable after submission
  - Attachments metadata add / remove
  - Hazard category lookup table

Run:  python -m permit_kernel.test_ledgers
"""

from __future__ import annotations

import sys

from permit_kernel.domain_types import (
    HAZARD_CATEGORIES_BY_ID,
    AttachmentType,
    HazardCategory,
    PermitStatus,
    RiskLevel,
    hazard_category_for_id,
    hazard_category_id,
)
from permit_kernel.errors import InvalidTransitionError, NotFoundError, ValidationError
from permit_kernel.hazards import add_hazard
from permit_kernel.state import create_initial_state
from permit_kernel.test_harness import (
    REQUESTOR,
    approved_permit,
    make_hazard,
    make_precaution,
    new_permit,
    submitted_permit,
)


_pass = 0
_fail = 0


def _test(name, fn):
    global _pass, _fail
    try:
        fn()
        print(f"  [PASS] {name}")
        _pass += 1
    except Exception as exc:
        print(f"  [FAIL] {name}: {exc}")
        _fail += 1


def _expect(exc_type, fn, *args, **kwargs):
    try:
        fn(*args, **kwargs)
    except exc_type as exc:
        return exc
    raise AssertionError(f"{fn.__name__} should raise {exc_type.__name__}")


ACTOR = REQUESTOR.name


# ---------------------------------------------------------------------------
# Hazards
# ---------------------------------------------------------------------------

def test_hazard_risk_derived():
    permit = new_permit()
    hazard = permit.add_hazard(make_hazard(4, 5), actor=ACTOR)
    assert hazard.risk_level == RiskLevel.CRITICAL
    assert hazard.residual_risk_level == RiskLevel.CRITICAL
    assert hazard.is_control_implemented is False


def test_hazard_input_out_of_range_rejected():
    permit = new_permit()
    exc = _expect(ValidationError, permit.add_hazard, make_hazard(0, 9), ACTOR)
    assert "likelihood" in exc.errors and "severity" in exc.errors
    assert permit.state.hazards == {}


def test_raw_payload_scores_clamped():
    state = create_initial_state()
    hazard = add_hazard(state, {
        "description": "Falling object",
        "category": "Mechanical",
        "likelihood": 9,
        "severity": -2,
        "control_measures": "Barricade",
    })
    assert (hazard.likelihood, hazard.severity) == (5, 1)
    assert hazard.risk_level == RiskLevel.LOW


def test_hazard_update_and_remove():
    permit = new_permit()
    h1 = permit.add_hazard(make_hazard(1, 1), actor=ACTOR)
    h2 = permit.add_hazard(make_hazard(2, 2), actor=ACTOR)
    updated = permit.update_hazard(h1.id, make_hazard(3, 5, description="Steam leak"), ACTOR)
    assert updated.description == "Steam leak"
    assert updated.risk_level == RiskLevel.HIGH
    assert updated.residual_risk_level == RiskLevel.HIGH

    permit.remove_hazard(h2.id, actor=ACTOR)
    assert list(permit.state.hazards) == [h1.id]
    # ids are never reused
    h3 = permit.add_hazard(make_hazard(), actor=ACTOR)
    assert h3.id == 3


def test_hazard_unknown_id_not_found():
    permit = new_permit()
    permit.add_hazard(make_hazard(), actor=ACTOR)
    version = permit.version
    _expect(NotFoundError, permit.remove_hazard, 99, ACTOR)
    _expect(NotFoundError, permit.update_hazard, 99, make_hazard(), ACTOR)
    _expect(NotFoundError, permit.implement_hazard_control, 99, 1, 1, ACTOR)
    assert permit.version == version


def test_control_implementation_recomputes_residual():
    permit = approved_permit()
    hazard_id = next(iter(permit.state.hazards))
    assert permit.state.hazards[hazard_id].risk_level == RiskLevel.MEDIUM
    hazard = permit.implement_hazard_control(hazard_id, 1, 2, ACTOR, notes="Guard fitted")
    assert hazard.is_control_implemented
    assert hazard.control_implemented_at is not None
    assert hazard.residual_risk_level == RiskLevel.LOW
    assert hazard.risk_level == RiskLevel.MEDIUM
    assert hazard.implementation_notes == "Guard fitted"


def test_control_residual_scores_validated():
    permit = new_permit()
    hazard = permit.add_hazard(make_hazard(), actor=ACTOR)
    _expect(ValidationError, permit.implement_hazard_control, hazard.id, 0, 6, ACTOR)


def test_control_blocked_when_terminal():
    permit = new_permit()
    hazard = permit.add_hazard(make_hazard(), actor=ACTOR)
    permit.cancel(ACTOR, "Not required")
    _expect(InvalidTransitionError, permit.implement_hazard_control, hazard.id, 1, 1, ACTOR)


def test_hazard_category_table():
    assert len(HAZARD_CATEGORIES_BY_ID) == len(HazardCategory)
    for category in HazardCategory:
        assert hazard_category_for_id(hazard_category_id(category)) == category
    _expect(KeyError, hazard_category_for_id, 0)


# ---------------------------------------------------------------------------
# Precautions
# ---------------------------------------------------------------------------

def test_precaution_k3_reference_required():
    permit = new_permit()
    exc = _expect(
        ValidationError, permit.add_precaution,
        make_precaution(is_k3_requirement=True, k3_standard_reference=""), ACTOR,
    )
    assert "k3_standard_reference" in exc.errors
    p = permit.add_precaution(
        make_precaution(is_k3_requirement=True, k3_standard_reference="Permenaker 9/2016"),
        ACTOR,
    )
    assert p.is_k3_requirement


def test_precaution_update_remove_not_found():
    permit = new_permit()
    p = permit.add_precaution(make_precaution(), ACTOR)
    updated = permit.update_precaution(p.id, make_precaution(priority=5), ACTOR)
    assert updated.priority == 5
    _expect(NotFoundError, permit.remove_precaution, 42, ACTOR)
    permit.remove_precaution(p.id, ACTOR)
    assert permit.state.precautions == {}


def test_verify_requires_completion():
    permit = new_permit()
    p = permit.add_precaution(make_precaution(), ACTOR)
    _expect(ValidationError, permit.verify_precaution, p.id, "Dewi")
    permit.complete_precaution(p.id, "Budi", notes="Checked at gate")
    verified = permit.verify_precaution(p.id, "Dewi")
    assert verified.is_completed and verified.is_verified
    assert verified.completed_by == "Budi"
    assert verified.verified_by == "Dewi"


def test_completion_editable_after_submission():
    permit = new_permit()
    permit.add_hazard(make_hazard(), actor=ACTOR)
    p = permit.add_precaution(make_precaution(), ACTOR)
    permit.submit(ACTOR)
    assert permit.status == PermitStatus.SUBMITTED
    _expect(InvalidTransitionError, permit.update_precaution, p.id, make_precaution(), ACTOR)
    _expect(InvalidTransitionError, permit.remove_precaution, p.id, ACTOR)
    permit.complete_precaution(p.id, "Budi")
    permit.verify_precaution(p.id, "Dewi")
    assert permit.state.precautions[p.id].is_verified


# ---------------------------------------------------------------------------
# Attachments
# ---------------------------------------------------------------------------

def test_attachment_add_remove():
    permit = submitted_permit()
    a = permit.add_attachment(
        "1_abc.pdf", "method.pdf", "application/pdf", 2048,
        AttachmentType.METHOD_STATEMENT, ACTOR, description="Method statement",
    )
    assert a.id == 1 and a.uploaded_by == ACTOR
    permit.remove_attachment(a.id, ACTOR)
    assert permit.state.attachments == {}
    _expect(NotFoundError, permit.remove_attachment, a.id, ACTOR)


def test_attachment_blocked_when_cancelled():
    permit = new_permit()
    permit.cancel(ACTOR, "Duplicate request")
    _expect(
        InvalidTransitionError, permit.add_attachment,
        "f.pdf", "f.pdf", "application/pdf", 1, AttachmentType.OTHER, ACTOR,
    )


def main():
    tests = [
        ("Hazard: risk derived", test_hazard_risk_derived),
        ("Hazard: out-of-range input", test_hazard_input_out_of_range_rejected),
        ("Hazard: raw payload clamped", test_raw_payload_scores_clamped),
        ("Hazard: update + remove", test_hazard_update_and_remove),
        ("Hazard: unknown id", test_hazard_unknown_id_not_found),
        ("Hazard: residual risk", test_control_implementation_recomputes_residual),
        ("Hazard: residual validated", test_control_residual_scores_validated),
        ("Hazard: control blocked terminal", test_control_blocked_when_terminal),
        ("Hazard: category table", test_hazard_category_table),
        ("Precaution: K3 reference", test_precaution_k3_reference_required),
        ("Precaution: update/remove/not found", test_precaution_update_remove_not_found),
        ("Precaution: verify needs completion", test_verify_requires_completion),
        ("Precaution: editable after submit", test_completion_editable_after_submission),
        ("Attachment: add/remove", test_attachment_add_remove),
        ("Attachment: blocked when cancelled", test_attachment_blocked_when_cancelled),
    ]

    print(f"\nRunning {len(tests)} tests...\n")
    for name, fn in tests:
        _test(name, fn)

    print(f"\n{'='*60}")
    print(f"  {_pass} passed, {_fail} failed out of {_pass + _fail}")
    print(f"{'='*60}")

    if _fail > 0:
        sys.exit(1)


if __name__ == "__main__":
    main()
