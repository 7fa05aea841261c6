"""
Verification Harness: Compile, replay, and verify demo permit streams.

Provides both single-spec verification and a suite of smoke tests when
run as __main__.
"""

from __future__ import annotations

from permit_kernel.hashing import canonical_hash
from permit_kernel.permit import WorkPermit

from .compiler import compile_demo_permit
from .demo_spec import DemoSpec


def verify_demo_permit(spec: DemoSpec, seed: int) -> dict:
    """
    Compile a demo permit, replay it through the engine, and return diagnostics.

    Returns:
        {
            "final_state_hash": str,
            "event_count": int,
            "status": str,
            "diagnostics": dict,
        }
    """
    events = compile_demo_permit(spec, seed)
    permit = WorkPermit.load(events)
    return {
        "final_state_hash": canonical_hash(permit.state),
        "event_count": len(events),
        "status": permit.status.value,
        "diagnostics": permit.diagnostics(),
    }


# ---------------------------------------------------------------------------
# CLI smoke tests
# ---------------------------------------------------------------------------

def _run_smoke_tests() -> None:
    """Compile every permit type to every status, twice, and compare hashes."""
    import json

    from permit_kernel.domain_types import PermitStatus, PermitType

    seed = 42
    all_ok = True

    for permit_type in PermitType:
        for status in PermitStatus:
            label = f"{permit_type.value} → {status.value}"
            spec = DemoSpec(permit_type=permit_type, target_status=status)
            try:
                result = verify_demo_permit(spec, seed)
                again = verify_demo_permit(spec, seed)
                if result["final_state_hash"] != again["final_state_hash"]:
                    print(f"  FAIL: {label}: DETERMINISM FAILURE")
                    all_ok = False
                else:
                    print(f"  OK: {label} ({result['event_count']} events)")
            except Exception as exc:
                print(f"  FAIL: {label}: {exc}")
                print(json.dumps(spec.to_dict(), indent=2))
                all_ok = False

    print(f"\n{'='*60}")
    if all_ok:
        print("  ALL SMOKE TESTS PASSED")
    else:
        print("  SOME TESTS FAILED")
    print(f"{'='*60}")


if __name__ == "__main__":
    _run_smoke_tests()
