"""
Work Permit Kernel: Input Validation

Field-level checks run before an event is emitted. Every problem is
collected, then raised at once as a single ValidationError.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Dict, List

from .constants import (
    CONTROL_MEASURES_MAX_LENGTH,
    DESCRIPTION_MAX_LENGTH,
    HAZARD_DESCRIPTION_MAX_LENGTH,
    K3_LICENSE_TYPES,
    K3_REFERENCE_MAX_LENGTH,
    LOCATION_MAX_LENGTH,
    MAX_NUMBER_OF_WORKERS,
    MAX_PERMIT_DURATION_DAYS,
    MIN_NUMBER_OF_WORKERS,
    NAME_MAX_LENGTH,
    PHONE_PATTERN,
    PRECAUTION_DESCRIPTION_MAX_LENGTH,
    SAFETY_OFFICER_TYPES,
    SCORE_MAX,
    SCORE_MIN,
    SUPERVISED_TYPES,
    TEXT_MAX_LENGTH,
    TITLE_MAX_LENGTH,
    VERIFICATION_METHOD_MAX_LENGTH,
    WORK_SCOPE_MAX_LENGTH,
)
from .domain_types import (
    HazardCategory,
    HazardInput,
    PermitDetails,
    PermitType,
    PrecautionCategory,
    PrecautionInput,
)
from .errors import ValidationError


class _Errors:
    """Collects field → messages, raises once."""

    def __init__(self) -> None:
        self._errors: Dict[str, List[str]] = {}

    def add(self, field: str, message: str) -> None:
        self._errors.setdefault(field, []).append(message)

    def required(self, field: str, value: str, label: str, max_length: int) -> None:
        text = (value or "").strip()
        if not text:
            self.add(field, f"{label} is required.")
        elif len(text) > max_length:
            self.add(field, f"{label} cannot exceed {max_length} characters.")

    def optional(self, field: str, value: str, label: str, max_length: int) -> None:
        if value and len(value) > max_length:
            self.add(field, f"{label} cannot exceed {max_length} characters.")

    def raise_if_any(self) -> None:
        if self._errors:
            raise ValidationError(self._errors)


def validate_permit_details(details: PermitDetails) -> None:
    e = _Errors()

    e.required("title", details.title, "Title", TITLE_MAX_LENGTH)
    e.required("description", details.description, "Description", DESCRIPTION_MAX_LENGTH)
    e.required("work_location", details.work_location, "Work location", LOCATION_MAX_LENGTH)
    e.required("work_scope", details.work_scope, "Work scope", WORK_SCOPE_MAX_LENGTH)
    e.optional("equipment_to_be_used", details.equipment_to_be_used, "Equipment", TEXT_MAX_LENGTH)
    e.optional("materials_involved", details.materials_involved, "Materials", TEXT_MAX_LENGTH)
    e.optional("contractor_company", details.contractor_company, "Contractor company", NAME_MAX_LENGTH * 2)

    try:
        permit_type = PermitType(details.permit_type)
    except ValueError:
        e.add("permit_type", "Invalid permit type.")
        permit_type = None

    _validate_schedule(e, details)

    if not MIN_NUMBER_OF_WORKERS <= details.number_of_workers <= MAX_NUMBER_OF_WORKERS:
        e.add(
            "number_of_workers",
            f"Number of workers must be between {MIN_NUMBER_OF_WORKERS} "
            f"and {MAX_NUMBER_OF_WORKERS}.",
        )

    _validate_requestor(e, details)
    _validate_coordinates(e, details)

    if permit_type is not None:
        _validate_type_rules(e, details, permit_type)

    e.raise_if_any()


def _validate_schedule(e: _Errors, details: PermitDetails) -> None:
    if details.planned_start is None or details.planned_end is None:
        e.add("planned_start", "Planned start and end dates are required.")
        return
    if details.planned_end <= details.planned_start:
        e.add("planned_end", "End date must be after start date.")
    elif details.planned_end - details.planned_start > timedelta(days=MAX_PERMIT_DURATION_DAYS):
        e.add(
            "planned_end",
            f"Permit duration cannot exceed {MAX_PERMIT_DURATION_DAYS} days.",
        )


def _validate_requestor(e: _Errors, details: PermitDetails) -> None:
    requestor = details.requestor
    if requestor is None:
        e.add("requestor", "Requestor is required.")
        return
    if requestor.id <= 0:
        e.add("requestor.id", "Requestor id must be positive.")
    e.required("requestor.name", requestor.name, "Requestor name", NAME_MAX_LENGTH)
    phone = (requestor.contact_phone or "").strip()
    if phone and not PHONE_PATTERN.match(phone):
        e.add("requestor.contact_phone", "Invalid phone number format.")


def _validate_coordinates(e: _Errors, details: PermitDetails) -> None:
    lat, lon = details.latitude, details.longitude
    if (lat is None) != (lon is None):
        e.add("latitude", "Latitude and longitude must be provided together.")
        return
    if lat is not None and not -90 <= lat <= 90:
        e.add("latitude", "Latitude must be between -90 and 90.")
    if lon is not None and not -180 <= lon <= 180:
        e.add("longitude", "Longitude must be between -180 and 180.")


def _validate_type_rules(e: _Errors, details: PermitDetails, permit_type: PermitType) -> None:
    if permit_type in SUPERVISED_TYPES and not details.work_supervisor.strip():
        e.add("work_supervisor", f"Work supervisor is required for {permit_type.value} permits.")
    if permit_type in SAFETY_OFFICER_TYPES and not details.safety_officer.strip():
        e.add("safety_officer", f"Safety officer is required for {permit_type.value} permits.")
    if permit_type in K3_LICENSE_TYPES and not details.compliance.k3_license_number.strip():
        e.add(
            "compliance.k3_license_number",
            f"K3 license number is required for {permit_type.value} permits.",
        )
    if details.contractor_company.strip() and not details.compliance.company_permit_number.strip():
        e.add(
            "compliance.company_permit_number",
            "Company permit number is required when a contractor is involved.",
        )

    safety = details.safety
    if (permit_type == PermitType.HOT_WORK or safety.hot_work) and not safety.fire_watch:
        e.add("safety.fire_watch", "Fire watch is mandatory for hot work.")
    if (permit_type == PermitType.CONFINED_SPACE or safety.confined_space_entry) \
            and not safety.gas_monitoring:
        e.add("safety.gas_monitoring", "Gas monitoring is mandatory for confined space entry.")


def validate_hazard_input(hazard: HazardInput) -> None:
    e = _Errors()
    e.required("description", hazard.description, "Hazard description", HAZARD_DESCRIPTION_MAX_LENGTH)
    e.required(
        "control_measures", hazard.control_measures, "Control measures", CONTROL_MEASURES_MAX_LENGTH,
    )
    e.optional("responsible_person", hazard.responsible_person, "Responsible person", NAME_MAX_LENGTH)
    try:
        HazardCategory(hazard.category)
    except ValueError:
        e.add("category", "Invalid hazard category.")
    for field, value in (("likelihood", hazard.likelihood), ("severity", hazard.severity)):
        if not isinstance(value, int) or not SCORE_MIN <= value <= SCORE_MAX:
            e.add(field, f"{field.capitalize()} must be between {SCORE_MIN} and {SCORE_MAX}.")
    e.raise_if_any()


def validate_residual_scores(likelihood: int, severity: int) -> None:
    e = _Errors()
    for field, value in (("residual_likelihood", likelihood), ("residual_severity", severity)):
        if not isinstance(value, int) or not SCORE_MIN <= value <= SCORE_MAX:
            e.add(field, f"Residual score must be between {SCORE_MIN} and {SCORE_MAX}.")
    e.raise_if_any()


def validate_precaution_input(precaution: PrecautionInput) -> None:
    e = _Errors()
    e.required(
        "description", precaution.description, "Precaution description",
        PRECAUTION_DESCRIPTION_MAX_LENGTH,
    )
    try:
        PrecautionCategory(precaution.category)
    except ValueError:
        e.add("category", "Invalid precaution category.")
    if not SCORE_MIN <= precaution.priority <= SCORE_MAX:
        e.add("priority", f"Priority must be between {SCORE_MIN} and {SCORE_MAX}.")
    e.optional(
        "responsible_person", precaution.responsible_person, "Responsible person", NAME_MAX_LENGTH,
    )
    e.optional(
        "verification_method", precaution.verification_method, "Verification method",
        VERIFICATION_METHOD_MAX_LENGTH,
    )
    e.optional(
        "k3_standard_reference", precaution.k3_standard_reference, "K3 standard reference",
        K3_REFERENCE_MAX_LENGTH,
    )
    if precaution.is_k3_requirement and not (precaution.k3_standard_reference or "").strip():
        e.add("k3_standard_reference", "K3 standard reference is required for K3 requirements.")
    e.raise_if_any()
