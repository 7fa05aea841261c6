"""
Work Permit Kernel: Core Domain Types

Pure data. No transition logic.
Timestamps are timezone-aware datetimes in state and ISO-8601 strings in
event payloads.

────────────────────────────────────────────────
DOMAIN GLOSSARY
────────────────────────────────────────────────

K3:
    Keselamatan dan Kesehatan Kerja: Indonesian workplace safety
    certification standard.

SMK3:
    Sistem Manajemen K3: the occupational health & safety management
    system compliance framework.

Jamsostek:
    Worker social-security (BPJS Ketenagakerjaan) compliance scheme.

Residual Risk:
    Risk level remaining once control measures are implemented.

Approval Level:
    A named authority tier whose sign-off a permit needs before work
    may proceed.

────────────────────────────────────────────────
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


# ── Enumerations ──────────────────────────────────────────────

class PermitType(str, Enum):
    GENERAL = "General"
    HOT_WORK = "HotWork"
    COLD_WORK = "ColdWork"
    CONFINED_SPACE = "ConfinedSpace"
    ELECTRICAL_WORK = "ElectricalWork"
    WORKING_AT_HEIGHT = "WorkingAtHeight"
    EXCAVATION = "Excavation"
    SPECIAL = "Special"


class PermitStatus(str, Enum):
    DRAFT = "Draft"
    SUBMITTED = "Submitted"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class PermitPriority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class RiskLevel(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @property
    def rank(self) -> int:
        """Ordinal position, Low=0 .. Critical=3."""
        return _RISK_RANK[self]


_RISK_RANK = {
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.CRITICAL: 3,
}


class HazardCategory(str, Enum):
    PHYSICAL = "Physical"
    CHEMICAL = "Chemical"
    BIOLOGICAL = "Biological"
    ERGONOMIC = "Ergonomic"
    FIRE = "Fire"
    ELECTRICAL = "Electrical"
    MECHANICAL = "Mechanical"
    ENVIRONMENTAL = "Environmental"
    RADIOLOGICAL = "Radiological"
    BEHAVIORAL = "Behavioral"


class PrecautionCategory(str, Enum):
    PERSONAL_PROTECTIVE_EQUIPMENT = "PersonalProtectiveEquipment"
    ISOLATION = "Isolation"
    FIRE_SAFETY = "FireSafety"
    GAS_MONITORING = "GasMonitoring"
    VENTILATION_CONTROL = "VentilationControl"
    ACCESS_CONTROL = "AccessControl"
    EMERGENCY_PROCEDURES = "EmergencyProcedures"
    ENVIRONMENTAL_PROTECTION = "EnvironmentalProtection"
    TRAFFIC_CONTROL = "TrafficControl"
    WEATHER_PRECAUTIONS = "WeatherPrecautions"
    EQUIPMENT_SAFETY = "EquipmentSafety"
    MATERIAL_HANDLING = "MaterialHandling"
    WASTE_MANAGEMENT = "WasteManagement"
    COMMUNICATION_PROTOCOL = "CommunicationProtocol"
    K3_COMPLIANCE = "K3Compliance"
    BPJS_COMPLIANCE = "BPJSCompliance"
    ENVIRONMENTAL_PERMIT = "EnvironmentalPermit"
    OTHER = "Other"


class AttachmentType(str, Enum):
    WORK_PLAN = "WorkPlan"
    SAFETY_PROCEDURE = "SafetyProcedure"
    RISK_ASSESSMENT = "RiskAssessment"
    METHOD_STATEMENT = "MethodStatement"
    CERTIFICATE_OF_ISOLATION = "CertificateOfIsolation"
    PERMIT_TO_WORK = "PermitToWork"
    PHOTO_EVIDENCE = "PhotoEvidence"
    COMPLIANCE_DOCUMENT = "ComplianceDocument"
    K3_LICENSE = "K3License"
    ENVIRONMENTAL_PERMIT = "EnvironmentalPermit"
    COMPANY_PERMIT = "CompanyPermit"
    OTHER = "Other"


# ── Hazard category lookup table ──────────────────────────────
# Stable ids of the hazard-category reference table. Built once,
# checked for completeness in both directions at import.

HAZARD_CATEGORY_IDS: Dict[HazardCategory, int] = {
    HazardCategory.PHYSICAL: 1,
    HazardCategory.CHEMICAL: 2,
    HazardCategory.BIOLOGICAL: 3,
    HazardCategory.ERGONOMIC: 4,
    HazardCategory.FIRE: 5,
    HazardCategory.ELECTRICAL: 6,
    HazardCategory.MECHANICAL: 7,
    HazardCategory.ENVIRONMENTAL: 8,
    HazardCategory.RADIOLOGICAL: 9,
    HazardCategory.BEHAVIORAL: 10,
}

HAZARD_CATEGORIES_BY_ID: Dict[int, HazardCategory] = {
    cid: cat for cat, cid in HAZARD_CATEGORY_IDS.items()
}


def _validate_category_table() -> None:
    missing = [c.value for c in HazardCategory if c not in HAZARD_CATEGORY_IDS]
    if missing:
        raise RuntimeError(f"Hazard category table incomplete: {missing}")
    if len(HAZARD_CATEGORIES_BY_ID) != len(HAZARD_CATEGORY_IDS):
        raise RuntimeError("Hazard category table has duplicate ids")


_validate_category_table()


def hazard_category_id(category: HazardCategory) -> int:
    return HAZARD_CATEGORY_IDS[category]


def hazard_category_for_id(category_id: int) -> HazardCategory:
    try:
        return HAZARD_CATEGORIES_BY_ID[category_id]
    except KeyError:
        raise KeyError(f"Unknown hazard category id {category_id!r}") from None


# ── Timestamps ────────────────────────────────────────────────

def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 string (or pass a datetime through) as UTC-aware."""
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 in UTC, so stored timestamps compare correctly as strings."""
    if value is None:
        return None
    return parse_timestamp(value).astimezone(timezone.utc).isoformat()


# ── Value Objects ─────────────────────────────────────────────

SAFETY_FLAGS: Tuple[str, ...] = (
    "hot_work",
    "confined_space_entry",
    "electrical_isolation",
    "height_work",
    "radiation_work",
    "excavation",
    "fire_watch",
    "gas_monitoring",
)


@dataclass(frozen=True)
class SafetyRequirements:
    """The eight independent safety-requirement flags of a permit."""

    hot_work: bool = False
    confined_space_entry: bool = False
    electrical_isolation: bool = False
    height_work: bool = False
    radiation_work: bool = False
    excavation: bool = False
    fire_watch: bool = False
    gas_monitoring: bool = False

    def active_flags(self) -> Tuple[str, ...]:
        return tuple(name for name in SAFETY_FLAGS if getattr(self, name))

    def any(self) -> bool:
        return bool(self.active_flags())

    def to_dict(self) -> Dict[str, bool]:
        return {name: getattr(self, name) for name in SAFETY_FLAGS}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SafetyRequirements":
        data = data or {}
        unknown = sorted(set(data) - set(SAFETY_FLAGS))
        if unknown:
            raise ValueError(f"Unknown safety flags: {unknown}")
        return cls(**{name: bool(data.get(name, False)) for name in SAFETY_FLAGS})


@dataclass(frozen=True)
class IndonesianCompliance:
    k3_license_number: str = ""
    company_permit_number: str = ""
    is_jamsostek_compliant: bool = False
    has_smk3_compliance: bool = False
    environmental_permit_number: str = ""  # AMDAL / UKL-UPL

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "IndonesianCompliance":
        data = data or {}
        return cls(
            k3_license_number=data.get("k3_license_number", ""),
            company_permit_number=data.get("company_permit_number", ""),
            is_jamsostek_compliant=bool(data.get("is_jamsostek_compliant", False)),
            has_smk3_compliance=bool(data.get("has_smk3_compliance", False)),
            environmental_permit_number=data.get("environmental_permit_number", ""),
        )


@dataclass(frozen=True)
class RequestorSnapshot:
    """Requestor profile captured at creation, never a live reference."""

    id: int
    name: str
    department: str = ""
    position: str = ""
    contact_phone: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "department": self.department,
            "position": self.position,
            "contact_phone": self.contact_phone,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RequestorSnapshot":
        return cls(
            id=int(data["id"]),
            name=data["name"],
            department=data.get("department", ""),
            position=data.get("position", ""),
            contact_phone=data.get("contact_phone", ""),
        )


@dataclass(frozen=True)
class PermitDetails:
    """
    Every field a permit can be created with.

    Required fields first; every optional field carries its default here,
    so creation never has to poke attributes after construction.
    """

    title: str
    description: str
    permit_type: PermitType
    work_location: str
    work_scope: str
    planned_start: datetime
    planned_end: datetime
    number_of_workers: int
    requestor: RequestorSnapshot
    priority: Optional[PermitPriority] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    work_supervisor: str = ""
    safety_officer: str = ""
    equipment_to_be_used: str = ""
    materials_involved: str = ""
    contractor_company: str = ""
    safety: SafetyRequirements = field(default_factory=SafetyRequirements)
    compliance: IndonesianCompliance = field(default_factory=IndonesianCompliance)
    risk_assessment_summary: str = ""
    emergency_procedures: str = ""

    def __post_init__(self) -> None:
        # Naive schedule datetimes are read as UTC.
        for name in ("planned_start", "planned_end"):
            value = getattr(self, name)
            if value is not None:
                object.__setattr__(self, name, parse_timestamp(value).astimezone(timezone.utc))

    def to_payload(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "permit_type": PermitType(self.permit_type).value,
            "work_location": self.work_location,
            "work_scope": self.work_scope,
            "planned_start": format_timestamp(self.planned_start),
            "planned_end": format_timestamp(self.planned_end),
            "number_of_workers": self.number_of_workers,
            "requestor": self.requestor.to_dict(),
            "priority": PermitPriority(self.priority).value if self.priority else None,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "work_supervisor": self.work_supervisor,
            "safety_officer": self.safety_officer,
            "equipment_to_be_used": self.equipment_to_be_used,
            "materials_involved": self.materials_involved,
            "contractor_company": self.contractor_company,
            "safety": self.safety.to_dict(),
            "compliance": self.compliance.to_dict(),
            "risk_assessment_summary": self.risk_assessment_summary,
            "emergency_procedures": self.emergency_procedures,
        }

    @classmethod
    def from_payload(cls, p: Dict[str, Any]) -> "PermitDetails":
        return cls(
            title=p["title"],
            description=p["description"],
            permit_type=PermitType(p["permit_type"]),
            work_location=p["work_location"],
            work_scope=p.get("work_scope", ""),
            planned_start=parse_timestamp(p["planned_start"]),
            planned_end=parse_timestamp(p["planned_end"]),
            number_of_workers=int(p["number_of_workers"]),
            requestor=RequestorSnapshot.from_dict(p["requestor"]),
            priority=PermitPriority(p["priority"]) if p.get("priority") else None,
            latitude=p.get("latitude"),
            longitude=p.get("longitude"),
            work_supervisor=p.get("work_supervisor", ""),
            safety_officer=p.get("safety_officer", ""),
            equipment_to_be_used=p.get("equipment_to_be_used", ""),
            materials_involved=p.get("materials_involved", ""),
            contractor_company=p.get("contractor_company", ""),
            safety=SafetyRequirements.from_dict(p.get("safety")),
            compliance=IndonesianCompliance.from_dict(p.get("compliance")),
            risk_assessment_summary=p.get("risk_assessment_summary", ""),
            emergency_procedures=p.get("emergency_procedures", ""),
        )


@dataclass(frozen=True)
class HazardInput:
    description: str
    category: HazardCategory
    likelihood: int
    severity: int
    control_measures: str
    responsible_person: str = ""

    def to_payload(self) -> Dict[str, Any]:
        return {
            "description": self.description,
            "category": HazardCategory(self.category).value,
            "likelihood": self.likelihood,
            "severity": self.severity,
            "control_measures": self.control_measures,
            "responsible_person": self.responsible_person,
        }


@dataclass(frozen=True)
class PrecautionInput:
    description: str
    category: PrecautionCategory
    is_required: bool = True
    priority: int = 1
    responsible_person: str = ""
    verification_method: str = ""
    requires_verification: bool = True
    is_k3_requirement: bool = False
    k3_standard_reference: str = ""
    is_mandatory_by_law: bool = False

    def to_payload(self) -> Dict[str, Any]:
        return {
            "description": self.description,
            "category": PrecautionCategory(self.category).value,
            "is_required": self.is_required,
            "priority": self.priority,
            "responsible_person": self.responsible_person,
            "verification_method": self.verification_method,
            "requires_verification": self.requires_verification,
            "is_k3_requirement": self.is_k3_requirement,
            "k3_standard_reference": self.k3_standard_reference,
            "is_mandatory_by_law": self.is_mandatory_by_law,
        }


# ── Owned Child Entities ──────────────────────────────────────

@dataclass
class Hazard:
    """A hazard attached to a permit. Risk levels are always derived."""

    id: int
    description: str
    category: HazardCategory
    likelihood: int
    severity: int
    risk_level: RiskLevel
    control_measures: str
    responsible_person: str = ""
    residual_likelihood: int = 1
    residual_severity: int = 1
    residual_risk_level: RiskLevel = RiskLevel.LOW
    is_control_implemented: bool = False
    control_implemented_at: Optional[datetime] = None
    implementation_notes: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "category": self.category.value,
            "category_id": hazard_category_id(self.category),
            "likelihood": self.likelihood,
            "severity": self.severity,
            "risk_level": self.risk_level.value,
            "control_measures": self.control_measures,
            "responsible_person": self.responsible_person,
            "residual_likelihood": self.residual_likelihood,
            "residual_severity": self.residual_severity,
            "residual_risk_level": self.residual_risk_level.value,
            "is_control_implemented": self.is_control_implemented,
            "control_implemented_at": format_timestamp(self.control_implemented_at),
            "implementation_notes": self.implementation_notes,
        }


@dataclass
class Precaution:
    id: int
    description: str
    category: PrecautionCategory
    is_required: bool = True
    priority: int = 1
    responsible_person: str = ""
    verification_method: str = ""
    requires_verification: bool = True
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    completed_by: str = ""
    completion_notes: str = ""
    is_verified: bool = False
    verified_at: Optional[datetime] = None
    verified_by: str = ""
    is_k3_requirement: bool = False
    k3_standard_reference: str = ""
    is_mandatory_by_law: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "category": self.category.value,
            "is_required": self.is_required,
            "priority": self.priority,
            "responsible_person": self.responsible_person,
            "verification_method": self.verification_method,
            "requires_verification": self.requires_verification,
            "is_completed": self.is_completed,
            "completed_at": format_timestamp(self.completed_at),
            "completed_by": self.completed_by,
            "completion_notes": self.completion_notes,
            "is_verified": self.is_verified,
            "verified_at": format_timestamp(self.verified_at),
            "verified_by": self.verified_by,
            "is_k3_requirement": self.is_k3_requirement,
            "k3_standard_reference": self.k3_standard_reference,
            "is_mandatory_by_law": self.is_mandatory_by_law,
        }


@dataclass(frozen=True)
class Approval:
    """One entry of the append-only approval log."""

    id: int
    approver_id: int
    approver_name: str
    level: str
    is_approved: bool
    comments: str
    order: int
    recorded_at: datetime
    k3_certificate_number: str = ""
    authority_level: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "approver_id": self.approver_id,
            "approver_name": self.approver_name,
            "level": self.level,
            "is_approved": self.is_approved,
            "comments": self.comments,
            "order": self.order,
            "recorded_at": format_timestamp(self.recorded_at),
            "k3_certificate_number": self.k3_certificate_number,
            "authority_level": self.authority_level,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Approval":
        return cls(
            id=int(data["id"]),
            approver_id=int(data["approver_id"]),
            approver_name=data.get("approver_name", ""),
            level=data["level"],
            is_approved=bool(data["is_approved"]),
            comments=data.get("comments", ""),
            order=int(data["order"]),
            recorded_at=parse_timestamp(data["recorded_at"]),
            k3_certificate_number=data.get("k3_certificate_number", ""),
            authority_level=data.get("authority_level", ""),
        )


@dataclass(frozen=True)
class Attachment:
    id: int
    file_name: str
    original_file_name: str
    content_type: str
    size: int
    attachment_type: AttachmentType
    description: str
    uploaded_by: str
    uploaded_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "file_name": self.file_name,
            "original_file_name": self.original_file_name,
            "content_type": self.content_type,
            "size": self.size,
            "attachment_type": self.attachment_type.value,
            "description": self.description,
            "uploaded_by": self.uploaded_by,
            "uploaded_at": format_timestamp(self.uploaded_at),
        }


# ── Transition Outcome ────────────────────────────────────────

@dataclass(frozen=True)
class TransitionResult:
    """
    Structured, immutable outcome of a state transition.

    Every applied event produces one; status changes and approval
    progress are reported here, not inferred by callers.
    """

    event_type: str = ""
    success: bool = True
    status_before: str = ""
    status_after: str = ""
    approval_complete: bool = False
    missing_levels: Tuple[str, ...] = ()
    entity_id: int = 0
    reason: str = ""

    @property
    def status_changed(self) -> bool:
        return self.status_before != self.status_after


# ── Aggregate State ───────────────────────────────────────────

@dataclass
class PermitState:
    """
    Complete projection of one work permit's event stream.

    `status` is only ever written by the transition layer; callers read it.
    """

    permit_id: int = 0
    permit_number: str = ""
    title: str = ""
    description: str = ""
    permit_type: PermitType = PermitType.GENERAL
    status: PermitStatus = PermitStatus.DRAFT
    priority: PermitPriority = PermitPriority.MEDIUM

    work_location: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    planned_start: Optional[datetime] = None
    planned_end: Optional[datetime] = None
    estimated_duration_hours: int = 0
    actual_start: Optional[datetime] = None
    actual_end: Optional[datetime] = None

    requestor: Optional[RequestorSnapshot] = None
    work_supervisor: str = ""
    safety_officer: str = ""
    work_scope: str = ""
    equipment_to_be_used: str = ""
    materials_involved: str = ""
    number_of_workers: int = 0
    contractor_company: str = ""

    safety: SafetyRequirements = field(default_factory=SafetyRequirements)
    compliance: IndonesianCompliance = field(default_factory=IndonesianCompliance)

    risk_level: RiskLevel = RiskLevel.LOW
    risk_assessment_summary: str = ""
    emergency_procedures: str = ""

    completion_notes: str = ""
    is_completed_safely: bool = False
    lessons_learned: str = ""
    cancellation_reason: str = ""
    rejection_reason: str = ""

    hazards: Dict[int, Hazard] = field(default_factory=dict)
    precautions: Dict[int, Precaution] = field(default_factory=dict)
    approvals: List[Approval] = field(default_factory=list)
    attachments: Dict[int, Attachment] = field(default_factory=dict)

    # Locked at submission; empty until the first submit.
    required_levels: Tuple[str, ...] = ()
    submission_count: int = 0

    next_hazard_id: int = 1
    next_precaution_id: int = 1
    next_approval_id: int = 1
    next_attachment_id: int = 1

    created_at: Optional[datetime] = None
    created_by: str = ""
    last_modified_at: Optional[datetime] = None
    last_modified_by: str = ""
    submitted_at: Optional[datetime] = None
    submitted_by: str = ""
    approved_at: Optional[datetime] = None
    started_by: str = ""
    completed_by: str = ""
    cancelled_at: Optional[datetime] = None
    cancelled_by: str = ""

    version: int = 0

    def copy(self) -> "PermitState":
        """Deep-copy the entire state for all-or-nothing transitions."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict:
        """Serialise state to a plain, JSON-safe dict."""
        return {
            "permit_id": self.permit_id,
            "permit_number": self.permit_number,
            "title": self.title,
            "description": self.description,
            "permit_type": self.permit_type.value,
            "status": self.status.value,
            "priority": self.priority.value,
            "work_location": self.work_location,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "planned_start": format_timestamp(self.planned_start),
            "planned_end": format_timestamp(self.planned_end),
            "estimated_duration_hours": self.estimated_duration_hours,
            "actual_start": format_timestamp(self.actual_start),
            "actual_end": format_timestamp(self.actual_end),
            "requestor": self.requestor.to_dict() if self.requestor else None,
            "work_supervisor": self.work_supervisor,
            "safety_officer": self.safety_officer,
            "work_scope": self.work_scope,
            "equipment_to_be_used": self.equipment_to_be_used,
            "materials_involved": self.materials_involved,
            "number_of_workers": self.number_of_workers,
            "contractor_company": self.contractor_company,
            "safety": self.safety.to_dict(),
            "compliance": self.compliance.to_dict(),
            "risk_level": self.risk_level.value,
            "risk_assessment_summary": self.risk_assessment_summary,
            "emergency_procedures": self.emergency_procedures,
            "completion_notes": self.completion_notes,
            "is_completed_safely": self.is_completed_safely,
            "lessons_learned": self.lessons_learned,
            "cancellation_reason": self.cancellation_reason,
            "rejection_reason": self.rejection_reason,
            "hazards": [h.to_dict() for _, h in sorted(self.hazards.items())],
            "precautions": [p.to_dict() for _, p in sorted(self.precautions.items())],
            "approvals": [a.to_dict() for a in self.approvals],
            "attachments": [a.to_dict() for _, a in sorted(self.attachments.items())],
            "required_levels": list(self.required_levels),
            "submission_count": self.submission_count,
            "created_at": format_timestamp(self.created_at),
            "created_by": self.created_by,
            "last_modified_at": format_timestamp(self.last_modified_at),
            "last_modified_by": self.last_modified_by,
            "submitted_at": format_timestamp(self.submitted_at),
            "submitted_by": self.submitted_by,
            "approved_at": format_timestamp(self.approved_at),
            "started_by": self.started_by,
            "completed_by": self.completed_by,
            "cancelled_at": format_timestamp(self.cancelled_at),
            "cancelled_by": self.cancelled_by,
            "version": self.version,
        }
