"""
FastAPI Backend: Work Permit API v1.

Stateless: every command replays the permit's stream from the store.
No permit state is kept in memory between requests.

The caller is identified by the X-User-Id / X-User-Name /
X-User-Department / X-User-Position headers set by the gateway.

Endpoints:
  POST /work-permits                       : create a Draft permit
  GET  /work-permits                       : filtered, paged listing
  POST /work-permits/{id}/submit|approve|… : lifecycle commands
  GET  /work-permits/{id}/verify           : replay determinism check
  POST /work-permits/demo                  : seed a generated demo permit
"""
from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from permit_kernel.approvals import ApprovalPolicy
from permit_kernel.domain_types import (
    AttachmentType,
    HazardCategory,
    HazardInput,
    IndonesianCompliance,
    PermitDetails,
    PermitPriority,
    PermitStatus,
    PermitType,
    PrecautionCategory,
    PrecautionInput,
    RequestorSnapshot,
    RiskLevel,
    SafetyRequirements,
)
from permit_kernel.errors import (
    ConcurrencyConflictError,
    InvalidTransitionError,
    NotFoundError,
    OperationCancelledError,
    StorageError,
    ValidationError,
)
from permit_kernel.invariants import InvariantViolationError
from permit_runtime import (
    AttachmentStore,
    DeterminismError,
    EventRepository,
    Identity,
    PermitQuery,
    PermitWorkflowService,
    ReadModelRepository,
    StaticIdentityProvider,
)
from permit_seed import DemoSpec, GeneratorInvariantError, compile_demo_permit

from backend.config import Settings, load_settings
from backend.pg_repositories import PgEventRepository, PgReadModelRepository

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SafetyRequest(BaseModel):
    hot_work: bool = False
    confined_space_entry: bool = False
    electrical_isolation: bool = False
    height_work: bool = False
    radiation_work: bool = False
    excavation: bool = False
    fire_watch: bool = False
    gas_monitoring: bool = False


class ComplianceRequest(BaseModel):
    k3_license_number: str = ""
    company_permit_number: str = ""
    is_jamsostek_compliant: bool = False
    has_smk3_compliance: bool = False
    environmental_permit_number: str = ""


class PermitDetailsRequest(BaseModel):
    title: str
    description: str
    permit_type: PermitType
    work_location: str
    work_scope: str = ""
    planned_start: datetime
    planned_end: datetime
    number_of_workers: int
    contact_phone: str = ""
    priority: Optional[PermitPriority] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    work_supervisor: str = ""
    safety_officer: str = ""
    equipment_to_be_used: str = ""
    materials_involved: str = ""
    contractor_company: str = ""
    safety: SafetyRequest = Field(default_factory=SafetyRequest)
    compliance: ComplianceRequest = Field(default_factory=ComplianceRequest)
    risk_assessment_summary: str = ""
    emergency_procedures: str = ""

    def to_details(self, requestor: RequestorSnapshot) -> PermitDetails:
        return PermitDetails(
            title=self.title,
            description=self.description,
            permit_type=self.permit_type,
            work_location=self.work_location,
            work_scope=self.work_scope,
            planned_start=self.planned_start,
            planned_end=self.planned_end,
            number_of_workers=self.number_of_workers,
            requestor=requestor,
            priority=self.priority,
            latitude=self.latitude,
            longitude=self.longitude,
            work_supervisor=self.work_supervisor,
            safety_officer=self.safety_officer,
            equipment_to_be_used=self.equipment_to_be_used,
            materials_involved=self.materials_involved,
            contractor_company=self.contractor_company,
            safety=SafetyRequirements.from_dict(self.safety.model_dump()),
            compliance=IndonesianCompliance.from_dict(self.compliance.model_dump()),
            risk_assessment_summary=self.risk_assessment_summary,
            emergency_procedures=self.emergency_procedures,
        )


class HazardRequest(BaseModel):
    description: str
    category: HazardCategory
    likelihood: int
    severity: int
    control_measures: str
    responsible_person: str = ""

    def to_input(self) -> HazardInput:
        return HazardInput(**self.model_dump())


class ImplementControlRequest(BaseModel):
    residual_likelihood: int
    residual_severity: int
    implementation_notes: str = ""


class PrecautionRequest(BaseModel):
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

    def to_input(self) -> PrecautionInput:
        return PrecautionInput(**self.model_dump())


class CompletePrecautionRequest(BaseModel):
    completion_notes: str = ""


class ApproveRequest(BaseModel):
    level: str
    comments: str = ""
    k3_certificate_number: str = ""
    authority_level: str = ""


class ReasonRequest(BaseModel):
    reason: str


class CompleteWorkRequest(BaseModel):
    completion_notes: str
    is_completed_safely: bool
    lessons_learned: str = ""


class DemoRequest(BaseModel):
    permit_type: PermitType
    target_status: PermitStatus = PermitStatus.APPROVED
    seed: Optional[int] = None
    hazard_count: int = 2
    precaution_count: int = 3
    completed_safely: bool = True


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


class _Backend:
    """Repositories shared by every request of one app."""

    def __init__(self, settings: Settings) -> None:
        if settings.database_url:
            self.event_repo = PgEventRepository(settings.database_url)
            self.read_models = PgReadModelRepository(settings.database_url)
        else:
            self.event_repo = EventRepository(settings.db_path)
            self.read_models = ReadModelRepository(settings.db_path)
        self.attachments = AttachmentStore(settings.attachment_root)
        self.policy: ApprovalPolicy = settings.approval_policy()

    def close(self) -> None:
        self.event_repo.close()
        self.read_models.close()


def _backend(request: Request) -> _Backend:
    state = request.app.state
    with state.backend_lock:
        if state.backend is None:
            state.backend = _Backend(state.settings)
        return state.backend


def current_identity(
    x_user_id: Optional[int] = Header(None),
    x_user_name: str = Header(""),
    x_user_department: str = Header(""),
    x_user_position: str = Header(""),
) -> Identity:
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    return Identity(
        user_id=x_user_id,
        name=x_user_name.strip() or f"User {x_user_id}",
        department=x_user_department,
        position=x_user_position,
    )


def get_service(
    request: Request,
    identity: Identity = Depends(current_identity),
) -> PermitWorkflowService:
    backend = _backend(request)
    return PermitWorkflowService(
        backend.event_repo,
        backend.read_models,
        StaticIdentityProvider(identity),
        attachments=backend.attachments,
        policy=backend.policy,
    )


def permit_query(
    search: str = "",
    permit_type: Optional[PermitType] = None,
    status: Optional[PermitStatus] = None,
    priority: Optional[PermitPriority] = None,
    risk_level: Optional[RiskLevel] = None,
    requestor_id: Optional[int] = None,
    sort_by: str = "created_at",
    sort_descending: bool = True,
    page: int = Query(1),
    page_size: int = Query(20),
) -> PermitQuery:
    return PermitQuery(
        search=search,
        permit_type=permit_type,
        status=status,
        priority=priority,
        risk_level=risk_level,
        requestor_id=requestor_id,
        sort_by=sort_by,
        sort_descending=sort_descending,
        page=page,
        page_size=page_size,
    )


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


def _register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(NotFoundError)
    def _not_found(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(InvalidTransitionError)
    def _invalid_transition(request: Request, exc: InvalidTransitionError):
        return JSONResponse(
            status_code=409,
            content={"detail": str(exc), "operation": exc.operation, "status": exc.status},
        )

    @app.exception_handler(ValidationError)
    def _validation(request: Request, exc: ValidationError):
        return JSONResponse(status_code=422, content={"detail": str(exc), "errors": exc.errors})

    @app.exception_handler(ConcurrencyConflictError)
    def _conflict(request: Request, exc: ConcurrencyConflictError):
        return JSONResponse(status_code=409, content={"detail": str(exc), "retryable": True})

    @app.exception_handler(StorageError)
    def _storage(request: Request, exc: StorageError):
        return JSONResponse(status_code=503, content={"detail": str(exc), "retryable": True})

    @app.exception_handler(OperationCancelledError)
    def _cancelled(request: Request, exc: OperationCancelledError):
        return JSONResponse(status_code=499, content={"detail": str(exc)})

    @app.exception_handler(InvariantViolationError)
    def _invariant(request: Request, exc: InvariantViolationError):
        return JSONResponse(status_code=422, content={"detail": str(exc), "rule": exc.rule})

    @app.exception_handler(DeterminismError)
    def _determinism(request: Request, exc: DeterminismError):
        logger.error("%s", exc)
        return JSONResponse(
            status_code=500,
            content={"detail": str(exc), "expected": exc.expected, "actual": exc.actual},
        )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


def _register_routes(app: FastAPI) -> None:

    # -- Collection and queries -------------------------------------------
    # Static paths first so they are not taken for a permit id.

    @app.post("/work-permits", status_code=201)
    def create_permit(
        req: PermitDetailsRequest,
        identity: Identity = Depends(current_identity),
        service: PermitWorkflowService = Depends(get_service),
    ):
        return service.create_permit(req.to_details(identity.requestor(req.contact_phone)))

    @app.get("/work-permits")
    def list_permits(
        query: PermitQuery = Depends(permit_query),
        service: PermitWorkflowService = Depends(get_service),
    ):
        return service.list_permits(query)

    @app.get("/work-permits/dashboard")
    def dashboard(service: PermitWorkflowService = Depends(get_service)):
        return service.dashboard()

    @app.get("/work-permits/my-permits")
    def my_permits(
        query: PermitQuery = Depends(permit_query),
        service: PermitWorkflowService = Depends(get_service),
    ):
        return service.my_permits(query)

    @app.get("/work-permits/pending-approval")
    def pending_approval(
        query: PermitQuery = Depends(permit_query),
        service: PermitWorkflowService = Depends(get_service),
    ):
        return service.pending_approval(query)

    @app.get("/work-permits/overdue")
    def overdue_permits(
        query: PermitQuery = Depends(permit_query),
        service: PermitWorkflowService = Depends(get_service),
    ):
        return service.overdue_permits(query)

    @app.post("/work-permits/demo", status_code=201)
    def seed_demo_permit(
        req: DemoRequest,
        request: Request,
        identity: Identity = Depends(current_identity),
        service: PermitWorkflowService = Depends(get_service),
    ):
        """Generate a demo permit driven through its lifecycle and store it."""
        try:
            spec = DemoSpec(
                permit_type=req.permit_type,
                target_status=req.target_status,
                hazard_count=req.hazard_count,
                precaution_count=req.precaution_count,
                completed_safely=req.completed_safely,
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))

        # Seed varies with time unless the caller pins it
        seed = req.seed if req.seed is not None else int(time.time() * 1000) % (2**31)
        start = datetime.now(timezone.utc).replace(second=0, microsecond=0)
        try:
            events = compile_demo_permit(
                spec, seed,
                start=start,
                requestor=identity.requestor(),
                policy=_backend(request).policy,
            )
        except GeneratorInvariantError as exc:
            logger.error(
                "Demo generation failed: type=%s status=%s seed=%s: %s",
                req.permit_type.value, req.target_status.value, seed, exc,
            )
            raise HTTPException(status_code=400, detail=f"Generation failed: {exc}")
        return {"seed": seed, "permit": service.create_from_stream(events)}

    # -- Single permit ----------------------------------------------------

    @app.get("/work-permits/{permit_id}")
    def get_permit(permit_id: int, service: PermitWorkflowService = Depends(get_service)):
        return service.get_permit(permit_id)

    @app.put("/work-permits/{permit_id}")
    def update_permit(
        permit_id: int,
        req: PermitDetailsRequest,
        service: PermitWorkflowService = Depends(get_service),
    ):
        # The requestor snapshot stays the one captured at creation.
        requestor = RequestorSnapshot.from_dict(service.get_permit(permit_id)["requestor"])
        if req.contact_phone:
            requestor = RequestorSnapshot(
                id=requestor.id,
                name=requestor.name,
                department=requestor.department,
                position=requestor.position,
                contact_phone=req.contact_phone,
            )
        return service.update_details(permit_id, req.to_details(requestor))

    @app.delete("/work-permits/{permit_id}")
    def delete_permit(permit_id: int, service: PermitWorkflowService = Depends(get_service)):
        service.delete_permit(permit_id)
        return {"status": "deleted", "permit_id": permit_id}

    @app.get("/work-permits/{permit_id}/verify")
    def verify_permit(permit_id: int, service: PermitWorkflowService = Depends(get_service)):
        return service.verify_permit(permit_id)

    # -- Lifecycle --------------------------------------------------------

    @app.post("/work-permits/{permit_id}/submit")
    def submit(permit_id: int, service: PermitWorkflowService = Depends(get_service)):
        return service.submit(permit_id)

    @app.post("/work-permits/{permit_id}/approve")
    def approve(
        permit_id: int,
        req: ApproveRequest,
        service: PermitWorkflowService = Depends(get_service),
    ):
        return service.approve(
            permit_id, req.level, req.comments,
            k3_certificate_number=req.k3_certificate_number,
            authority_level=req.authority_level,
        )

    @app.post("/work-permits/{permit_id}/reject")
    def reject(
        permit_id: int,
        req: ReasonRequest,
        service: PermitWorkflowService = Depends(get_service),
    ):
        return service.reject(permit_id, req.reason)

    @app.post("/work-permits/{permit_id}/start")
    def start_work(permit_id: int, service: PermitWorkflowService = Depends(get_service)):
        return service.start_work(permit_id)

    @app.post("/work-permits/{permit_id}/complete")
    def complete_work(
        permit_id: int,
        req: CompleteWorkRequest,
        service: PermitWorkflowService = Depends(get_service),
    ):
        return service.complete_work(
            permit_id, req.completion_notes, req.is_completed_safely, req.lessons_learned,
        )

    @app.post("/work-permits/{permit_id}/cancel")
    def cancel(
        permit_id: int,
        req: ReasonRequest,
        service: PermitWorkflowService = Depends(get_service),
    ):
        return service.cancel(permit_id, req.reason)

    # -- Hazards ----------------------------------------------------------

    @app.post("/work-permits/{permit_id}/hazards", status_code=201)
    def add_hazard(
        permit_id: int,
        req: HazardRequest,
        service: PermitWorkflowService = Depends(get_service),
    ):
        return service.add_hazard(permit_id, req.to_input())

    @app.put("/work-permits/{permit_id}/hazards/{hazard_id}")
    def update_hazard(
        permit_id: int,
        hazard_id: int,
        req: HazardRequest,
        service: PermitWorkflowService = Depends(get_service),
    ):
        return service.update_hazard(permit_id, hazard_id, req.to_input())

    @app.delete("/work-permits/{permit_id}/hazards/{hazard_id}")
    def remove_hazard(
        permit_id: int,
        hazard_id: int,
        service: PermitWorkflowService = Depends(get_service),
    ):
        return service.remove_hazard(permit_id, hazard_id)

    @app.post("/work-permits/{permit_id}/hazards/{hazard_id}/implement-control")
    def implement_hazard_control(
        permit_id: int,
        hazard_id: int,
        req: ImplementControlRequest,
        service: PermitWorkflowService = Depends(get_service),
    ):
        return service.implement_hazard_control(
            permit_id, hazard_id,
            req.residual_likelihood, req.residual_severity, req.implementation_notes,
        )

    # -- Precautions ------------------------------------------------------

    @app.post("/work-permits/{permit_id}/precautions", status_code=201)
    def add_precaution(
        permit_id: int,
        req: PrecautionRequest,
        service: PermitWorkflowService = Depends(get_service),
    ):
        return service.add_precaution(permit_id, req.to_input())

    @app.put("/work-permits/{permit_id}/precautions/{precaution_id}")
    def update_precaution(
        permit_id: int,
        precaution_id: int,
        req: PrecautionRequest,
        service: PermitWorkflowService = Depends(get_service),
    ):
        return service.update_precaution(permit_id, precaution_id, req.to_input())

    @app.delete("/work-permits/{permit_id}/precautions/{precaution_id}")
    def remove_precaution(
        permit_id: int,
        precaution_id: int,
        service: PermitWorkflowService = Depends(get_service),
    ):
        return service.remove_precaution(permit_id, precaution_id)

    @app.post("/work-permits/{permit_id}/precautions/{precaution_id}/complete")
    def complete_precaution(
        permit_id: int,
        precaution_id: int,
        req: Optional[CompletePrecautionRequest] = None,
        service: PermitWorkflowService = Depends(get_service),
    ):
        notes = req.completion_notes if req is not None else ""
        return service.complete_precaution(permit_id, precaution_id, notes)

    @app.post("/work-permits/{permit_id}/precautions/{precaution_id}/verify")
    def verify_precaution(
        permit_id: int,
        precaution_id: int,
        service: PermitWorkflowService = Depends(get_service),
    ):
        return service.verify_precaution(permit_id, precaution_id)

    # -- Attachments ------------------------------------------------------

    @app.post("/work-permits/{permit_id}/attachments", status_code=201)
    def add_attachment(
        permit_id: int,
        request: Request,
        file: UploadFile = File(...),
        attachment_type: AttachmentType = Form(AttachmentType.OTHER),
        description: str = Form(""),
        service: PermitWorkflowService = Depends(get_service),
    ):
        data = file.file.read()
        limit = request.app.state.settings.max_attachment_bytes
        if len(data) > limit:
            raise HTTPException(
                status_code=413,
                detail=f"Attachment exceeds the {limit} byte limit",
            )
        return service.add_attachment(
            permit_id,
            file.filename or "",
            file.content_type or "application/octet-stream",
            data,
            attachment_type=attachment_type,
            description=description,
        )

    @app.delete("/work-permits/{permit_id}/attachments/{attachment_id}")
    def remove_attachment(
        permit_id: int,
        attachment_id: int,
        service: PermitWorkflowService = Depends(get_service),
    ):
        return service.remove_attachment(permit_id, attachment_id)

    @app.get("/work-permits/{permit_id}/attachments/{attachment_id}/download")
    def download_attachment(
        permit_id: int,
        attachment_id: int,
        service: PermitWorkflowService = Depends(get_service),
    ):
        meta, data = service.download_attachment(permit_id, attachment_id)
        return Response(
            content=data,
            media_type=meta["content_type"],
            headers={
                "Content-Disposition": f'attachment; filename="{meta["original_file_name"]}"',
            },
        )

    @app.get("/health")
    def health():
        return {"status": "ok", "version": API_VERSION}


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the API. Stores open lazily on the first request."""
    settings = settings or load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="Work Permit API",
        version=API_VERSION,
        description="HSE Work Permit lifecycle and approval kernel, event-sourced API",
    )
    app.state.settings = settings
    app.state.backend = None
    app.state.backend_lock = threading.Lock()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            settings.frontend_url,
            "http://localhost:3000",
            "http://localhost:3001",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_error_handlers(app)
    _register_routes(app)

    @app.on_event("shutdown")
    def _close_stores() -> None:
        if app.state.backend is not None:
            app.state.backend.close()
            app.state.backend = None

    return app


app = create_app()
