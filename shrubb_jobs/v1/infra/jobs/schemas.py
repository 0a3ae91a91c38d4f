"""
Job payload and API schemas.

Every job type has a payload model; the worker validates a job's payload
against it before the handler runs, and the enqueue endpoint validates
against the same model before the row is inserted.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from shrubb_jobs.v1.core.exceptions import InvalidPayloadError, UnknownJobTypeError
from shrubb_jobs.v1.infra.jobs.models import JobType


class JobPayload(BaseModel):
    """Base for per-type payloads; unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore")


class PlannerPayload(JobPayload):
    project_id: UUID
    design_run_id: UUID
    # Best-effort follow-on render once the plan is stored
    enqueue_visualizer: bool = False
    concept_count: int | None = None


class VisualizerPayload(JobPayload):
    project_id: UUID
    design_run_id: UUID
    concept_count: int = 2

    @field_validator("concept_count", mode="before")
    @classmethod
    def clamp_concept_count(cls, value: Any) -> int:
        try:
            count = int(value)
        except (TypeError, ValueError):
            return 2
        if count == 0:
            return 2
        return min(max(count, 1), 6)


class ClassifierPayload(JobPayload):
    message_id: UUID
    project_id: UUID
    content: str = Field(..., min_length=1)
    # Best-effort chat reply for text_only intents
    respond: bool = False


class ChatResponsePayload(JobPayload):
    project_id: UUID
    message_id: UUID
    user_id: UUID | None = None


class ProvisionPhonePayload(JobPayload):
    area_code: str | None = Field(default=None, pattern=r"^\d{3}$")

    @field_validator("area_code", mode="before")
    @classmethod
    def blank_area_code(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class SendProposalNudgePayload(JobPayload):
    nudge_id: UUID
    proposal_id: UUID


PAYLOAD_SCHEMAS: dict[str, type[JobPayload]] = {
    JobType.PLANNER.value: PlannerPayload,
    JobType.VISUALIZER.value: VisualizerPayload,
    JobType.CLASSIFIER.value: ClassifierPayload,
    JobType.CHAT_RESPONSE.value: ChatResponsePayload,
    JobType.PROVISION_PHONE.value: ProvisionPhonePayload,
    JobType.SEND_PROPOSAL_NUDGE.value: SendProposalNudgePayload,
}


def parse_payload(
    job_type: str, payload: dict[str, Any] | None, model: type[JobPayload] | None = None
) -> JobPayload:
    """Validate ``payload`` for ``job_type``.

    Raises:
        UnknownJobTypeError: no schema exists for the type
        InvalidPayloadError: the payload does not match the schema
    """
    schema = model or PAYLOAD_SCHEMAS.get(job_type)
    if schema is None:
        raise UnknownJobTypeError(job_type)

    try:
        return schema.model_validate(payload or {})
    except ValidationError as e:
        errors = [
            {
                "field": ".".join(str(p) for p in err["loc"]) or "payload",
                "message": err["msg"],
            }
            for err in e.errors()
        ]
        problems = "; ".join(f"{err['field']}: {err['message']}" for err in errors)
        raise InvalidPayloadError(
            f"Invalid payload for {job_type}: {problems}",
            details={"type": job_type, "errors": errors},
        ) from e


class JobCreate(BaseModel):
    """Schema for inserting a new job."""

    type: JobType = Field(..., description="Job type identifier")
    owner_id: UUID = Field(..., description="Initiating user")
    tenant_id: UUID | None = Field(default=None, description="Billing company")
    payload: dict[str, Any] = Field(default_factory=dict, description="Job parameters")


class JobEnqueueRequest(BaseModel):
    """Schema for enqueueing jobs via API."""

    type: str = Field(..., description="Job type")
    payload: dict[str, Any] = Field(default_factory=dict, description="Job payload")


class JobEnqueueResponse(BaseModel):
    """Schema for job enqueue response."""

    job_id: UUID
    type: str
    status: str


class JobResponse(BaseModel):
    """Schema for job API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_id: UUID
    tenant_id: UUID | None
    type: str
    status: str
    payload: dict[str, Any]
    attempts: int

    locked_at: datetime | None = None
    locked_by: str | None = None

    result: dict[str, Any] | None = None
    error: dict[str, Any] | None = None

    created_at: datetime
    updated_at: datetime


class JobStatsResponse(BaseModel):
    """Schema for job statistics."""

    total_jobs: int
    by_status: dict[str, int]
    by_type: dict[str, int]
    queue_depth: int  # queued + running
    stale_running: int
