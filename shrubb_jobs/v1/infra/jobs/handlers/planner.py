"""
Planner handler: turns a project brief into a structured landscape plan.
"""

import json
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shrubb_jobs.config.logging import get_logger
from shrubb_jobs.v1.billing.pricing import GPT_4O, cost_to_cents, estimate_cost
from shrubb_jobs.v1.core.exceptions import NotFoundError, ProviderError
from shrubb_jobs.v1.domain.models import DesignRun, Project, ProjectInput
from shrubb_jobs.v1.infra.jobs.handlers.base import BillableHandler
from shrubb_jobs.v1.infra.jobs.models import JobType
from shrubb_jobs.v1.infra.jobs.schemas import JobCreate, PlannerPayload

logger = get_logger(__name__)

# Token budget used for the pre-call spend check
ESTIMATED_TOKENS_IN = 2000
ESTIMATED_TOKENS_OUT = 4000

SYSTEM_PROMPT = """You are an expert landscape architect. Produce a structured JSON landscape plan.
Return ONLY a JSON object with these keys:
beds, plant_palette, hardscape, materials, maintenance_notes, assumptions,
disclaimers, questions_for_user, style, estimated_budget.
Each bed has a name, a shape and a list of plants with common_name,
botanical_name, quantity_estimate, spacing_inches, zone_ok, sun_ok and water_ok."""

PREFERENCE_FIELDS = (
    ("Style", "style"),
    ("Budget", "budget"),
    ("Maintenance level", "maintenance_level"),
    ("Watering", "watering"),
    ("Sun exposure", "sun_exposure"),
    ("Pets", "pets"),
    ("Kids play area", "kids_play_area"),
    ("Hardscape level", "hardscape_level"),
)


def build_planner_prompt(project: Project, inputs: list[ProjectInput]) -> str:
    preferences = project.preferences or {}
    lines = [
        "Design a landscape plan for:",
        f"Project: {project.name}",
        f"Address: {project.address or 'Not provided'}",
        f"Climate zone: {project.climate_zone or 'Unknown'}",
        "",
        "User preferences:",
    ]
    lines.extend(
        f"- {label}: {preferences.get(key) or 'Not specified'}"
        for label, key in PREFERENCE_FIELDS
    )
    lines.append(f"- Additional notes: {preferences.get('notes') or 'None'}")
    lines.append("")

    if inputs:
        lines.append("Uploaded photos:")
        lines.extend(f"- {i.input_type}: {i.storage_path}" for i in inputs)
    else:
        lines.append("No photos uploaded.")

    lines.append("")
    lines.append("Produce a complete landscape plan as JSON.")
    return "\n".join(lines)


class PlannerHandler(BillableHandler):
    """
    Job handler for design plans.

    Payload expected:
    {
        "project_id": "uuid-string",
        "design_run_id": "uuid-string",
        "enqueue_visualizer": false,  # optional
        "concept_count": 2  # optional, forwarded to the visualizer
    }
    """

    payload_model = PlannerPayload

    def __init__(self, settings, ai, spend_guard, usage_tracker, job_service):
        super().__init__(settings, ai, spend_guard, usage_tracker)
        self.job_service = job_service

    async def handle(
        self, session: AsyncSession, ctx, payload: PlannerPayload
    ) -> dict[str, Any]:
        project = await session.get(Project, payload.project_id)
        if project is None:
            raise NotFoundError(f"Project {payload.project_id} not found")

        design_run = await session.get(DesignRun, payload.design_run_id)
        if design_run is None:
            raise NotFoundError(f"Design run {payload.design_run_id} not found")

        inputs_result = await session.execute(
            select(ProjectInput).where(ProjectInput.project_id == project.id)
        )
        inputs = list(inputs_result.scalars().all())

        estimate = estimate_cost(ESTIMATED_TOKENS_IN, ESTIMATED_TOKENS_OUT, GPT_4O)
        await self.spend_guard.require_within_cap(ctx.tenant_id, cost_to_cents(estimate))

        completion = await self.ai.complete(
            GPT_4O,
            [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_planner_prompt(project, inputs)},
            ],
            temperature=0.7,
            max_tokens=4096,
            json_mode=True,
        )

        actual_cost = estimate_cost(completion.tokens_in, completion.tokens_out, GPT_4O)
        await self.charge(
            ctx,
            run_type="planner",
            model=GPT_4O,
            cost_usd=actual_cost,
            tokens_in=completion.tokens_in,
            tokens_out=completion.tokens_out,
            project_id=project.id,
        )

        try:
            planner_json = json.loads(completion.content or "{}")
        except json.JSONDecodeError as e:
            raise ProviderError(f"{GPT_4O} returned invalid JSON for planner output") from e
        if not isinstance(planner_json, dict):
            raise ProviderError(f"{GPT_4O} returned a non-object planner output")

        design_run.planner_json = planner_json
        design_run.status = "succeeded"
        await session.commit()

        logger.info(
            "Planner completed",
            design_run_id=str(design_run.id),
            tokens_in=completion.tokens_in,
            tokens_out=completion.tokens_out,
        )

        # Best-effort: a failed follow-on enqueue does not fail the plan
        if payload.enqueue_visualizer:
            follow_on_payload: dict[str, Any] = {
                "project_id": str(project.id),
                "design_run_id": str(design_run.id),
            }
            if payload.concept_count is not None:
                follow_on_payload["concept_count"] = payload.concept_count
            await self.job_service.enqueue_follow_on(
                session,
                JobCreate(
                    type=JobType.VISUALIZER,
                    owner_id=ctx.owner_id,
                    tenant_id=ctx.tenant_id,
                    payload=follow_on_payload,
                ),
            )

        return {"design_run_id": str(design_run.id), "planner_json": planner_json}
