"""
Visualizer handler: renders concept images from a stored plan.
"""

from typing import Any
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from shrubb_jobs.config.logging import get_logger
from shrubb_jobs.v1.billing.pricing import DALLE_3, cost_to_cents, estimate_cost
from shrubb_jobs.v1.core.exceptions import NotFoundError
from shrubb_jobs.v1.domain.models import DesignAsset, DesignRun
from shrubb_jobs.v1.infra.jobs.handlers.base import BillableHandler
from shrubb_jobs.v1.infra.jobs.schemas import VisualizerPayload

logger = get_logger(__name__)


def build_image_prompt(planner_json: dict[str, Any]) -> str:
    """Describe the plan's style, plants and hardscape in one render prompt."""
    style = planner_json.get("style") or "modern"

    plants = [
        plant.get("common_name")
        for bed in planner_json.get("beds") or []
        for plant in bed.get("plants") or []
        if plant.get("common_name")
    ][:10]
    hardscape = [
        f"{h.get('element')} ({h.get('material')})"
        for h in (planner_json.get("hardscape") or [])[:5]
    ]

    return (
        f"A photorealistic aerial-perspective rendering of a {style} residential "
        "landscape design.\n"
        f"Features: {', '.join(plants) or 'mixed perennial garden'}.\n"
        f"Hardscape: {', '.join(hardscape) or 'flagstone pathway and patio'}.\n"
        "Natural lighting, lush greenery, high detail. No text or labels."
    )


class VisualizerHandler(BillableHandler):
    """Generates ``concept_count`` renders, charging per image produced."""

    payload_model = VisualizerPayload

    async def handle(
        self, session: AsyncSession, ctx, payload: VisualizerPayload
    ) -> dict[str, Any]:
        design_run = await session.get(DesignRun, payload.design_run_id)
        if design_run is None:
            raise NotFoundError(f"Design run {payload.design_run_id} not found")
        if not design_run.planner_json:
            raise NotFoundError(
                f"Design run {design_run.id} has no planner output; run planner first"
            )

        image_cost = estimate_cost(0, 0, DALLE_3, image_count=1)
        await self.spend_guard.require_within_cap(
            ctx.tenant_id, cost_to_cents(image_cost * payload.concept_count)
        )

        prompt = build_image_prompt(design_run.planner_json)
        asset_ids: list[str] = []

        for index in range(payload.concept_count):
            image_url = await self.ai.generate_image(DALLE_3, prompt)

            await self.charge(
                ctx,
                run_type="render",
                model=DALLE_3,
                cost_usd=image_cost,
                image_count=1,
                project_id=payload.project_id,
            )

            if not image_url:
                logger.warning("Render returned no image", index=index)
                continue

            asset = DesignAsset(
                id=uuid4(),
                design_run_id=design_run.id,
                asset_type="render",
                storage_path=image_url,
                meta={"prompt": prompt, "index": index, "model": DALLE_3},
            )
            session.add(asset)
            await session.commit()
            asset_ids.append(str(asset.id))

        logger.info(
            "Visualizer completed",
            design_run_id=str(design_run.id),
            generated=len(asset_ids),
            requested=payload.concept_count,
        )

        return {"asset_ids": asset_ids}
