"""
Chat response handler: writes the assistant's reply in a project thread.
"""

import json
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shrubb_jobs.config.logging import get_logger
from shrubb_jobs.v1.billing.pricing import GPT_4O, cost_to_cents, estimate_cost
from shrubb_jobs.v1.core.exceptions import NotFoundError
from shrubb_jobs.v1.domain.models import DesignRun, Message, Project
from shrubb_jobs.v1.infra.jobs.handlers.base import BillableHandler
from shrubb_jobs.v1.infra.jobs.schemas import ChatResponsePayload

logger = get_logger(__name__)

HISTORY_LIMIT = 20
PLAN_SUMMARY_CHARS = 3000


def build_system_prompt(project: Project, planner_json: dict[str, Any] | None) -> str:
    preferences = project.preferences or {}
    if planner_json:
        plan = json.dumps(planner_json, indent=2)[:PLAN_SUMMARY_CHARS]
        plan_block = f"Current landscape plan summary:\n{plan}"
    else:
        plan_block = "No landscape plan has been generated yet."

    return f"""You are a friendly, knowledgeable landscape design assistant for the project "{project.name}".

Project context:
- Address: {project.address or 'Not provided'}
- Climate zone: {project.climate_zone or 'Unknown'}
- Style preference: {preferences.get('style') or 'Not specified'}
- Budget: {preferences.get('budget') or 'Not specified'}
- Maintenance level: {preferences.get('maintenance_level') or 'Not specified'}

{plan_block}

Guidelines:
- Be helpful and conversational, drawing on the project context above.
- If the user asks about plants, refer to their climate zone and preferences.
- If the user wants visual changes, note that they can request a rerender.
- Keep responses concise but informative.
- Do not make up information about the user's property; use the data provided."""


class ChatResponseHandler(BillableHandler):
    """Replies to the latest message in a project conversation."""

    payload_model = ChatResponsePayload

    async def handle(
        self, session: AsyncSession, ctx, payload: ChatResponsePayload
    ) -> dict[str, Any]:
        project = await session.get(Project, payload.project_id)
        if project is None:
            raise NotFoundError(f"Project {payload.project_id} not found")

        run_result = await session.execute(
            select(DesignRun.planner_json)
            .where(DesignRun.project_id == project.id, DesignRun.status == "succeeded")
            .order_by(DesignRun.created_at.desc())
            .limit(1)
        )
        planner_json = run_result.scalar_one_or_none()

        history_result = await session.execute(
            select(Message)
            .where(Message.project_id == project.id)
            .order_by(Message.created_at.desc())
            .limit(HISTORY_LIMIT)
        )
        history = list(reversed(history_result.scalars().all()))

        estimate = estimate_cost(3000, 1500, GPT_4O)
        await self.spend_guard.require_within_cap(ctx.tenant_id, cost_to_cents(estimate))

        messages = [{"role": "system", "content": build_system_prompt(project, planner_json)}]
        messages.extend(
            {
                "role": "assistant" if m.role == "assistant" else "user",
                "content": m.content,
            }
            for m in history
        )

        completion = await self.ai.complete(
            GPT_4O, messages, temperature=0.7, max_tokens=2048
        )

        actual_cost = estimate_cost(completion.tokens_in, completion.tokens_out, GPT_4O)
        await self.charge(
            ctx,
            run_type="chat",
            model=GPT_4O,
            cost_usd=actual_cost,
            tokens_in=completion.tokens_in,
            tokens_out=completion.tokens_out,
            project_id=project.id,
            message_id=payload.message_id,
        )

        reply = Message(
            project_id=project.id,
            user_id=payload.user_id or ctx.owner_id,
            role="assistant",
            content=completion.content,
            channel="web",
        )
        session.add(reply)
        await session.commit()

        logger.info(
            "Chat reply written",
            project_id=str(project.id),
            reply_id=str(reply.id),
            tokens_in=completion.tokens_in,
            tokens_out=completion.tokens_out,
        )

        return {"message_id": str(reply.id)}
