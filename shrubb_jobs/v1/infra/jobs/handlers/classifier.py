"""
Classifier handler: tags a chat message as a question or a re-render request.
"""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from shrubb_jobs.config.logging import get_logger
from shrubb_jobs.v1.billing.pricing import GPT_4O_MINI, cost_to_cents, estimate_cost
from shrubb_jobs.v1.domain.models import Message
from shrubb_jobs.v1.infra.jobs.handlers.base import BillableHandler
from shrubb_jobs.v1.infra.jobs.models import JobType
from shrubb_jobs.v1.infra.jobs.schemas import ClassifierPayload, JobCreate

logger = get_logger(__name__)

INTENT_TEXT_ONLY = "text_only"
INTENT_RERENDER = "rerender"

SYSTEM_PROMPT = """You are an intent classifier for a landscape design chat assistant.
Classify the user's message into exactly one of these intents:
- "text_only": the user is asking a question, giving feedback, or chatting about the design
- "rerender": the user wants a new visual render or updated concept images

Respond with ONLY the intent string, nothing else."""


def normalize_intent(raw: str) -> str:
    """Anything other than an explicit ``rerender`` is treated as text."""
    return INTENT_RERENDER if raw.strip().lower() == INTENT_RERENDER else INTENT_TEXT_ONLY


class ClassifierHandler(BillableHandler):
    """
    Job handler for message intent.

    Payload expected:
    {
        "message_id": "uuid-string",
        "project_id": "uuid-string",
        "content": "message text",
        "respond": false  # optional, enqueue a chat reply for text_only
    }
    """

    payload_model = ClassifierPayload

    def __init__(self, settings, ai, spend_guard, usage_tracker, job_service):
        super().__init__(settings, ai, spend_guard, usage_tracker)
        self.job_service = job_service

    async def handle(
        self, session: AsyncSession, ctx, payload: ClassifierPayload
    ) -> dict[str, Any]:
        estimate = estimate_cost(200, 50, GPT_4O_MINI)
        await self.spend_guard.require_within_cap(ctx.tenant_id, cost_to_cents(estimate))

        completion = await self.ai.complete(
            GPT_4O_MINI,
            [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": payload.content},
            ],
            temperature=0,
            max_tokens=20,
        )
        intent = normalize_intent(completion.content or INTENT_TEXT_ONLY)

        actual_cost = estimate_cost(
            completion.tokens_in, completion.tokens_out, GPT_4O_MINI
        )
        await self.charge(
            ctx,
            run_type="classify",
            model=GPT_4O_MINI,
            cost_usd=actual_cost,
            tokens_in=completion.tokens_in,
            tokens_out=completion.tokens_out,
            project_id=payload.project_id,
            message_id=payload.message_id,
        )

        message = await session.get(Message, payload.message_id)
        if message is None:
            logger.warning(
                "Classified message no longer exists", message_id=str(payload.message_id)
            )
        else:
            message.intent = intent
            await session.commit()

        logger.info("Message classified", message_id=str(payload.message_id), intent=intent)

        # Best-effort: the classification stands even if the reply is not queued
        if payload.respond and intent == INTENT_TEXT_ONLY:
            await self.job_service.enqueue_follow_on(
                session,
                JobCreate(
                    type=JobType.CHAT_RESPONSE,
                    owner_id=ctx.owner_id,
                    tenant_id=ctx.tenant_id,
                    payload={
                        "project_id": str(payload.project_id),
                        "message_id": str(payload.message_id),
                        "user_id": str(ctx.owner_id),
                    },
                ),
            )

        return {"intent": intent}
