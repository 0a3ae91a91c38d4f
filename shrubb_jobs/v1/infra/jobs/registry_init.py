"""
Job registry construction.

Builds the registry the worker dispatches through. Called once per process;
the result is passed to ``JobWorker`` explicitly.
"""

from shrubb_jobs.config.logging import get_logger
from shrubb_jobs.config.settings import Settings
from shrubb_jobs.infra.database import Database
from shrubb_jobs.v1.billing.spend_guard import SpendGuard
from shrubb_jobs.v1.billing.usage import UsageTracker
from shrubb_jobs.v1.clients.ai import AIClient
from shrubb_jobs.v1.clients.twilio import TwilioClient
from shrubb_jobs.v1.core.registries import JobRegistry
from shrubb_jobs.v1.infra.jobs.handlers.chat_response import ChatResponseHandler
from shrubb_jobs.v1.infra.jobs.handlers.classifier import ClassifierHandler
from shrubb_jobs.v1.infra.jobs.handlers.planner import PlannerHandler
from shrubb_jobs.v1.infra.jobs.handlers.provision_phone import ProvisionPhoneHandler
from shrubb_jobs.v1.infra.jobs.handlers.send_proposal_nudge import (
    SendProposalNudgeHandler,
)
from shrubb_jobs.v1.infra.jobs.handlers.visualizer import VisualizerHandler
from shrubb_jobs.v1.infra.jobs.models import JobType
from shrubb_jobs.v1.infra.jobs.service import JobService

logger = get_logger(__name__)


def build_job_registry(
    settings: Settings,
    database: Database,
    ai: AIClient,
    twilio: TwilioClient,
    job_service: JobService | None = None,
) -> JobRegistry:
    """Register a handler for every job type."""
    logger.info("Registering job handlers")

    registry = JobRegistry()
    job_service = job_service or JobService(settings)
    spend_guard = SpendGuard(database.SessionLocal)
    usage_tracker = UsageTracker(database.SessionLocal)

    # AI handlers
    registry.register(
        JobType.PLANNER.value,
        PlannerHandler(settings, ai, spend_guard, usage_tracker, job_service),
    )
    registry.register(
        JobType.VISUALIZER.value,
        VisualizerHandler(settings, ai, spend_guard, usage_tracker),
    )
    registry.register(
        JobType.CLASSIFIER.value,
        ClassifierHandler(settings, ai, spend_guard, usage_tracker, job_service),
    )
    registry.register(
        JobType.CHAT_RESPONSE.value,
        ChatResponseHandler(settings, ai, spend_guard, usage_tracker),
    )

    # Telephony handlers
    registry.register(
        JobType.PROVISION_PHONE.value, ProvisionPhoneHandler(settings, twilio)
    )
    registry.register(
        JobType.SEND_PROPOSAL_NUDGE.value, SendProposalNudgeHandler(settings, twilio)
    )

    logger.info("Job handlers registered", registered_handlers=registry.list())
    return registry
