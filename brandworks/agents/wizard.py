"""brand-wizard queue processor: one agent session per wizard step.

Flow for a job:
  1. check credits for metered steps (logo and mockup work)
  2. build the step prompt and the session hooks
  3. drive the agent runtime until it yields a result message
  4. deduct the job's creditCost
  5. fire ``brand.updated`` to the user's webhooks

Credits are taken only after the session succeeds, so a failed or retried
job never needs a refund. Failures the classifier considers transient are
re-raised and go through the queue's retry policy; anything else fails the
job immediately.
"""

import asyncio
import logging
from typing import Any, AsyncIterator, Callable, Dict, Optional, Protocol

from sqlalchemy.orm import Session

from ..core.tiers import CreditType
from ..exceptions import FatalJobError
from ..queues.broker import Job
from ..queues.worker import JobContext
from ..schemas.credits import CreditCheckResult, DeductResult
from ..schemas.jobs import BrandWizardJob, WizardStep
from ..schemas.webhook import WebhookEvent
from ..services.credit_ledger import CreditLedger
from ..services.webhook_dispatcher import WebhookDispatcher
from .hooks import AgentRunContext, PermissionPolicy, build_hooks, database_audit_sink, default_policy
from .notifier import LiveNotifier, LoggingNotifier
from .prompts import build_step_prompt
from .recovery import classify_error, describe_error, Recoverability

logger = logging.getLogger(__name__)

# Steps that consume credits, and which kind. Other steps are not metered.
STEP_CREDIT_TYPES: Dict[WizardStep, CreditType] = {
    WizardStep.LOGO_GENERATION: CreditType.LOGO,
    WizardStep.LOGO_REFINEMENT: CreditType.LOGO,
    WizardStep.MOCKUP_REVIEW: CreditType.MOCKUP,
}


class AgentRuntime(Protocol):
    """An agent loop. Yields message dicts; the last one has ``type == "result"``."""

    def run(
        self,
        *,
        prompt: str,
        hooks: Dict[Any, Any],
        resume: Optional[str] = None,
    ) -> AsyncIterator[Dict[str, Any]]: ...


class WizardProcessor:
    def __init__(
        self,
        runtime: AgentRuntime,
        session_factory: Callable[[], Session],
        webhooks: Optional[WebhookDispatcher] = None,
        notifier: Optional[LiveNotifier] = None,
        policy: Optional[PermissionPolicy] = None,
    ):
        self.runtime = runtime
        self.session_factory = session_factory
        self.webhooks = webhooks
        self.notifier = notifier or LoggingNotifier()
        self.policy = policy or default_policy()

    # -- ledger calls (run in worker threads) ---------------------------------

    def _check(self, user_id: str, credit_type: CreditType, quantity: int) -> CreditCheckResult:
        db = self.session_factory()
        try:
            return CreditLedger(db).check(user_id, credit_type.value, quantity)
        finally:
            db.close()

    def _deduct(self, user_id: str, credit_type: CreditType, quantity: int, reason: str) -> DeductResult:
        db = self.session_factory()
        try:
            return CreditLedger(db).deduct(user_id, credit_type.value, quantity, reason=reason)
        finally:
            db.close()

    # -- processor -------------------------------------------------------------

    async def __call__(self, job: Job, ctx: JobContext) -> Dict[str, Any]:
        payload = BrandWizardJob.model_validate(job.payload)
        user_id = str(payload.user_id)
        brand_id = str(payload.brand_id)
        step = payload.step
        credit_type = STEP_CREDIT_TYPES.get(step)

        if credit_type is not None:
            check = await asyncio.to_thread(self._check, user_id, credit_type, payload.credit_cost)
            if not check.allowed:
                raise FatalJobError(
                    f"Insufficient {credit_type.value} credits for {step.value}",
                    details={"remaining": check.remaining, "needsUpgrade": check.needs_upgrade},
                )

        run = AgentRunContext(
            user_id=user_id,
            brand_id=brand_id,
            session_id=payload.session_id,
            job_id=job.id,
            notifier=self.notifier,
            report_progress=ctx.update_progress,
            audit=database_audit_sink(self.session_factory, user_id, brand_id),
        )
        hooks = build_hooks(run, self.policy)
        prompt = build_step_prompt(step, payload.input, {"user_id": user_id, "brand_id": brand_id})

        logger.info(
            f"Starting brand wizard agent for step {step.value}",
            extra={"user_id": user_id, "brand_id": brand_id, "resume": bool(payload.session_id)},
        )

        final: Optional[Dict[str, Any]] = None
        try:
            async for message in self.runtime.run(prompt=prompt, hooks=hooks, resume=payload.session_id):
                if message.get("total_cost_usd") is not None:
                    run.session_cost_usd = float(message["total_cost_usd"])
                if message.get("type") == "result":
                    if message.get("is_error"):
                        raise RuntimeError(message.get("result") or "Agent session failed")
                    final = {
                        "result": message.get("result"),
                        "cost": run.session_cost_usd,
                        "sessionId": message.get("session_id") or run.session_id,
                    }
        except FatalJobError:
            raise
        except Exception as exc:
            if classify_error(describe_error(exc)) is Recoverability.RECOVERABLE:
                logger.warning(f"Brand wizard step {step.value} hit a transient error: {exc}")
                raise
            raise FatalJobError(
                f"Brand wizard step {step.value} failed: {exc}",
                details={"step": step.value},
            ) from exc

        if final is None:
            raise FatalJobError(f"Agent session for {step.value} ended without a result")

        if credit_type is not None:
            deducted = await asyncio.to_thread(
                self._deduct, user_id, credit_type, payload.credit_cost, f"brand-wizard:{step.value}"
            )
            if not deducted.success:
                logger.warning(
                    f"Could not deduct {payload.credit_cost} {credit_type.value} credit(s) after {step.value}",
                    extra={"user_id": user_id, "remaining": deducted.remaining},
                )

        await ctx.update_progress(100)

        if self.webhooks is not None:
            self.webhooks.dispatch_in_background(user_id, WebhookEvent.BRAND_UPDATED.value, {
                "brandId": brand_id,
                "step": step.value,
                "sessionId": final["sessionId"],
            })

        logger.info(
            f"Brand wizard step {step.value} complete",
            extra={"brand_id": brand_id, "cost": final["cost"]},
        )
        return final
