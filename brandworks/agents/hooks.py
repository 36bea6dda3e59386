"""Lifecycle hooks for brand wizard agent sessions.

``build_hooks`` returns the hook table an agent runtime expects:

    {"PreToolUse": [HookMatcher(hooks=[callback])], ...}

Every callback has the runtime signature
``async (input_data, tool_use_id, hook_context) -> dict`` and always returns
a continuation object. A hook that fails (notifier down, progress store
unreachable) logs the problem and lets the session go on: observability
never aborts an agent run.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..core.config import settings
from ..services import audit_service
from .notifier import LiveNotifier, LoggingNotifier
from .recovery import describe_error, is_recoverable

logger = logging.getLogger(__name__)


class HookEvent(str, Enum):
    SESSION_START = "SessionStart"
    PRE_TOOL_USE = "PreToolUse"
    POST_TOOL_USE = "PostToolUse"
    POST_TOOL_USE_FAILURE = "PostToolUseFailure"
    SESSION_END = "SessionEnd"


HookCallback = Callable[[Dict[str, Any], Optional[str], Any], Awaitable[Dict[str, Any]]]
ProgressReporter = Callable[[Dict[str, Any]], Awaitable[None]]
AuditSink = Callable[[Dict[str, Any]], Awaitable[None]]


@dataclass
class HookMatcher:
    hooks: List[HookCallback]
    # Tool name pattern; None matches every tool.
    matcher: Optional[str] = None


@dataclass
class AgentRunContext:
    """Mutable state shared by the hooks of one agent session."""
    user_id: str
    brand_id: str
    session_id: Optional[str] = None
    job_id: Optional[str] = None
    notifier: LiveNotifier = field(default_factory=LoggingNotifier)
    report_progress: Optional[ProgressReporter] = None
    audit: Optional[AuditSink] = None
    tool_call_count: int = 0
    session_cost_usd: float = 0.0


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------

# Typical position of each tool in a wizard flow, in percent.
PROGRESS_MILESTONES: Dict[str, int] = {
    "validateInput": 5,
    "checkCredits": 10,
    "social-analyzer": 30,
    "brand-generator": 50,
    "saveBrandData": 55,
    "logo-creator": 75,
    "mockup-renderer": 85,
    "profit-calculator": 90,
    "deductCredit": 92,
    "queueCRMSync": 95,
    "sendEmail": 98,
}


def calculate_progress(tool_name: str, tool_call_count: int) -> int:
    milestone = PROGRESS_MILESTONES.get(tool_name)
    if milestone is not None:
        return milestone
    return min(tool_call_count * 10, 95)


# Never sent to browsers.
CLIENT_HIDDEN_FIELDS = ("apiKey", "internalUrl", "stackTrace", "rawResponse")


def sanitize_result_for_client(result: Any) -> Any:
    if not isinstance(result, dict):
        return result
    return {k: v for k, v in result.items() if k not in CLIENT_HIDDEN_FIELDS}


# ---------------------------------------------------------------------------
# Permission policies
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PermissionDecision:
    allow: bool
    reason: Optional[str] = None


ALLOW = PermissionDecision(allow=True)

# (tool_name, tool_input, context) -> decision. Called after the tool call
# has been counted.
PermissionPolicy = Callable[[str, Dict[str, Any], AgentRunContext], PermissionDecision]


def allow_all(tool_name: str, tool_input: Dict[str, Any], ctx: AgentRunContext) -> PermissionDecision:
    return ALLOW


def tool_call_limit_policy(limit: int) -> PermissionPolicy:
    """Deny every tool call after the first ``limit`` of a session."""
    def policy(tool_name: str, tool_input: Dict[str, Any], ctx: AgentRunContext) -> PermissionDecision:
        if ctx.tool_call_count > limit:
            return PermissionDecision(False, f"Tool call limit of {limit} reached for this session.")
        return ALLOW
    return policy


def session_cost_policy(limit_usd: float) -> PermissionPolicy:
    """Deny tool calls once the session has spent more than ``limit_usd``."""
    def policy(tool_name: str, tool_input: Dict[str, Any], ctx: AgentRunContext) -> PermissionDecision:
        if limit_usd > 0 and ctx.session_cost_usd > limit_usd:
            return PermissionDecision(False, "Session cost limit exceeded. Please try again.")
        return ALLOW
    return policy


def combine_policies(*policies: PermissionPolicy) -> PermissionPolicy:
    """First denial wins."""
    def policy(tool_name: str, tool_input: Dict[str, Any], ctx: AgentRunContext) -> PermissionDecision:
        for p in policies:
            decision = p(tool_name, tool_input, ctx)
            if not decision.allow:
                return decision
        return ALLOW
    return policy


def default_policy() -> PermissionPolicy:
    return session_cost_policy(settings.agent_cost_limit_usd)


# ---------------------------------------------------------------------------
# Hooks
# ---------------------------------------------------------------------------

def _continue() -> Dict[str, Any]:
    return {"continue": True}


def _guarded(event: HookEvent, callback: HookCallback) -> HookCallback:
    async def hook(input_data: Dict[str, Any], tool_use_id: Optional[str], hook_context: Any) -> Dict[str, Any]:
        try:
            return await callback(input_data or {}, tool_use_id, hook_context)
        except Exception as e:
            logger.error(
                f"{event.value} hook failed: {e}",
                exc_info=True,
                extra={"tool_name": (input_data or {}).get("tool_name")},
            )
            return _continue()
    return hook


def build_hooks(ctx: AgentRunContext,
                policy: Optional[PermissionPolicy] = None) -> Dict[HookEvent, List[HookMatcher]]:
    """
    Build the hook table for one agent session.

    Args:
        ctx: Session state. Hooks update ``tool_call_count`` and
            ``session_id`` on it.
        policy: Decides PreToolUse permission; allows everything if omitted.
    """
    policy = policy or allow_all
    log_extra = {"user_id": ctx.user_id, "brand_id": ctx.brand_id}

    async def _report(progress: Dict[str, Any]) -> None:
        if ctx.report_progress is not None:
            await ctx.report_progress(progress)

    async def session_start(input_data, tool_use_id, hook_context):
        ctx.session_id = input_data.get("session_id") or ctx.session_id
        logger.info(f"Agent session started: {ctx.session_id}", extra=log_extra)
        await ctx.notifier.publish(ctx.brand_id, "agent:session-start", {
            "sessionId": ctx.session_id,
            "brandId": ctx.brand_id,
            "source": input_data.get("source"),
        })
        return _continue()

    async def pre_tool_use(input_data, tool_use_id, hook_context):
        tool_name = input_data.get("tool_name", "")
        ctx.tool_call_count += 1
        logger.info(
            f"Tool call starting: {tool_name}",
            extra={**log_extra, "call_number": ctx.tool_call_count},
        )

        decision = policy(tool_name, input_data.get("tool_input") or {}, ctx)

        # A failed progress update must not turn a denial into an allow.
        try:
            await _report({
                "currentTool": tool_name,
                "toolCallCount": ctx.tool_call_count,
                "progress": calculate_progress(tool_name, ctx.tool_call_count),
            })
            await ctx.notifier.publish(ctx.brand_id, "agent:tool-start", {
                "tool": tool_name,
                "callNumber": ctx.tool_call_count,
            })
        except Exception as e:
            logger.warning(f"Progress update for {tool_name} failed: {e}", extra=log_extra)

        output: Dict[str, Any] = {
            "hookEventName": HookEvent.PRE_TOOL_USE.value,
            "permissionDecision": "allow" if decision.allow else "deny",
        }
        if not decision.allow:
            logger.warning(f"Tool call denied: {tool_name}: {decision.reason}", extra=log_extra)
            output["permissionDecisionReason"] = decision.reason
        return {"continue": True, "hookSpecificOutput": output}

    async def post_tool_use(input_data, tool_use_id, hook_context):
        tool_name = input_data.get("tool_name", "")
        progress = calculate_progress(tool_name, ctx.tool_call_count)
        logger.info(f"Tool call completed: {tool_name}", extra={**log_extra, "progress": progress})

        await _report({"progress": progress, "lastTool": tool_name})
        await ctx.notifier.publish(ctx.brand_id, "agent:tool-complete", {
            "tool": tool_name,
            "progress": progress,
            "result": sanitize_result_for_client(input_data.get("tool_response")),
        })
        return _continue()

    async def post_tool_use_failure(input_data, tool_use_id, hook_context):
        tool_name = input_data.get("tool_name", "")
        error = describe_error(input_data.get("error"))
        recoverable = is_recoverable(error)
        logger.error(
            f"Tool call failed: {tool_name}: {error.message}",
            extra={**log_extra, "recoverable": recoverable},
        )
        await ctx.notifier.publish(ctx.brand_id, "agent:tool-error", {
            "tool": tool_name,
            "error": error.message,
            "recoverable": recoverable,
        })
        return _continue()

    async def session_end(input_data, tool_use_id, hook_context):
        session_id = input_data.get("session_id") or ctx.session_id
        reason = input_data.get("reason")
        logger.info(
            f"Agent session ended: {session_id} ({reason})",
            extra={**log_extra, "tool_calls": ctx.tool_call_count},
        )
        if ctx.audit is not None:
            await ctx.audit({
                "sessionId": session_id,
                "reason": reason,
                "toolCallCount": ctx.tool_call_count,
                "totalCostUsd": ctx.session_cost_usd,
            })
        await ctx.notifier.publish(ctx.brand_id, "agent:session-end", {
            "sessionId": session_id,
            "reason": reason,
            "toolCallCount": ctx.tool_call_count,
            "cost": ctx.session_cost_usd,
        })
        return _continue()

    callbacks = {
        HookEvent.SESSION_START: session_start,
        HookEvent.PRE_TOOL_USE: pre_tool_use,
        HookEvent.POST_TOOL_USE: post_tool_use,
        HookEvent.POST_TOOL_USE_FAILURE: post_tool_use_failure,
        HookEvent.SESSION_END: session_end,
    }
    return {event: [HookMatcher(hooks=[_guarded(event, fn)])] for event, fn in callbacks.items()}


def database_audit_sink(session_factory, user_id: str, brand_id: str) -> AuditSink:
    """Audit sink writing ``agent_session_complete`` rows through the audit service."""
    def _write(details: Dict[str, Any]) -> None:
        db = session_factory()
        try:
            audit_service.log(
                db,
                user_id=user_id,
                action="agent_session_complete",
                resource_type="brand",
                resource_id=brand_id,
                details=details,
            )
        finally:
            db.close()

    async def sink(details: Dict[str, Any]) -> None:
        await asyncio.to_thread(_write, details)

    return sink
