"""Brand wizard agent sessions: hooks, prompts, error classification."""

from .hooks import AgentRunContext, HookEvent, HookMatcher, build_hooks, tool_call_limit_policy
from .prompts import build_step_prompt
from .recovery import ErrorDescription, Recoverability, classify_error, describe_error
from .wizard import AgentRuntime, WizardProcessor

__all__ = [
    "AgentRunContext",
    "HookEvent",
    "HookMatcher",
    "build_hooks",
    "tool_call_limit_policy",
    "build_step_prompt",
    "ErrorDescription",
    "Recoverability",
    "classify_error",
    "describe_error",
    "AgentRuntime",
    "WizardProcessor",
]
