"""Step prompts for brand wizard agent sessions.

User input is embedded as JSON between ``<user_input>`` delimiters. Angle
brackets inside the input are written as JSON unicode escapes, so nothing
the user types can close the delimiter or open a new tag, while the JSON
still decodes to exactly what the user sent.
"""

import json
from typing import Any, Mapping

from ..schemas.jobs import WizardStep

# ---------------------------------------------------------------------------
# Per-step instructions
# ---------------------------------------------------------------------------

STEP_INSTRUCTIONS: dict[str, str] = {
    WizardStep.SOCIAL_ANALYSIS.value: (
        "Analyze the user's social media profiles with the social-analyzer subagent.\n"
        "Extract brand DNA: aesthetic, themes, audience, engagement, personality.\n"
        "Save the analysis results via saveBrandData."
    ),
    WizardStep.BRAND_IDENTITY.value: (
        "Generate a complete brand identity from the social analysis data with the "
        "brand-generator subagent.\n"
        "Include: vision, values, archetype, color palette (4-6 colors), fonts, logo style.\n"
        "Save all results via saveBrandData."
    ),
    WizardStep.CUSTOMIZATION.value: (
        "Apply the user's edits to the brand identity (name, colors, fonts, tone).\n"
        "Keep every field the user did not change.\n"
        "Save the updated identity via saveBrandData."
    ),
    WizardStep.LOGO_GENERATION.value: (
        "Generate 4 logo options for the brand with the logo-creator subagent.\n"
        "Save logo assets via saveBrandData."
    ),
    WizardStep.LOGO_REFINEMENT.value: (
        "Refine the selected logo with the logo-creator subagent, following the "
        "user's refinement notes.\n"
        "Save the refined logo via saveBrandData."
    ),
    WizardStep.PRODUCT_SELECTION.value: (
        "Help the user browse and select products from the catalog.\n"
        "Use searchProducts to show available products.\n"
        "Save selected product SKUs via saveBrandData."
    ),
    WizardStep.MOCKUP_REVIEW.value: (
        "Generate product mockups for all selected products with the mockup-renderer subagent.\n"
        "Save mockup assets via saveBrandData."
    ),
    WizardStep.BUNDLE_BUILDER.value: (
        "Create product bundles from the selected products.\n"
        "Use the mockup-renderer subagent for bundle composition images.\n"
        "Save bundle data via saveBrandData."
    ),
    WizardStep.PROFIT_CALCULATOR.value: (
        "Calculate profit margins and revenue projections with the profit-calculator subagent.\n"
        "Include projections at 3 sales tiers (low, mid, high).\n"
        "Save projections via saveBrandData."
    ),
}

USER_INPUT_OPEN = "<user_input>"
USER_INPUT_CLOSE = "</user_input>"


def escape_user_input(input_data: Any) -> str:
    """Serialize input as stable, pretty JSON with no literal angle brackets."""
    text = json.dumps(input_data, indent=2, sort_keys=True, default=str)
    return text.replace("<", "\\u003c").replace(">", "\\u003e")


def build_step_prompt(step: str, input_data: Any, context: Mapping[str, Any]) -> str:
    """
    Build the user prompt for one wizard step.

    Args:
        step: Wizard step name (``WizardStep`` value). Unknown steps get a
            generic instruction instead of an error.
        input_data: User-provided input for the step (JSON-serializable).
        context: Must provide ``brand_id`` and ``user_id``.
    """
    step_name = step.value if isinstance(step, WizardStep) else str(step)
    instructions = STEP_INSTRUCTIONS.get(
        step_name, f"Process the user's request for step: {step_name}"
    )

    return (
        f"Current wizard step: {step_name}\n"
        f"Brand ID: {context['brand_id']}\n"
        f"User ID: {context['user_id']}\n"
        "\n"
        f"{instructions}\n"
        "\n"
        f"{USER_INPUT_OPEN}\n"
        f"{escape_user_input(input_data)}\n"
        f"{USER_INPUT_CLOSE}\n"
        "\n"
        "Process the above user input according to the step instructions. "
        "Return structured JSON as specified in your step schemas."
    )
