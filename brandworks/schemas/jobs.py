"""Job payload schemas, one per registered queue, plus dispatch request/response models.

Payloads travel between producers and workers in camelCase (``userId``,
``creditCost``), so every model accepts and dumps camelCase aliases while
exposing snake_case attributes to Python code.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, HttpUrl
from pydantic.alias_generators import to_camel


class JobPayload(BaseModel):
    """Base for queue payloads: camelCase on the wire, unknown keys dropped."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


ColorPalette = List[str]


# ---------------------------------------------------------------------------
# Payload enums
# ---------------------------------------------------------------------------

class WizardStep(str, Enum):
    """Wizard steps that can be run as a brand-wizard job."""
    SOCIAL_ANALYSIS = "social-analysis"
    BRAND_IDENTITY = "brand-identity"
    CUSTOMIZATION = "customization"
    LOGO_GENERATION = "logo-generation"
    LOGO_REFINEMENT = "logo-refinement"
    PRODUCT_SELECTION = "product-selection"
    MOCKUP_REVIEW = "mockup-review"
    BUNDLE_BUILDER = "bundle-builder"
    PROFIT_CALCULATOR = "profit-calculator"


class CrmEventType(str, Enum):
    USER_CREATED = "user.created"
    WIZARD_STARTED = "wizard.started"
    WIZARD_STEP_COMPLETED = "wizard.step-completed"
    WIZARD_ABANDONED = "wizard.abandoned"
    BRAND_COMPLETED = "brand.completed"
    SUBSCRIPTION_CREATED = "subscription.created"
    SUBSCRIPTION_CANCELLED = "subscription.cancelled"
    LOGO_GENERATED = "logo.generated"
    MOCKUP_GENERATED = "mockup.generated"


class EmailTemplate(str, Enum):
    WELCOME = "welcome"
    BRAND_COMPLETE = "brand-complete"
    WIZARD_ABANDONED = "wizard-abandoned"
    PASSWORD_RESET = "password-reset"
    SUBSCRIPTION_CONFIRMED = "subscription-confirmed"
    SUBSCRIPTION_CANCELLED = "subscription-cancelled"
    GENERATION_FAILED = "generation-failed"
    SUPPORT_TICKET = "support-ticket"
    SUPPORT_REQUEST = "support-request"
    PAYMENT_CONFIRMED = "payment-confirmed"
    SUBSCRIPTION_RENEWAL = "subscription-renewal"
    CREDIT_LOW_WARNING = "credit-low-warning"


class CleanupType(str, Enum):
    EXPIRED_JOBS = "expired-jobs"
    ORPHANED_ASSETS = "orphaned-assets"
    STALE_SESSIONS = "stale-sessions"
    TEMP_FILES = "temp-files"
    DETECT_ABANDONMENT = "detect-abandonment"


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------

class BrandWizardJob(JobPayload):
    """Runs one wizard step as an agent session."""
    user_id: UUID
    brand_id: UUID
    step: WizardStep
    session_id: Optional[str] = None
    input: Dict[str, Any]
    credit_cost: int = Field(gt=0)


class LogoGenerationJob(JobPayload):
    user_id: UUID
    brand_id: UUID
    brand_name: str = Field(min_length=1, max_length=200)
    logo_style: str = Field(pattern=r"^(minimal|bold|vintage|modern|playful)$")
    color_palette: ColorPalette = Field(min_length=1, max_length=8)
    brand_vision: str = Field(max_length=2000)
    archetype: Optional[str] = Field(default=None, max_length=200)
    count: int = Field(default=4, ge=1, le=8)
    is_refinement: bool = False
    previous_logo_url: Optional[HttpUrl] = None
    refinement_notes: Optional[str] = Field(default=None, max_length=1000)


class MockupGenerationJob(JobPayload):
    user_id: UUID
    brand_id: UUID
    product_id: UUID
    product_name: str
    product_category: str
    brand_name: Optional[str] = None
    logo_url: HttpUrl
    color_palette: ColorPalette = Field(min_length=1, max_length=8)
    mockup_template_url: Optional[HttpUrl] = None
    mockup_instructions: Optional[str] = Field(default=None, max_length=2000)


class BundleCompositionJob(JobPayload):
    user_id: UUID
    brand_id: UUID
    bundle_name: str = Field(min_length=1, max_length=200)
    product_mockup_urls: List[HttpUrl] = Field(min_length=2, max_length=10)
    brand_name: str
    color_palette: ColorPalette = Field(min_length=1, max_length=8)
    composition_style: str = Field(default="showcase", pattern=r"^(grid|lifestyle|flatlay|showcase)$")


class VideoGenerationJob(JobPayload):
    user_id: UUID
    brand_id: UUID
    product_name: str
    product_mockup_url: HttpUrl
    logo_url: HttpUrl
    brand_name: str
    color_palette: ColorPalette
    video_style: str = Field(default="showcase", pattern=r"^(showcase|unboxing|lifestyle|minimal)$")
    duration_seconds: int = Field(default=10, ge=5, le=30)


class CrmSyncJob(JobPayload):
    """Pushes a lifecycle event to the CRM."""
    user_id: UUID
    event_type: CrmEventType
    data: Dict[str, Any]


class EmailSendJob(JobPayload):
    to: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    template: EmailTemplate
    data: Dict[str, Any]
    user_id: Optional[UUID] = None


class ImageUploadJob(JobPayload):
    user_id: UUID
    brand_id: UUID
    asset_type: str = Field(pattern=r"^(logo|mockup|bundle|social_asset|video_thumbnail)$")
    source_url: HttpUrl
    file_name: str
    mime_type: str = "image/png"
    metadata: Optional[Dict[str, Any]] = None


class PrintExportJob(JobPayload):
    user_id: UUID
    brand_id: UUID
    product_id: UUID
    template_id: UUID
    format: str = Field(default="pdf", pattern=r"^(pdf|png_300dpi)$")


class CleanupJob(JobPayload):
    """Periodic maintenance task."""
    type: CleanupType


# ---------------------------------------------------------------------------
# Dispatch API
# ---------------------------------------------------------------------------

# Waiting jobs are ordered by (priority, insertion sequence) packed into one
# sorted-set score, which bounds the usable priority range.
MAX_PRIORITY = 2 ** 20


class DispatchOptions(BaseModel):
    """Per-call overrides for dispatch()."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    job_id: Optional[str] = Field(default=None, min_length=1, max_length=200)
    priority: Optional[int] = Field(default=None, ge=0, le=MAX_PRIORITY)
    delay_ms: Optional[int] = Field(default=None, ge=0)


class DispatchResult(BaseModel):
    """Returned by dispatch(): where the job went and under which id."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    job_id: str
    queue_name: str


class DispatchRequest(BaseModel):
    """Body of POST /api/jobs/{queue_name}."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    payload: Dict[str, Any]
    options: Optional[DispatchOptions] = None


class JobResponse(BaseModel):
    """Schema for job status."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    queue_name: str
    status: str
    priority: int
    attempts_made: int
    progress: Optional[Any] = None
    result: Optional[Any] = None
    failed_reason: Optional[str] = None
    created_at: datetime
    processed_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
