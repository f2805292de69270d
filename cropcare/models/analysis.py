"""Crop analysis data models."""

import math
import re
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from cropcare.core.constants import SanitizeLimits

TAG_PATTERN = re.compile(r"<[^>]*>")


class AnalysisStatus(StrEnum):
    """Analysis lifecycle: pending -> processing -> completed | failed."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class SeverityLevel(StrEnum):
    """Severity levels, lowest first."""

    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    CRITICAL = "critical"


SEVERITY_ALIASES = {
    "medium": SeverityLevel.MODERATE,
    "severe": SeverityLevel.HIGH,
}


def strip_tags(value: str) -> str:
    """Remove HTML-like tags and surrounding whitespace."""
    return TAG_PATTERN.sub("", value).strip()


def clean_text(value: Any, max_length: int) -> str:
    """Coerce to string, strip tags and truncate."""
    return strip_tags(str(value))[:max_length]


def clamp_confidence(value: Any) -> float:
    """Clamp a confidence score into [0, 1]; anything non-numeric becomes 0."""
    if isinstance(value, bool):
        return 0.0
    try:
        score = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(score):
        return 0.0
    return min(1.0, max(0.0, score))


def coerce_severity(value: Any) -> SeverityLevel:
    """Map a severity string onto the fixed enum, defaulting to the lowest level."""
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in SEVERITY_ALIASES:
            return SEVERITY_ALIASES[normalized]
        try:
            return SeverityLevel(normalized)
        except ValueError:
            pass
    return SeverityLevel.LOW


def clean_list(value: Any) -> list[str]:
    """Cap a list at the item limit, truncating and stripping each entry."""
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    items = [clean_text(item, SanitizeLimits.MAX_ITEM_LENGTH) for item in value if item is not None]
    return [item for item in items if item][: SanitizeLimits.MAX_LIST_ITEMS]


class LocationData(BaseModel):
    """Where a crop image was taken."""

    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    name: str | None = None


class CropAnalysis(BaseModel):
    """Analysis record as stored by the backend."""

    id: str
    user_id: str
    image_url: str
    crop_type: str
    disease_prediction: str | None = None
    confidence_score: float | None = None
    severity_level: SeverityLevel | None = None
    status: AnalysisStatus = AnalysisStatus.PENDING
    analysis_date: datetime | None = None
    location_data: LocationData | None = None

    @field_validator("confidence_score", mode="before")
    @classmethod
    def clamp_score(cls, v: Any) -> float | None:
        """Never expose an out-of-range score."""
        return None if v is None else clamp_confidence(v)

    @field_validator("severity_level", mode="before")
    @classmethod
    def restrict_severity(cls, v: Any) -> SeverityLevel | None:
        """Never expose an unrecognized severity."""
        return None if v is None else coerce_severity(v)

    @field_validator("location_data", mode="before")
    @classmethod
    def drop_bad_location(cls, v: Any) -> Any:
        """Location blobs written by other clients may be partial."""
        if isinstance(v, dict) and "lat" in v and "lng" in v:
            return v
        return None if not isinstance(v, LocationData) else v


class TreatmentRecommendation(BaseModel):
    """Recommendation owned one-to-one by a completed analysis."""

    id: str | None = None
    analysis_id: str
    treatment_steps: list[str] = Field(default_factory=list)
    precautionary_measures: list[str] = Field(default_factory=list)
    products_recommended: list[str] = Field(default_factory=list)
    expert_tips: list[str] = Field(default_factory=list)
    timeline: str | None = None

    @field_validator(
        "treatment_steps", "precautionary_measures", "products_recommended", "expert_tips", mode="before"
    )
    @classmethod
    def ensure_list(cls, v: Any) -> list[str]:
        return clean_list(v)


class InferenceResult(BaseModel):
    """Inference output after client-side re-validation."""

    disease_prediction: str | None = None
    confidence_score: float = 0.0
    severity_level: SeverityLevel = SeverityLevel.LOW
    treatment_steps: list[str] = Field(default_factory=list)
    precautionary_measures: list[str] = Field(default_factory=list)
    products_recommended: list[str] = Field(default_factory=list)
    expert_tips: list[str] = Field(default_factory=list)
    timeline: str | None = None

    @field_validator("disease_prediction", mode="before")
    @classmethod
    def clean_prediction(cls, v: Any) -> str | None:
        if v is None:
            return None
        return clean_text(v, SanitizeLimits.MAX_PREDICTION_LENGTH) or None

    @field_validator("timeline", mode="before")
    @classmethod
    def clean_timeline(cls, v: Any) -> str | None:
        if v is None:
            return None
        return clean_text(v, SanitizeLimits.MAX_TIMELINE_LENGTH) or None

    @field_validator("confidence_score", mode="before")
    @classmethod
    def clamp_score(cls, v: Any) -> float:
        return clamp_confidence(v)

    @field_validator("severity_level", mode="before")
    @classmethod
    def restrict_severity(cls, v: Any) -> SeverityLevel:
        return coerce_severity(v)

    @field_validator(
        "treatment_steps", "precautionary_measures", "products_recommended", "expert_tips", mode="before"
    )
    @classmethod
    def ensure_list(cls, v: Any) -> list[str]:
        return clean_list(v)

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> "InferenceResult":
        """Build from either the flat or the nested (analysis/recommendations) response shape."""
        merged: dict[str, Any] = {}
        for section in ("analysis", "recommendations"):
            if isinstance(data.get(section), dict):
                merged.update(data[section])
        if not merged:
            merged = dict(data)
        return cls.model_validate(merged)

    def to_recommendation(self, analysis_id: str) -> TreatmentRecommendation:
        return TreatmentRecommendation(
            analysis_id=analysis_id,
            treatment_steps=self.treatment_steps,
            precautionary_measures=self.precautionary_measures,
            products_recommended=self.products_recommended,
            expert_tips=self.expert_tips,
            timeline=self.timeline,
        )


class AnalysisResult(BaseModel):
    """What the pipeline hands back to its caller."""

    analysis: CropAnalysis
    recommendation: TreatmentRecommendation | None = None
    queued: bool = False

    @property
    def is_healthy(self) -> bool:
        return self.analysis.status == AnalysisStatus.COMPLETED and looks_healthy(self.analysis.disease_prediction)


def looks_healthy(prediction: str | None) -> bool:
    """No prediction, "healthy" or "no disease ..." all count as a healthy crop."""
    text = (prediction or "").strip().lower()
    return not text or text == "healthy" or "no disease" in text


class AnalysisUpdate(BaseModel):
    """Partial user edit of an analysis; fields left as None are not touched."""

    crop_type: str | None = None
    disease_prediction: str | None = None
    confidence_score: float | None = None
    severity_level: SeverityLevel | None = None
    status: AnalysisStatus | None = None
    location_data: LocationData | None = None

    @field_validator("disease_prediction", mode="before")
    @classmethod
    def clean_prediction(cls, v: Any) -> str | None:
        if v is None:
            return None
        return clean_text(v, SanitizeLimits.MAX_PREDICTION_LENGTH) or None

    @field_validator("confidence_score", mode="before")
    @classmethod
    def clamp_score(cls, v: Any) -> float | None:
        return None if v is None else clamp_confidence(v)

    @field_validator("severity_level", mode="before")
    @classmethod
    def restrict_severity(cls, v: Any) -> SeverityLevel | None:
        return None if v is None else coerce_severity(v)

    def changes(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class RecommendationUpdate(BaseModel):
    """Partial user edit of a treatment recommendation."""

    treatment_steps: list[str] | None = None
    precautionary_measures: list[str] | None = None
    products_recommended: list[str] | None = None
    expert_tips: list[str] | None = None
    timeline: str | None = None

    @field_validator(
        "treatment_steps", "precautionary_measures", "products_recommended", "expert_tips", mode="before"
    )
    @classmethod
    def ensure_list(cls, v: Any) -> list[str] | None:
        return None if v is None else clean_list(v)

    @field_validator("timeline", mode="before")
    @classmethod
    def clean_timeline(cls, v: Any) -> str | None:
        if v is None:
            return None
        return clean_text(v, SanitizeLimits.MAX_TIMELINE_LENGTH) or None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class AnalysisStats(BaseModel):
    """Dashboard summary of a user's analyses."""

    total_scans: int = 0
    scans_this_month: int = 0
    healthy_percentage: int = 0
    issues_count: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    by_severity: dict[str, int] = Field(default_factory=dict)
    recent: list[CropAnalysis] = Field(default_factory=list)
