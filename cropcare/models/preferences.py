"""User preference data models."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator


class NotificationSettings(BaseModel):
    """Per-channel notification switches."""

    push: bool = True
    email: bool = True
    sms: bool = False
    weather_alerts: bool = True
    disease_alerts: bool = True

    @classmethod
    def parse(cls, raw: Any) -> "NotificationSettings":
        """Read stored settings, defaulting every field that is missing or not a boolean."""
        if not isinstance(raw, dict):
            return cls()
        return cls(**{name: value for name, value in raw.items() if name in cls.model_fields and isinstance(value, bool)})

    def merge(self, partial: dict[str, Any] | None) -> "NotificationSettings":
        """Overlay a partial update; unknown keys and non-boolean values are ignored."""
        if not partial:
            return self.model_copy()
        updates = {name: value for name, value in partial.items() if name in self.model_fields and isinstance(value, bool)}
        return self.model_copy(update=updates)


class UserPreferences(BaseModel):
    """Preferences row for one user."""

    id: str | None = None
    user_id: str
    language: str = "en"
    location: dict[str, Any] | None = None
    preferred_crops: list[str] = Field(default_factory=list)
    notification_settings: NotificationSettings = Field(default_factory=NotificationSettings)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("preferred_crops", mode="before")
    @classmethod
    def ensure_list(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, list):
            return [str(item) for item in v]
        return []

    @field_validator("notification_settings", mode="before")
    @classmethod
    def parse_settings(cls, v: Any) -> NotificationSettings:
        if isinstance(v, NotificationSettings):
            return v
        return NotificationSettings.parse(v)


class PreferencesUpdate(BaseModel):
    """Partial update; fields left as None are not touched."""

    language: str | None = None
    location: dict[str, Any] | None = None
    preferred_crops: list[str] | None = Field(default=None, max_length=20)
    notification_settings: dict[str, Any] | None = None
