"""Structured outputs of the JSON-mode transforms.

Models are lenient: every field has a default and unknown keys are kept,
since the text-generation collaborator does not always honour the exact
shape it was asked for.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="allow")


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    return [str(item) for item in value if item is not None]


class CustomerPersona(_Lenient):
    persona_number: int = 0
    name: str = ""
    age: int | str | None = None
    location: str = ""
    description: str = ""
    goals: list[str] = Field(default_factory=list)
    pain_points: list[str] = Field(default_factory=list)
    communication_preferences: str = ""
    hesitations: list[str] = Field(default_factory=list)
    transformation: str = ""
    influencers: list[str] = Field(default_factory=list)

    @field_validator("goals", "pain_points", "hesitations", "influencers", mode="before")
    @classmethod
    def _coerce_list(cls, value: Any) -> list[str]:
        return _as_list(value)


class JourneyStage(_Lenient):
    touchpoints: list[str] = Field(default_factory=list)
    actions: list[str] = Field(default_factory=list)
    emotions: str = ""
    opportunities: list[str] = Field(default_factory=list)

    @field_validator("touchpoints", "actions", "opportunities", mode="before")
    @classmethod
    def _coerce_list(cls, value: Any) -> list[str]:
        return _as_list(value)


class CustomerJourney(_Lenient):
    persona_number: int = 0
    persona_name: str = ""
    stages: dict[str, JourneyStage] = Field(default_factory=dict)


class Sitemap(_Lenient):
    primary_pages: list[str] = Field(default_factory=list)
    secondary_pages: list[str] = Field(default_factory=list)
    sub_pages: dict[str, list[str]] = Field(default_factory=dict)


class ProjectResources(_Lenient):
    """Personas, their journeys and a website sitemap."""

    customer_personas: list[CustomerPersona] = Field(default_factory=list)
    customer_journeys: list[CustomerJourney] = Field(default_factory=list)
    sitemap: Sitemap | None = None

    def journey_for(self, persona: CustomerPersona) -> CustomerJourney | None:
        return next(
            (j for j in self.customer_journeys if j.persona_number == persona.persona_number),
            None,
        )
