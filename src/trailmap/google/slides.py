"""Digital Trailmap workbook: a Google Slides deck built from a template.

The template presentation is copied, then:

1. persona / journey / sitemap template slides are located by keyword;
2. each persona (and its journey) gets a duplicate of the template slide
   with placeholder replacements scoped to that duplicate's page id, so one
   persona's text never lands on another's slide;
3. a template slide is deleted once its last duplicate has been made;
4. the first sitemap slide is kept and filled, other sitemap slides removed;
5. deck-wide placeholders (business overview, brief, marketing plan) are
   replaced globally in batches of 50 requests.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any

import structlog
from pydantic import BaseModel

from src.trailmap.generation.schemas import (
    CustomerJourney,
    CustomerPersona,
    ProjectResources,
    Sitemap,
)
from src.trailmap.google.auth import GoogleServiceFactory, execute
from src.trailmap.google.drive import GoogleDriveService

logger = structlog.get_logger(__name__)

SERVICE_NAME = "google_slides"
PRESENTATION_URL = "https://docs.google.com/presentation/d/{presentation_id}"
GLOBAL_BATCH_SIZE = 50
JOURNEY_STAGES = ("awareness", "consideration", "decision", "loyalty")
BULLET_JOIN = "\n• "


class TemplateSlides(BaseModel):
    persona: str | None = None
    journey: str | None = None
    sitemap: str | None = None


class CreatedPresentation(BaseModel):
    presentation_id: str
    presentation_url: str


# ── Template discovery ───────────────────────────────────────────────────────


def _slide_text(slide: dict[str, Any]) -> str:
    return json.dumps(slide).lower()


def _is_sitemap(text: str) -> bool:
    return "sitemap" in text or "site map" in text


def find_template_slides(presentation: dict[str, Any]) -> TemplateSlides:
    """First slide mentioning each keyword becomes that kind's template."""
    found = TemplateSlides()
    for slide in presentation.get("slides", []):
        text = _slide_text(slide)
        slide_id = slide["objectId"]
        if "customer persona" in text and found.persona is None:
            found.persona = slide_id
        elif "customer journey" in text and found.journey is None:
            found.journey = slide_id
        elif _is_sitemap(text) and found.sitemap is None:
            found.sitemap = slide_id
    return found


# ── Replacement maps ─────────────────────────────────────────────────────────


def _bulleted(items: Sequence[str]) -> str:
    return BULLET_JOIN.join(items)


def persona_replacements(persona: CustomerPersona) -> dict[str, str]:
    return {
        "CUSTOMER_PERSONA": persona.name,
        "CUSTOMER_AGE": str(persona.age) if persona.age else "",
        "CUSTOMER_LOCATION": persona.location,
        "CUSTOMER_DESCRIPTION": persona.description,
        "CUSTOMER_GOALS": _bulleted(persona.goals),
        "CUSTOMER_PAIN_POINTS": _bulleted(persona.pain_points),
        "CUSTOMER_PREFERENCES": persona.communication_preferences,
        "CUSTOMER_INFLUENCERS": _bulleted(persona.influencers),
        "CUSTOMER_HESITATIONS": _bulleted(persona.hesitations),
        "CUSTOMER_TRANSFORMATION": persona.transformation,
    }


def journey_replacements(journey: CustomerJourney, persona: CustomerPersona) -> dict[str, str]:
    """Placeholders for all four stages; missing stages blank their placeholders."""
    replacements: dict[str, str] = {}
    for stage in JOURNEY_STAGES:
        data = journey.stages.get(stage)
        key = stage.upper()
        replacements[f"TOUCH_{key}"] = _bulleted(data.touchpoints) if data else ""
        replacements[f"ACTION_{key}"] = _bulleted(data.actions) if data else ""
        replacements[f"EMOTION_{key}"] = data.emotions.strip() if data else ""
        replacements[f"OPPORTUNITY_{key}"] = _bulleted(data.opportunities) if data else ""
    if persona.name:
        replacements["CUSTOMER_PERSONA"] = persona.name
    return replacements


def sitemap_replacements(sitemap: Sitemap) -> dict[str, str]:
    return {
        "PRIMARY_PAGES": _bulleted(sitemap.primary_pages),
        "SECONDARY_PAGES": _bulleted(sitemap.secondary_pages),
    }


def replace_requests(
    replacements: Mapping[str, str],
    page_object_ids: Sequence[str] | None = None,
) -> list[dict[str, Any]]:
    """replaceAllText requests, optionally limited to the given pages."""
    requests = []
    for placeholder, value in replacements.items():
        request: dict[str, Any] = {
            "containsText": {"text": placeholder, "matchCase": True},
            "replaceText": value or "",
        }
        if page_object_ids:
            request["pageObjectIds"] = list(page_object_ids)
        requests.append({"replaceAllText": request})
    return requests


# ── Service ──────────────────────────────────────────────────────────────────


class GoogleSlidesService:
    """Materialises the trailmap workbook from the template presentation.

    Args:
        services: Google API service factory.
        drive: Drive helper used to copy the template.
        template_presentation_id: Presentation copied for every workbook.
    """

    def __init__(
        self,
        services: GoogleServiceFactory,
        drive: GoogleDriveService,
        template_presentation_id: str,
    ) -> None:
        self._services = services
        self._drive = drive
        self._template_id = template_presentation_id

    async def _batch(self, slides: Any, presentation_id: str, requests: list[dict[str, Any]]) -> dict[str, Any]:
        return await execute(
            slides.presentations().batchUpdate(
                presentationId=presentation_id,
                body={"requests": requests},
            ),
            SERVICE_NAME,
        )

    async def _get(self, slides: Any, presentation_id: str) -> dict[str, Any]:
        return await execute(
            slides.presentations().get(presentationId=presentation_id),
            SERVICE_NAME,
        )

    async def _duplicate(self, slides: Any, presentation_id: str, template_id: str) -> str:
        response = await self._batch(
            slides,
            presentation_id,
            [{"duplicateObject": {"objectId": template_id}}],
        )
        return response["replies"][0]["duplicateObject"]["objectId"]

    async def _fill_duplicate(
        self,
        slides: Any,
        presentation_id: str,
        template_id: str,
        replacements: Mapping[str, str],
    ) -> str:
        slide_id = await self._duplicate(slides, presentation_id, template_id)
        await self._batch(slides, presentation_id, replace_requests(replacements, [slide_id]))
        return slide_id

    async def _delete(self, slides: Any, presentation_id: str, object_ids: Sequence[str]) -> None:
        if object_ids:
            await self._batch(
                slides,
                presentation_id,
                [{"deleteObject": {"objectId": object_id}} for object_id in object_ids],
            )

    async def _apply_resources(
        self,
        slides: Any,
        presentation_id: str,
        resources: ProjectResources,
        templates: TemplateSlides,
    ) -> None:
        used_persona = False
        used_journey = False

        for persona in resources.customer_personas:
            if templates.persona:
                slide_id = await self._fill_duplicate(
                    slides, presentation_id, templates.persona, persona_replacements(persona),
                )
                used_persona = True
                logger.info(
                    "google_slides.persona_slide_filled",
                    persona_number=persona.persona_number,
                    slide_id=slide_id,
                )

            journey = resources.journey_for(persona)
            if templates.journey and journey is not None and journey.stages:
                slide_id = await self._fill_duplicate(
                    slides, presentation_id, templates.journey, journey_replacements(journey, persona),
                )
                used_journey = True
                logger.info(
                    "google_slides.journey_slide_filled",
                    persona_number=persona.persona_number,
                    slide_id=slide_id,
                )

        # Templates go only once every duplicate has been taken from them
        spent = []
        if used_persona:
            spent.append(templates.persona)
        if used_journey:
            spent.append(templates.journey)
        await self._delete(slides, presentation_id, spent)

        if templates.sitemap and resources.sitemap is not None:
            presentation = await self._get(slides, presentation_id)
            extra_sitemaps = [
                slide["objectId"]
                for slide in presentation.get("slides", [])
                if slide["objectId"] != templates.sitemap and _is_sitemap(_slide_text(slide))
            ]
            await self._delete(slides, presentation_id, extra_sitemaps)
            await self._batch(
                slides,
                presentation_id,
                replace_requests(sitemap_replacements(resources.sitemap), [templates.sitemap]),
            )

    async def create_workbook(
        self,
        meeting_name: str,
        resources: ProjectResources,
        content: Mapping[str, str],
        folder_id: str | None = None,
    ) -> CreatedPresentation:
        """Copy the template and fill it.

        Args:
            meeting_name: Used in the file name.
            resources: Personas, journeys and sitemap.
            content: Deck-wide placeholder -> text map.
            folder_id: Drive folder for the copy; falls back to the
                template's location when it cannot be accessed.
        """
        if not self._template_id:
            raise ValueError("TRAILMAP_TEMPLATE_PRESENTATION_ID is not configured")

        parent_id = None
        if folder_id and await self._drive.folder_accessible(folder_id):
            parent_id = folder_id

        presentation_id = await self._drive.copy_file(
            self._template_id,
            f"{meeting_name} - Digital Trailmap Workbook",
            parent_id,
        )
        slides = await self._services.slides()

        templates = find_template_slides(await self._get(slides, presentation_id))
        logger.info(
            "google_slides.templates_found",
            presentation_id=presentation_id,
            persona=templates.persona,
            journey=templates.journey,
            sitemap=templates.sitemap,
            personas=len(resources.customer_personas),
        )

        await self._apply_resources(slides, presentation_id, resources, templates)

        global_requests = replace_requests(content)
        for start in range(0, len(global_requests), GLOBAL_BATCH_SIZE):
            await self._batch(
                slides,
                presentation_id,
                global_requests[start:start + GLOBAL_BATCH_SIZE],
            )

        logger.info(
            "google_slides.workbook_created",
            presentation_id=presentation_id,
            global_replacements=len(global_requests),
        )
        return CreatedPresentation(
            presentation_id=presentation_id,
            presentation_url=PRESENTATION_URL.format(presentation_id=presentation_id),
        )
