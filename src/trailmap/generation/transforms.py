"""Transform catalogue: one text-generation call per pipeline transform.

Each transform is a thin call to the LLM collaborator with its own system
prompt and (max_tokens, temperature). Transforms hold no state, so the
orchestrator can run independent ones concurrently.
"""

from __future__ import annotations

import json
import re
from typing import Any

import structlog

from src.trailmap.generation import prompts
from src.trailmap.generation.llm import LLMService
from src.trailmap.generation.schemas import ProjectResources

logger = structlog.get_logger(__name__)

_HTML_FENCE = re.compile(r"^```(?:html)?\s*|\s*```$", re.IGNORECASE)


def strip_html_fence(content: str) -> str:
    """Drop a ```html fence some models wrap documents in."""
    return _HTML_FENCE.sub("", content.strip()).strip()


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return "\n• ".join(_stringify(item) for item in value)
    return json.dumps(value, ensure_ascii=False)


class Transforms:
    """Pipeline transforms backed by an LLMService."""

    def __init__(self, llm: LLMService) -> None:
        self._llm = llm

    # ── Strategy report ──────────────────────────────────────────────────

    async def business_overview(self, transcript: str) -> str:
        return await self._llm.generate(
            prompts.BUSINESS_OVERVIEW,
            f"transcript : {transcript}",
            max_tokens=2000,
            temperature=0.7,
        )

    async def project_brief(self, transcript: str) -> dict[str, Any]:
        return await self._llm.generate_json(
            prompts.PROJECT_BRIEF,
            f"transcript : {transcript}",
            max_tokens=4000,
            temperature=0.7,
        )

    async def marketing_plan(self, transcript: str) -> str:
        return await self._llm.generate(
            prompts.MARKETING_PLAN,
            f"transcript : {transcript}",
            max_tokens=3000,
            temperature=0.7,
        )

    async def project_resources(self, transcript: str) -> ProjectResources:
        data = await self._llm.generate_json(
            prompts.PROJECT_RESOURCES,
            f"transcript : {transcript}",
            max_tokens=4000,
            temperature=0.7,
        )
        resources = ProjectResources.model_validate(data)
        logger.info(
            "transforms.project_resources",
            personas=len(resources.customer_personas),
            journeys=len(resources.customer_journeys),
            has_sitemap=resources.sitemap is not None,
        )
        return resources

    async def html_document(self, transcript: str) -> str:
        content = await self._llm.generate(
            prompts.HTML_DOCUMENT,
            f"This is the transcript: - {transcript}",
            max_tokens=8000,
            temperature=0.7,
            model="reasoning",
        )
        return strip_html_fence(content)

    async def slides_content(
        self,
        business_overview: str,
        project_brief: dict[str, Any],
        marketing_plan: str,
    ) -> dict[str, str]:
        """Deck-wide placeholder -> replacement text."""
        data = await self._llm.generate_json(
            prompts.SLIDES_CONTENT,
            (
                f"business overview : {json.dumps(business_overview)}\n"
                f"project brief : {json.dumps(project_brief)}\n"
                f"1 page marketing plan : {json.dumps(marketing_plan)}"
            ),
            max_tokens=4000,
            temperature=0.7,
        )
        return {str(key): _stringify(value) for key, value in data.items()}

    # ── Action items ─────────────────────────────────────────────────────

    async def meeting_summary(self, transcript: str) -> str:
        return await self._llm.generate(
            prompts.MEETING_SUMMARY,
            f"Meeting Transcript: {transcript}",
            max_tokens=500,
            temperature=0.7,
        )

    async def sentiment(self, transcript: str) -> str:
        return await self._llm.generate(
            prompts.SENTIMENT,
            f"meeting transcription : {transcript}",
            max_tokens=500,
            temperature=0.7,
        )

    async def extract_action_items(self, transcript: str, meeting_link: str) -> str:
        return await self._llm.generate(
            prompts.ACTION_ITEM_EXTRACTION,
            f"meeting transcription : {transcript}\n\nmeeting link : {meeting_link}",
            max_tokens=4000,
            temperature=0.7,
        )

    async def consolidate_action_items(self, first: str, second: str) -> str:
        return await self._llm.generate(
            prompts.ACTION_ITEM_CONSOLIDATION,
            f"Action Items from Source 1:\n{first}\n\n---\n\nAction Items from Source 2:\n{second}",
            max_tokens=4000,
            temperature=0.7,
        )

    async def map_tasks(self, consolidated: str, transcript: str, meeting_link: str) -> str:
        return await self._llm.generate(
            prompts.TASK_MAPPING,
            (
                f"Consolidated Action Items:\n{consolidated}\n\n"
                f"Original Meeting Transcript:\n{transcript}\n\n"
                f"Meeting Link: {meeting_link}"
            ),
            max_tokens=4000,
            temperature=0.7,
        )

    async def refine_action_items(self, task_mapping: str) -> str:
        return await self._llm.generate(
            prompts.ACTION_ITEM_REFINEMENT,
            task_mapping,
            max_tokens=4000,
            temperature=0.7,
        )

    async def final_consolidation(self, refined: str) -> str:
        return await self._llm.generate(
            prompts.FINAL_CONSOLIDATION,
            refined,
            max_tokens=4000,
            temperature=0.7,
        )

    async def action_items_html(
        self,
        meeting_title: str,
        summary: str,
        sentiment: str,
        action_items: str,
        meeting_link: str,
    ) -> str:
        content = await self._llm.generate(
            prompts.ACTION_ITEMS_HTML,
            (
                f"Meeting Title : {meeting_title}\n\n"
                f"Meeting Summary : {summary}\n\n"
                f"Action Items Table:\n{action_items}\n\n"
                f"Meeting Link : {meeting_link}\n\n"
                f"Meeting Sentiments : {sentiment}"
            ),
            max_tokens=8000,
            temperature=0.1,
            model="reasoning",
        )
        return strip_html_fence(content)
