"""
Gemini API Client for shot planning.
Uses the google.genai package with a JSON response schema to turn a property
description into an ordered list of labelled render prompts.
"""

from google import genai
from google.genai import types
from pydantic import ValidationError
from typing import List, Optional
import json
from loguru import logger
from dreamhome.config import settings
from dreamhome.llm.prompts import build_planning_prompt
from dreamhome.model.generation_model import ImagePlan, clamp_shot_count
from dreamhome.services.errors import PlanningFailed


PLAN_RESPONSE_SCHEMA = types.Schema(
    type=types.Type.ARRAY,
    items=types.Schema(
        type=types.Type.OBJECT,
        properties={
            "label": types.Schema(type=types.Type.STRING, description="Short label in Russian"),
            "prompt": types.Schema(
                type=types.Type.STRING,
                description="Detailed image generation prompt in English, styled according to property class",
            ),
        },
        required=["label", "prompt"],
    ),
)


class GeminiClient:
    """Wrapper for Google Gemini API with structured shot planning."""

    _instance: Optional['GeminiClient'] = None

    def __init__(self, client: Optional[genai.Client] = None):
        """Initialize Gemini client with API key."""
        if client is None:
            if not settings.GEMINI_API_KEY:
                raise ValueError("GEMINI_API_KEY not configured in settings")
            client = genai.Client(api_key=settings.GEMINI_API_KEY)

        self.client = client
        self.model = settings.GEMINI_MODEL
        logger.info(f"Gemini client initialized with model: {self.model}")

    def _parse_plans(self, text: Optional[str], count: int) -> List[ImagePlan]:
        if not text:
            raise PlanningFailed()

        try:
            raw = json.loads(text)
        except ValueError as e:
            logger.error(f"Planner returned invalid JSON: {e}")
            raise PlanningFailed() from e

        if not isinstance(raw, list):
            logger.error(f"Planner returned {type(raw).__name__}, expected a list")
            raise PlanningFailed()

        try:
            plans = [ImagePlan.model_validate(entry) for entry in raw[:count]]
        except ValidationError as e:
            logger.error(f"Planner returned malformed plan entries: {e}")
            raise PlanningFailed() from e

        if len(plans) < count:
            logger.error(f"Planner returned {len(plans)} plan(s), expected {count}")
            raise PlanningFailed()

        return plans

    async def plan_prompts(self, description: str, count: int = 5) -> List[ImagePlan]:
        """
        Generate distinct image prompts for a property description.

        Args:
            description: The real estate description (Russian)
            count: Number of shots, clamped to 1..5

        Returns:
            Exactly ``count`` plans, in shot catalog order

        Raises:
            PlanningFailed: Upstream error or no usable structured result
        """
        image_count = clamp_shot_count(count)
        prompt = build_planning_prompt(description, image_count)

        try:
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents=prompt,
                config=types.GenerateContentConfig(
                    response_mime_type="application/json",
                    response_schema=PLAN_RESPONSE_SCHEMA,
                ),
            )
        except Exception as e:
            logger.error(f"Error generating prompts: {e}")
            raise PlanningFailed() from e

        plans = self._parse_plans(response.text, image_count)
        logger.info(f"Planned {len(plans)} shot(s): {[plan.label for plan in plans]}")
        return plans


def get_gemini_client() -> GeminiClient:
    """Get or create the Gemini client singleton."""
    if GeminiClient._instance is None:
        GeminiClient._instance = GeminiClient()
    return GeminiClient._instance
