"""
GeminiClient — Async wrapper around Google Generative AI SDK.

Supports two runtime modes (set via AI_MOCK_MODE env var):
  - MOCK mode (default): returns deterministic canned responses.
    Use for tests and local dev without API keys.
  - REAL mode: makes actual Gemini API calls.
    Requires GEMINI_API_KEY to be set.

The canned responses are shaped like real Gemini output (markdown
fences, the odd trailing comma) so the JSON repair path runs in mock
mode too.

Extension pattern: add new mock response keys to _MOCK_RESPONSES and
reference them in generate() calls via the response_key parameter.
"""

import logging
import os
from typing import Any

# Python 3.14 + protobuf native extension can fail when importing Gemini deps.
# Keep this as default-only so users can still override it explicitly.
os.environ.setdefault("PROTOCOL_BUFFERS_PYTHON_IMPLEMENTATION", "python")

import google.generativeai as genai

from travelai.core.config import settings

logger = logging.getLogger(__name__)

# Sampling settings used for every real call
_GENERATION_CONFIG: dict[str, Any] = {
    "temperature": 0.7,
    "top_p": 0.8,
    "top_k": 40,
    "max_output_tokens": 2048,
}

# Canned responses for mock mode.
# Keys map to response_key arguments in generate() calls.
_MOCK_RESPONSES: dict[str, str] = {
    "default": (
        "[MOCK] This is a placeholder Gemini response. "
        "Set AI_MOCK_MODE=false and provide GEMINI_API_KEY for real responses."
    ),
    "destination_guide": (
        "```json\n"
        "{\n"
        '  "attractions": ["Old Town walking tour", "Harbour sunset cruise", "Central food market"],\n'
        '  "best_time": "Late spring and early autumn, when days are warm and crowds are thinner.",\n'
        '  "transportation": ["Metro day pass", "Airport express train", "Bike share"],\n'
        '  "accommodation": [\n'
        '    {"name": "Boutique guesthouse", "price_range": "₹4,500 - ₹7,000 per night"},\n'
        '    {"name": "City-centre hotel", "price_range": "₹8,000 - ₹12,000 per night"},\n'
        "  ],\n"
        '  "weather": "[MOCK] Mild, 18-24°C, occasional showers.",\n'
        '  "estimated_budget": "₹6,000 - ₹9,000 per day",\n'
        '  "personalized_suggestions": ["Book museum tickets online", "Try the night market", "Carry a light rain jacket"]\n'
        "}\n"
        "```"
    ),
    "packing_list": (
        "Here is your packing list:\n"
        "```json\n"
        '{"items": [\n'
        '  {"category": "clothing", "name": "T-shirts", "quantity": 4},\n'
        '  {"category": "clothing", "name": "Light jacket", "quantity": 1},\n'
        '  {"category": "toiletries", "name": "Toothbrush", "quantity": 1},\n'
        '  {"category": "electronics", "name": "Universal adapter", "quantity": 1},\n'
        '  {"category": "documents", "name": "Passport"},\n'
        '  {"category": "medicine", "name": "Travel sickness tablets", "quantity": 1},\n'
        '  {"category": "snacks", "name": "Trail mix", "quantity": 2},\n'
        "]}\n"
        "```"
    ),
}


class GeminiClient:
    """
    Central Gemini interface for the TravelAI backend.

    One place for model selection, generation config, error logging and
    mock injection. Don't instantiate per-request; use the module-level
    `gemini_client` singleton.
    """

    def __init__(self) -> None:
        self.mock_mode = settings.ai_mock_mode
        self.model_name = settings.gemini_model

        if not self.mock_mode:
            if not settings.gemini_api_key:
                logger.warning(
                    "GEMINI_API_KEY not set, falling back to mock mode. "
                    "Set AI_MOCK_MODE=true to silence this warning."
                )
                self.mock_mode = True
            else:
                genai.configure(api_key=settings.gemini_api_key)
                self._genai = genai

        if self.mock_mode:
            logger.info("GeminiClient initialised in MOCK mode")
        else:
            logger.info("GeminiClient initialised in REAL mode (model: %s)", self.model_name)

    async def generate(self, prompt: str, response_key: str = "default", **generation_kwargs: Any) -> str:
        """
        Generate text from the configured Gemini model.

        Args:
            prompt:             The full prompt string.
            response_key:       Mock response key (ignored in real mode).
            **generation_kwargs: Passed through to GenerativeModel.generate_content_async().

        Returns:
            Generated text string.

        Raises:
            Exception: Propagates Gemini SDK errors in real mode.
        """
        if self.mock_mode:
            return _MOCK_RESPONSES.get(response_key, _MOCK_RESPONSES["default"])

        try:
            gemini_model = self._genai.GenerativeModel(
                self.model_name, generation_config=_GENERATION_CONFIG
            )
            response = await gemini_model.generate_content_async(prompt, **generation_kwargs)
            return response.text
        except Exception as exc:
            logger.error("Gemini API error (model=%s): %s", self.model_name, exc)
            raise


# Module-level singleton: import and use this everywhere
gemini_client = GeminiClient()
