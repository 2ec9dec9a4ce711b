"""
Finance Extraction Agent

DESIGN DECISION: The model is constrained with a JSON response schema and a
near-greedy decoding policy (low temperature, top_k=1, small token budget)
so the same transcript gives the same answer from one run to the next.

CRITICAL BOUNDARIES:
- CAN: Map free text to type, category, item, amount, currency, merchant
- CANNOT: Decide the event date (stamped from the capture start time)
- CANNOT: Persist anything; its output is a proposal for the validator

The LLM is a TRANSLATOR, not an ORACLE.
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Optional

import google.generativeai as genai
import structlog
from pydantic import ValidationError

from finance_capture.config import GeminiSettings, get_settings
from finance_capture.models.event import ExtractionRequest, FinanceEventDTO

logger = structlog.get_logger(__name__)


class ExtractionError(Exception):
    """The extraction service failed to produce a usable record."""
    pass


class ExtractionServiceInterface(ABC):
    """Maps an extraction request to a structured record."""

    @abstractmethod
    async def extract(self, request: ExtractionRequest) -> FinanceEventDTO:
        """
        Raises:
            ExtractionError: On any failure (transport, refusal, malformed output)
        """
        pass


class FinanceExtractionAgent(ExtractionServiceInterface):
    """
    Gemini-backed extraction service.

    No retries and no timeout: a failed call is terminal for the session.
    """

    def __init__(
        self,
        settings: Optional[GeminiSettings] = None,
        model: Optional[Any] = None,
    ):
        self._settings = settings or get_settings().gemini
        self._model = model
        self._instructions: Optional[str] = None

    def _get_model(self, instructions: str):
        """Create the Gemini model, bound to the extraction instructions."""
        if self._model is None or (
            self._instructions is not None and self._instructions != instructions
        ):
            genai.configure(api_key=self._settings.api_key)
            self._model = genai.GenerativeModel(
                model_name=self._settings.model_name,
                system_instruction=instructions,
            )
            self._instructions = instructions
        return self._model

    def _generation_config(self, request: ExtractionRequest) -> dict:
        return {
            "candidate_count": 1,
            "temperature": self._settings.temperature,
            "top_k": self._settings.top_k,
            "max_output_tokens": self._settings.max_tokens,
            "response_mime_type": "application/json",
            "response_schema": request.response_schema,
        }

    async def extract(self, request: ExtractionRequest) -> FinanceEventDTO:
        """Run one extraction call and parse the structured response."""
        model = self._get_model(request.instructions)

        try:
            response = await model.generate_content_async(
                request.prompt,
                generation_config=self._generation_config(request),
            )
            # .text raises ValueError when the response was blocked or empty
            text = response.text.strip()
            data = json.loads(text)
            if not isinstance(data, dict):
                raise ValueError(f"expected a JSON object, got {type(data).__name__}")
            dto = FinanceEventDTO.model_validate(data)
        except (ValueError, ValidationError) as e:
            logger.warning("extraction_output_rejected", error=str(e))
            raise ExtractionError(f"Extraction failed: {e}") from e
        except Exception as e:
            logger.error("extraction_call_failed", error=str(e))
            raise ExtractionError(f"Extraction failed: {e}") from e

        logger.info(
            "extraction_completed",
            extraction_id=str(dto.extraction_id),
            type=dto.type,
            category=dto.category,
        )
        return dto
