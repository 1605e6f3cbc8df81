from __future__ import annotations

import logging
from typing import Any, TypeVar

from pydantic import BaseModel, Field, ValidationError

from medassist_core.data_uri import parse_data_uri
from medassist_core.errors import GenerationError

from .http_utils import extract_json_object

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

HEALTH_INPUT_INSTRUCTION = (
    "You are a helpful AI assistant providing information related to health symptoms and conditions. "
    "Analyze the user's input, including any provided image, and provide a summary of potential "
    "conditions and suggest tests to further investigate these conditions. "
    'Respond with a JSON object: {"summary": string, "suggestedTests": string}.'
)

IMAGE_ANALYSIS_INSTRUCTION = (
    "You are a medical image analysis expert. Analyze the provided image and identify potential medical "
    "conditions that might be indicated in the image. Provide a list of potential conditions with a brief "
    "explanation for each. Respond with a JSON object: "
    '{"potentialConditions": [{"condition": string, "explanation": string}]}.'
)

REPORT_SUMMARY_INSTRUCTION = (
    "You are an expert medical summarizer. You will be given a medical report; summarize the key findings "
    'in the report. Respond with a JSON object: {"summary": string}.'
)


class HealthInputAnalysis(BaseModel):
    summary: str
    suggestedTests: str


class PotentialCondition(BaseModel):
    condition: str
    explanation: str


class ImageAnalysis(BaseModel):
    potentialConditions: list[PotentialCondition] = Field(default_factory=list)


class ReportSummary(BaseModel):
    summary: str


class AnalysisFlows:
    """Single-shot structured flows layered over the generative backend."""

    def __init__(self, genai: Any) -> None:
        self.genai = genai

    async def _run(self, parts: list[dict[str, Any]], output_model: type[ModelT], flow_name: str) -> ModelT:
        response = await self.genai.generate(parts, json_output=True)
        payload = extract_json_object(response.text)
        if payload is None:
            logger.warning("%s returned non-JSON output", flow_name)
            raise GenerationError(f"{flow_name} returned an unreadable response.")
        try:
            return output_model.model_validate(payload)
        except ValidationError as exc:
            raise GenerationError(f"{flow_name} returned an unexpected response shape.") from exc

    async def analyze_health_input(self, health_input: str, photo_data_uri: str | None = None) -> HealthInputAnalysis:
        parts: list[dict[str, Any]] = [{"text": f"{HEALTH_INPUT_INSTRUCTION}\n\nInput: {health_input.strip()}"}]
        if photo_data_uri:
            parse_data_uri(photo_data_uri, expected_prefix="image/")
            parts.append({"media": {"url": photo_data_uri}})
        return await self._run(parts, HealthInputAnalysis, "analyzeHealthInput")

    async def analyze_uploaded_image(self, photo_data_uri: str) -> ImageAnalysis:
        parse_data_uri(photo_data_uri, expected_prefix="image/")
        parts = [
            {"text": f"{IMAGE_ANALYSIS_INSTRUCTION}\n\nAnalyze the following image:"},
            {"media": {"url": photo_data_uri}},
        ]
        return await self._run(parts, ImageAnalysis, "analyzeUploadedImage")

    async def summarize_medical_report(self, report_data_uri: str) -> ReportSummary:
        parse_data_uri(report_data_uri)
        parts = [
            {"text": f"{REPORT_SUMMARY_INSTRUCTION}\n\nMedical Report:"},
            {"media": {"url": report_data_uri}},
        ]
        return await self._run(parts, ReportSummary, "summarizeMedicalReport")
