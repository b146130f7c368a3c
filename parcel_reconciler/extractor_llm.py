"""
LLM-based extraction of tax-card fields using OpenAI structured output.

The LLM reads the scanned PDF and returns one flat JSON object. We never
trust its formatting: code fences and surrounding prose are stripped,
the object is validated into ExtractedFields, and any missing key
becomes an empty string.

Design:
  - One call per document, no retries here (the engine owns retry policy)
  - JSON mode requested; the parser still tolerates fenced output
  - Every failure surfaces as ExtractionFailure, never as None
"""

from __future__ import annotations

import base64
import json
import logging
from pathlib import Path
from typing import Protocol

from openai import OpenAI, OpenAIError
from pydantic import ValidationError

from .exceptions import ExtractionFailure
from .models import ExtractedFields

logger = logging.getLogger(__name__)


# ─── System Prompt ───────────────────────────────────────────────────

SYSTEM_PROMPT = """\
You are a data extractor specializing in county property tax cards and
assessment cards. Read the attached document and return ONE JSON object.

CRITICAL RULES:
1. Extract EXACTLY what is printed. Do not correct or infer values.
2. If a field is not on the card, use an empty string "". Never null.
3. Return only the JSON object. No markdown, no explanation.

Return a JSON object with these exact keys:
{
    "apn_raw": "parcel number exactly as printed",
    "apn": "parcel number, digits only",
    "assessed_owner": "owner of record for assessment",
    "legal_owner": "legal owner if shown separately",
    "county": "county name without the word County",
    "state": "2-letter state code",
    "acres": "acreage as a plain number, no units",
    "brief_legal": "short legal description, e.g. lot/block/section",
    "legal_description": "full legal description",
    "map_parcel_no": "map and parcel number",
    "address": "property (situs) address"
}
"""

USER_PROMPT = "Extract the tax card fields from this document ({file_name})."


class Extractor(Protocol):
    """Anything that can turn document bytes into extracted fields."""

    def extract(self, data: bytes, file_name: str) -> ExtractedFields: ...


# ─── Client ──────────────────────────────────────────────────────────


class ExtractionClient:
    """Stateless wrapper around one chat-completion call per document.

    Usage:
        client = ExtractionClient(api_key="sk-...")
        fields = client.extract(pdf_bytes, "card.pdf")
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-5",
        timeout: float = 120.0,
        client: OpenAI | None = None,
    ):
        self.model = model
        # max_retries=0: retrying is the engine's decision, not ours
        self._client = client or OpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    def extract(self, data: bytes, file_name: str) -> ExtractedFields:
        """Send one document to the service and parse its answer.

        Raises:
            ExtractionFailure: service unreachable, non-2xx, or unusable payload.
        """
        encoded = base64.b64encode(data).decode("ascii")
        try:
            response = self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "file",
                                "file": {
                                    "filename": Path(file_name).name,
                                    "file_data": f"data:application/pdf;base64,{encoded}",
                                },
                            },
                            {"type": "text", "text": USER_PROMPT.format(file_name=file_name)},
                        ],
                    },
                ],
                response_format={"type": "json_object"},
            )
        except OpenAIError as exc:
            logger.error("Extraction call failed for %s: %s", file_name, exc)
            raise ExtractionFailure(
                f"Extraction service error: {exc}",
                details={"file_name": file_name, "error": type(exc).__name__},
            ) from exc

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ExtractionFailure(
                "Extraction service returned empty content",
                details={"file_name": file_name},
            )

        fields = parse_extraction(content)
        logger.info("Extraction succeeded for %s (APN %r)", file_name, fields.apn or fields.apn_raw)
        return fields


# ─── Payload Parsing ─────────────────────────────────────────────────


def strip_json_markup(text: str) -> str:
    """Remove code fences and any prose around the outermost JSON object."""
    s = text.strip()
    if "```" in s:
        # ```json\n{...}\n``` or ```\n{...}\n```
        inner = s.split("```", 2)[1]
        if inner.lower().startswith("json"):
            inner = inner[4:]
        s = inner.strip()
    start = s.find("{")
    end = s.rfind("}")
    if start != -1 and end > start:
        s = s[start : end + 1]
    return s


def parse_extraction(text: str) -> ExtractedFields:
    """Parse the service's reply into ExtractedFields.

    Raises:
        ExtractionFailure: when the body is not a JSON object.
    """
    cleaned = strip_json_markup(text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise ExtractionFailure(
            f"Extraction response is not valid JSON: {exc.msg}",
            details={"body": text[:200]},
        ) from exc

    if not isinstance(data, dict):
        raise ExtractionFailure(
            f"Extraction response is a JSON {type(data).__name__}, expected an object",
            details={"body": text[:200]},
        )

    known = {k: v for k, v in data.items() if k in ExtractedFields.model_fields}
    try:
        return ExtractedFields.model_validate(known)
    except ValidationError as exc:
        raise ExtractionFailure(
            "Extraction response has an unexpected shape",
            details={"errors": exc.errors(include_url=False)},
        ) from exc
