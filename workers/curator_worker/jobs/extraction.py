"""AI-backed extraction of candidate show records from raw source documents.

The model is asked for a bare JSON array. Its reply is never trusted as-is:
:func:`parse_extraction_response` turns it into either :class:`ExtractionOk`
or :class:`ExtractionMalformed`, and only the former moves on to
normalization.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any

import openai

from curator_worker.jobs.normalize import is_iso_date, normalize_date, normalize_text
from curator_worker.jobs.records import CandidateShowRecord, RawDocument

logger = logging.getLogger(__name__)

EXTRACTION_SYSTEM_PROMPT = (
    "You extract trading-card and collectibles show events from web pages. "
    "You only ever answer with a raw JSON array."
)

EXTRACTION_PROMPT_TEMPLATE = """Analyze the HTML. Extract card show events into a valid JSON array.
Each object must have keys: "name", "startDate", "endDate", "venueName", "address", "city", "state",
"entryFee", "description", "url", "contactInfo".
- "url" should be the event URL if found, otherwise use the source URL: {source_url}.
- Do not worry about date format, return the date string as you find it.
- If information is missing, use null.
- ONLY output the raw JSON array. Do not add markdown or explanations.
HTML:
{document}
"""


class ExtractionError(RuntimeError):
    """Raised when the extraction service call itself fails."""


@dataclass(slots=True)
class ExtractionOk:
    candidates: list[CandidateShowRecord] = field(default_factory=list)


@dataclass(slots=True)
class ExtractionMalformed:
    raw_text: str
    reason: str


ExtractionResult = ExtractionOk | ExtractionMalformed


def build_extraction_prompt(document: RawDocument) -> str:
    return EXTRACTION_PROMPT_TEMPLATE.format(source_url=document.source_address, document=document.content)


def parse_extraction_response(raw_text: str | None) -> ExtractionResult:
    text = (raw_text or "").strip()
    if not (text.startswith("[") and text.endswith("]")):
        return ExtractionMalformed(raw_text=raw_text or "", reason="not_a_json_array")

    try:
        payload: Any = json.loads(text)
    except json.JSONDecodeError:
        return ExtractionMalformed(raw_text=raw_text or "", reason="invalid_json")

    if not isinstance(payload, list):
        return ExtractionMalformed(raw_text=raw_text or "", reason="not_a_json_array")

    return ExtractionOk(
        candidates=[CandidateShowRecord.from_payload(item) for item in payload if isinstance(item, dict)],
    )


def is_admissible(candidate: CandidateShowRecord, *, today: date | None = None) -> bool:
    """Candidates need a name and a start date that resolves to a calendar date."""
    if not normalize_text(candidate.name):
        return False
    return is_iso_date(normalize_date(candidate.start_date_text, today=today))


class ShowExtractor:
    """Submits documents to an OpenAI-compatible chat completion endpoint."""

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str,
        base_url: str | None = None,
        timeout_seconds: float = 60.0,
        max_tokens: int = 8000,
        client: openai.AsyncOpenAI | None = None,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        if client is not None:
            self._client = client
            return

        if not api_key:
            raise ExtractionError("extraction api key is required")
        client_kwargs: dict[str, Any] = {
            "api_key": api_key,
            "timeout": openai.Timeout(timeout_seconds, connect=5.0),
            "max_retries": 0,
        }
        if base_url:
            client_kwargs["base_url"] = base_url
        self._client = openai.AsyncOpenAI(**client_kwargs)

    async def extract(self, document: RawDocument) -> ExtractionResult:
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": EXTRACTION_SYSTEM_PROMPT},
                    {"role": "user", "content": build_extraction_prompt(document)},
                ],
                temperature=0.0,
                max_tokens=self.max_tokens,
            )
        except openai.APITimeoutError as exc:
            raise ExtractionError("extraction request timed out") from exc
        except openai.APIStatusError as exc:
            raise ExtractionError(f"extraction service returned status {exc.status_code}") from exc
        except openai.APIError as exc:
            raise ExtractionError(f"extraction request failed: {exc.__class__.__name__}") from exc

        if not response.choices:
            return ExtractionMalformed(raw_text="", reason="empty_response")
        content = response.choices[0].message.content
        result = parse_extraction_response(content)
        if isinstance(result, ExtractionMalformed):
            logger.info(
                "extraction reply malformed source=%s reason=%s chars=%s",
                document.source_address,
                result.reason,
                len(result.raw_text),
            )
        return result

    async def close(self) -> None:
        await self._client.close()
