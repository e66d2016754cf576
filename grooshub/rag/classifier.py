# =============================================================================
# Query Classifier — Should This Question Hit the Documents?
# =============================================================================
#
# A cheap model (gpt-4o-mini, temperature 0) decides whether a chat message
# is about the project's documents (building regulations, specs, norms)
# or about something else (location data, small talk, tool requests).
#
# FAIL-SAFE: any error, including an unparseable reply, returns
# is_document_related=True with confidence 0.5. An unnecessary retrieval
# costs a little; a skipped one loses the answer. An exhausted quota is the
# one error that propagates.
# =============================================================================

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass

from grooshub.config import settings
from grooshub.errors import QuotaExceededError
from grooshub.services.llm import LLMProvider, create_provider
from grooshub.services.quota import UsageMeter

logger = logging.getLogger(__name__)

_JSON_BLOCK = re.compile(r"\{.*\}", re.DOTALL)

CLASSIFIER_SYSTEM = """You classify user questions for a retrieval system \
over building-regulation and architecture documents (e.g. Bouwbesluit 2012, \
construction norms, project specifications).

DOCUMENT-RELATED (retrieve):
- Questions about specific articles, tables or paragraphs
- Building requirements, norms, minimum values (heights, distances, areas)
- Fire safety, accessibility, sound insulation, structural requirements

NOT DOCUMENT-RELATED (skip retrieval):
- Location analysis, demographics, safety or health statistics
- "My saved locations", "my projects", maps, charts
- General knowledge, greetings, small talk

Respond with ONLY valid JSON:
{"isDocumentRelated": true or false, "confidence": 0.0-1.0, "reasoning": "short explanation"}"""


@dataclass
class QueryClassification:
    is_document_related: bool
    confidence: float
    reasoning: str

    def to_dict(self) -> dict:
        return {
            "isDocumentRelated": self.is_document_related,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
        }


def _fallback(reason: str) -> QueryClassification:
    return QueryClassification(
        is_document_related=True,
        confidence=0.5,
        reasoning=reason,
    )


def parse_classification(text: str) -> QueryClassification:
    """
    Parse the first {...} block of a model reply.

    Raises:
        ValueError: No JSON object, or it is not valid JSON.
    """
    match = _JSON_BLOCK.search(text or "")
    if not match:
        raise ValueError("No JSON found in classifier response")

    data = json.loads(match.group(0))
    confidence = float(data.get("confidence", 0.5))
    return QueryClassification(
        is_document_related=bool(data.get("isDocumentRelated", True)),
        confidence=min(max(confidence, 0.0), 1.0),
        reasoning=str(data.get("reasoning", "")),
    )


async def classify_query(
    query: str,
    llm: LLMProvider | None = None,
    meter: UsageMeter | None = None,
) -> QueryClassification:
    """
    Classify a question. With a meter the call is quota-checked and recorded.

    Raises:
        QuotaExceededError: The classifier provider's quota is used up.
    """
    request = {
        "messages": [{
            "role": "user",
            "content": f'Classify this query:\n\n"{query}"\n\nAnswer in JSON.',
        }],
        "system": CLASSIFIER_SYSTEM,
        "temperature": 0.0,
        "max_tokens": 200,
    }
    try:
        llm = llm or create_provider(settings.classifier_model)
        if meter is not None:
            response = await meter.complete(llm, **request)
        else:
            response = await llm.complete(**request)
    except QuotaExceededError:
        raise
    except Exception as e:
        logger.warning("Query classification failed: %s", e)
        return _fallback("Classification failed, defaulting to document-related")

    try:
        result = parse_classification(response.content)
    except (ValueError, TypeError) as e:
        logger.warning("Failed to parse classification %r: %s", response.content[:200], e)
        return _fallback("Parsing failed, defaulting to document-related for safety")

    logger.info(
        "Classified query as %s (%.2f): %s",
        "DOCUMENT" if result.is_document_related else "NON-DOCUMENT",
        result.confidence,
        result.reasoning,
    )
    return result
