import asyncio
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Protocol, Sequence, Union

from pydantic import BaseModel, Field

from callsight.config import settings
from callsight.services import llm_handler
from callsight.services.prompt_engine import create_prompt_from_template
from callsight.services.transcription import Utterance

logger = logging.getLogger(__name__)

TOPIC_CATEGORIES = [
    "No Lead - Call Refused",
    "Lead Generated - New Business",
    "No Lead - No Product Service Match",
    "Other",
]
FALLBACK_CATEGORY = "Other"
UNCATEGORISED = "Uncategorised"
MAX_CATEGORIES = 3
LABEL_SEPARATOR = "||"


class CategoryResponse(BaseModel):
    """Structured answer requested from the LLM."""
    categories: List[str] = Field(description="One to three category names, most relevant first.")
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


@dataclass
class Categorization:
    primary: str
    categories: List[str] = field(default_factory=list)
    confidence: float = 0.0

    @classmethod
    def uncategorised(cls) -> "Categorization":
        return cls(primary=UNCATEGORISED, categories=[UNCATEGORISED], confidence=0.0)


def format_transcript(utterances: Iterable[Utterance]) -> str:
    """Renders utterances as one `Role: text` line each."""
    return "\n".join(f"{u.role or u.speaker}: {u.text}" for u in utterances if u.text)


def parse_labels(raw: Union[str, Sequence[str], None], taxonomy: Sequence[str] = TOPIC_CATEGORIES) -> List[str]:
    """
    Keeps only taxonomy labels from an engine answer, in order, without
    duplicates, at most three. Accepts a list or a `||`-joined string.
    """
    if not raw:
        return []
    items = raw.split(LABEL_SEPARATOR) if isinstance(raw, str) else [
        part for item in raw for part in str(item).split(LABEL_SEPARATOR)
    ]
    lookup = {label.lower(): label for label in taxonomy}
    labels: List[str] = []
    for item in items:
        label = lookup.get(item.strip().strip('"').lower())
        if label and label not in labels:
            labels.append(label)
        if len(labels) == MAX_CATEGORIES:
            break
    return labels


class CategorizationEngine(Protocol):
    async def categorize(self, transcript: str, taxonomy: Sequence[str]) -> Optional[CategoryResponse]: ...


class OpenAICategorizationEngine:
    def __init__(self, model: Optional[str] = None, timeout: float = 20):
        self.model = model or settings.CATEGORISATION_MODEL
        self.timeout = timeout

    async def categorize(self, transcript: str, taxonomy: Sequence[str]) -> Optional[CategoryResponse]:
        prompt = create_prompt_from_template(
            "categorise_call.txt",
            {"categories": "\n".join(f"- {c}" for c in taxonomy), "transcript": transcript},
        )
        return await llm_handler.get_structured_response(
            prompt, CategoryResponse, model=self.model, timeout=self.timeout
        )


class Categorizer:
    """Assigns 1-3 taxonomy labels to a transcript; never raises."""

    def __init__(self, engine: CategorizationEngine, timeout: float = 20, taxonomy: Sequence[str] = TOPIC_CATEGORIES):
        self.engine = engine
        self.timeout = timeout
        self.taxonomy = list(taxonomy)

    async def categorize(self, contact_id: str, utterances: List[Utterance]) -> Categorization:
        transcript = format_transcript(utterances)
        if not transcript:
            logger.warning(f"[{contact_id}] No utterances to categorise.")
            return Categorization.uncategorised()

        try:
            response = await asyncio.wait_for(self.engine.categorize(transcript, self.taxonomy), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[{contact_id}] Categorisation timed out after {self.timeout}s.")
            return Categorization.uncategorised()
        except Exception as e:
            logger.warning(f"[{contact_id}] Categorisation engine failed: {e}")
            return Categorization.uncategorised()

        if response is None:
            logger.warning(f"[{contact_id}] Categorisation engine returned nothing.")
            return Categorization.uncategorised()

        labels = parse_labels(response.categories, self.taxonomy)
        if not labels:
            logger.warning(f"[{contact_id}] No valid categories in {response.categories!r}; using '{FALLBACK_CATEGORY}'.")
            return Categorization(primary=FALLBACK_CATEGORY, categories=[FALLBACK_CATEGORY], confidence=0.0)

        logger.info(f"[{contact_id}] Categorised as {labels}")
        return Categorization(primary=labels[0], categories=labels, confidence=response.confidence)
