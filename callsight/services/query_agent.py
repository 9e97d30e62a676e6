"""
Answers free-text questions about transcribed calls with the chat model.

Two scopes are supported: the recent call population as a whole (aggregates
plus one line per call) and a single call (metadata, sentiment breakdown and
the speaker-labelled transcript). Prompt context is built from persisted
records only; nothing is fetched from the call log or the recording server.
"""
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from pydantic import BaseModel

from callsight.services import analytics, llm_handler
from callsight.services.prompt_engine import create_prompt_from_template

logger = logging.getLogger(__name__)

OVERVIEW_HISTORY_TURNS = 4
SINGLE_CALL_HISTORY_TURNS = 8
MAX_TRANSCRIPT_CHARS = 20_000
MAX_SUMMARY_CHARS = 300

Responder = Callable[..., Awaitable[Optional[str]]]


class ChatTurn(BaseModel):
    role: str
    content: str


def recent_history(history: Optional[Iterable[ChatTurn]], turns: int) -> List[Dict[str, str]]:
    """Keeps the last `turns` user/assistant messages; anything else is dropped."""
    kept = [t for t in (history or []) if t.role in ("user", "assistant") and t.content.strip()]
    return [{"role": t.role, "content": t.content} for t in kept[-turns:]]


def _clip(text: Optional[str], limit: int) -> str:
    text = (text or "").strip()
    return text if len(text) <= limit else text[:limit].rstrip() + "…"


def _categories(record: Any) -> List[str]:
    labels = analytics.load_json(record.categories)
    return [str(label) for label in labels] if isinstance(labels, list) else []


def describe_call(record: Any) -> str:
    """One line per call for the population prompt."""
    seconds = analytics.duration_seconds(record.call_duration)
    started = record.initiation_timestamp.isoformat() if record.initiation_timestamp else "unknown time"
    parts = [
        f"[{record.contact_id}] {started}",
        f"agent={record.agent_username or 'Unknown'}",
        f"category={record.primary_category or analytics.UNCATEGORIZED}",
        f"disposition={record.disposition_title or '-'}",
        f"campaign={record.campaign_name or '-'}",
        f"duration={seconds if seconds is not None else '?'}s",
        f"sentiment={analytics.overall_sentiment(record.sentiment_analysis)}",
    ]
    summary = _clip(record.call_summary, MAX_SUMMARY_CHARS)
    if summary:
        parts.append(f"summary: {summary}")
    return " | ".join(parts)


def format_speaker_transcript(record: Any) -> str:
    utterances = analytics.load_json(record.speaker_data)
    if isinstance(utterances, list) and utterances:
        lines = [
            f"{u.get('role') or u.get('speaker') or 'Speaker'}: {u.get('text', '')}"
            for u in utterances if isinstance(u, dict)
        ]
        return _clip("\n".join(lines), MAX_TRANSCRIPT_CHARS)
    return _clip(record.transcript_text, MAX_TRANSCRIPT_CHARS) or "(no transcript)"


def sentiment_breakdown(record: Any) -> str:
    results = analytics.load_json(record.sentiment_analysis)
    if not isinstance(results, list) or not results:
        return "(no sentiment analysis)"
    labels = [str(r.get("sentiment", "")).lower() for r in results if isinstance(r, dict)]
    total = len(labels)
    lines = [
        f"- {label}: {labels.count(label)}/{total} ({100 * labels.count(label) // total}%)"
        for label in analytics.SENTIMENTS
    ]
    lines.append(f"- overall: {analytics.overall_sentiment(results)}")
    return "\n".join(lines)


def describe_call_detail(record: Any) -> str:
    seconds = analytics.duration_seconds(record.call_duration)
    fields = {
        "Contact id": record.contact_id,
        "Agent": record.agent_username,
        "Started": record.initiation_timestamp.isoformat() if record.initiation_timestamp else None,
        "Queue": record.queue_name,
        "Campaign": record.campaign_name,
        "Disposition": record.disposition_title,
        "Duration (s)": seconds,
        "Primary category": record.primary_category,
        "Categories": ", ".join(_categories(record)) or None,
        "Summary": record.call_summary,
    }
    return "\n".join(f"{name}: {value}" for name, value in fields.items() if value not in (None, ""))


class CallQueryAgent:
    def __init__(
        self,
        responder: Responder = llm_handler.get_llm_response,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.responder = responder
        self.model = model
        self.timeout = timeout

    async def answer_overview(self, question: str, records: List[Any],
                              history: Optional[Iterable[ChatTurn]] = None) -> Optional[str]:
        summary = analytics.summarize(records)
        prompt = create_prompt_from_template("call_overview_query.txt", {
            "analytics": json.dumps(summary, indent=2, default=str),
            "call_count": str(len(records)),
            "calls": "\n".join(describe_call(r) for r in records) or "(no transcribed calls)",
        })
        messages = [{"role": "system", "content": prompt}]
        messages.extend(recent_history(history, OVERVIEW_HISTORY_TURNS))
        messages.append({"role": "user", "content": question})
        logger.info(f"Answering overview question over {len(records)} calls")
        return await self.responder(messages, model=self.model, temperature=0.1, max_tokens=4000,
                                    timeout=self.timeout)

    async def answer_call(self, question: str, record: Any,
                          history: Optional[Iterable[ChatTurn]] = None) -> Optional[str]:
        prompt = create_prompt_from_template("single_call_query.txt", {
            "call": describe_call_detail(record),
            "sentiment": sentiment_breakdown(record),
            "transcript": format_speaker_transcript(record),
        })
        messages = [{"role": "system", "content": prompt}]
        messages.extend(recent_history(history, SINGLE_CALL_HISTORY_TURNS))
        messages.append({"role": "user", "content": question})
        logger.info(f"[{record.contact_id}] Answering single-call question")
        return await self.responder(messages, model=self.model, temperature=0.3, max_tokens=1500,
                                    timeout=self.timeout)
