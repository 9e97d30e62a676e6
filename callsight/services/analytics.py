import json
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd

from callsight.services.call_logs import to_seconds

SHORT_CALL_SECONDS = 120
LONG_CALL_SECONDS = 600
SENTIMENTS = ("positive", "negative", "neutral")
UNCATEGORIZED = "Uncategorized"


def load_json(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value
    return value


def overall_sentiment(sentiment_analysis: Any) -> str:
    """Majority of POSITIVE vs NEGATIVE sentences; ties and empty lists are neutral."""
    results = load_json(sentiment_analysis) or []
    if not isinstance(results, list):
        return "neutral"
    labels = [str(r.get("sentiment", "")).upper() for r in results if isinstance(r, dict)]
    positive, negative = labels.count("POSITIVE"), labels.count("NEGATIVE")
    if positive > negative:
        return "positive"
    if negative > positive:
        return "negative"
    return "neutral"


def duration_seconds(call_duration: Any) -> Optional[int]:
    return to_seconds(load_json(call_duration))


def records_frame(records: Iterable[Any]) -> pd.DataFrame:
    rows = []
    for record in records:
        rows.append({
            "contact_id": record.contact_id,
            "agent": record.agent_username or "Unknown",
            "category": record.primary_category or UNCATEGORIZED,
            "duration": duration_seconds(record.call_duration),
            "sentiment": overall_sentiment(record.sentiment_analysis),
        })
    return pd.DataFrame(rows, columns=["contact_id", "agent", "category", "duration", "sentiment"])


def _sentiment_counts(series: pd.Series) -> Dict[str, int]:
    counts = series.value_counts()
    return {s: int(counts.get(s, 0)) for s in SENTIMENTS}


def summarize(records: Iterable[Any]) -> Dict[str, Any]:
    """Category, sentiment and per-agent aggregates over persisted call records."""
    df = records_frame(records)
    if df.empty:
        return {
            "total_calls": 0,
            "category_distribution": {},
            "sentiment": {s: 0 for s in SENTIMENTS},
            "sentiment_by_category": {},
            "average_duration_by_category": {},
            "agents": [],
        }
    df["duration"] = pd.to_numeric(df["duration"], errors="coerce")

    by_category = df.groupby("category")
    sentiment_by_category = {cat: _sentiment_counts(group["sentiment"]) for cat, group in by_category}
    avg_duration = by_category["duration"].mean()

    agents: List[Dict[str, Any]] = []
    for agent, group in df.groupby("agent"):
        durations = group["duration"].dropna()
        agents.append({
            "agent": agent,
            "total_calls": int(len(group)),
            "average_duration_seconds": round(float(durations.mean()), 1) if not durations.empty else None,
            "short_calls": int((durations < SHORT_CALL_SECONDS).sum()),
            "long_calls": int((durations > LONG_CALL_SECONDS).sum()),
            "sentiment": _sentiment_counts(group["sentiment"]),
            "top_category": str(group["category"].value_counts().idxmax()),
        })
    agents.sort(key=lambda a: a["total_calls"], reverse=True)

    return {
        "total_calls": int(len(df)),
        "category_distribution": {str(k): int(v) for k, v in df["category"].value_counts().items()},
        "sentiment": _sentiment_counts(df["sentiment"]),
        "sentiment_by_category": sentiment_by_category,
        "average_duration_by_category": {
            str(k): (round(float(v), 1) if pd.notna(v) else None) for k, v in avg_duration.items()
        },
        "agents": agents,
    }
