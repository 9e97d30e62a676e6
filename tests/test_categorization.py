import asyncio

from callsight.services import categorization, llm_handler
from callsight.services.categorization import (
    CategoryResponse,
    Categorizer,
    OpenAICategorizationEngine,
    TOPIC_CATEGORIES,
    format_transcript,
    parse_labels,
)

from conftest import make_transcript


class StubEngine:
    def __init__(self, response=None, error=None, delay=0.0):
        self.response = response
        self.error = error
        self.delay = delay
        self.prompts = []

    async def categorize(self, transcript, taxonomy):
        self.prompts.append(transcript)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.response


def categorize_with(engine, utterances=None, timeout=1.0):
    utterances = make_transcript().utterances if utterances is None else utterances
    return asyncio.run(Categorizer(engine, timeout=timeout).categorize("c1", utterances))


def test_parse_labels_filters_dedupes_and_caps():
    raw = [
        "Lead Generated - New Business",
        "Made Up Label",
        "lead generated - new business",
        "Other",
        "No Lead - Call Refused",
        "No Lead - No Product Service Match",
    ]
    assert parse_labels(raw) == ["Lead Generated - New Business", "Other", "No Lead - Call Refused"]


def test_parse_labels_accepts_joined_string():
    assert parse_labels("No Lead - Call Refused || Other") == ["No Lead - Call Refused", "Other"]
    assert parse_labels("") == []


def test_format_transcript_uses_roles():
    text = format_transcript(make_transcript("Hello").utterances)
    assert text.splitlines() == ["Agent: Hello", "Customer: Not interested, thanks."]


def test_valid_labels_become_primary_and_list():
    engine = StubEngine(CategoryResponse(categories=["No Lead - Call Refused", "Other"], confidence=0.8))
    result = categorize_with(engine)
    assert result.primary == "No Lead - Call Refused"
    assert result.categories == ["No Lead - Call Refused", "Other"]
    assert result.confidence == 0.8


def test_only_unknown_labels_fall_back_to_other():
    result = categorize_with(StubEngine(CategoryResponse(categories=["Great Call"], confidence=0.9)))
    assert result.primary == "Other"
    assert result.categories == ["Other"]
    assert result.confidence == 0.0


def test_engine_failure_is_uncategorised():
    result = categorize_with(StubEngine(error=RuntimeError("rate limited")))
    assert result.primary == "Uncategorised"
    assert result.categories == ["Uncategorised"]


def test_engine_returning_nothing_is_uncategorised():
    assert categorize_with(StubEngine(response=None)).primary == "Uncategorised"


def test_slow_engine_times_out_to_uncategorised():
    result = categorize_with(StubEngine(response=CategoryResponse(categories=["Other"]), delay=1), timeout=0.05)
    assert result.primary == "Uncategorised"


def test_no_utterances_skips_engine():
    engine = StubEngine(CategoryResponse(categories=["Other"]))
    result = categorize_with(engine, utterances=[])
    assert result.primary == "Uncategorised"
    assert engine.prompts == []


def test_openai_engine_builds_prompt_with_taxonomy(monkeypatch):
    captured = {}

    async def fake_structured_response(prompt, response_model, model=None, timeout=None):
        captured.update(prompt=prompt, model=model, timeout=timeout, response_model=response_model)
        return CategoryResponse(categories=["Other"], confidence=0.4)

    monkeypatch.setattr(llm_handler, "get_structured_response", fake_structured_response)
    engine = OpenAICategorizationEngine(model="gpt-4o-mini", timeout=20)

    response = asyncio.run(engine.categorize("Agent: Hello\nCustomer: Bye", TOPIC_CATEGORIES))

    assert response.categories == ["Other"]
    assert captured["response_model"] is CategoryResponse
    assert captured["model"] == "gpt-4o-mini"
    assert captured["timeout"] == 20
    for label in TOPIC_CATEGORIES:
        assert f"- {label}" in captured["prompt"]
    assert "Customer: Bye" in captured["prompt"]
    assert categorization.UNCATEGORISED not in captured["prompt"]
