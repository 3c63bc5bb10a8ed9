"""Tests for relevance scoring, summaries and tags."""

from datetime import datetime, timedelta, timezone

import pytest

from kairo.memory.schema import MemoryKind, MemoryRecord
from kairo.memory.scoring import extract_tags, generate_summary, score

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_record(**overrides) -> MemoryRecord:
    fields = dict(
        id="log_1",
        agent_id="research",
        kind=MemoryKind.LOG,
        input="compare python web frameworks",
        output="Django and Flask are popular.",
        summary="Django and Flask are popular frameworks",
        tags=["django", "flask"],
        created_at=NOW,
        last_accessed=NOW,
    )
    fields.update(overrides)
    return MemoryRecord(**fields)


class TestScore:
    def test_no_overlap_gets_only_bonuses(self):
        record = make_record()
        # frequency 0.1 + recency 0.2
        assert score("weather tomorrow", record, now=NOW) == pytest.approx(0.3)

    def test_summary_input_and_tag_weights(self):
        record = make_record(summary="flask tips", input="flask question", tags=["flask"], frequency=1)
        # summary 0.4 + input 0.3 + tag 0.2 + 0.1 + 0.2, clamped
        assert score("flask", record, now=NOW) == 1.0

    def test_recency_decays_per_day(self):
        record = make_record(created_at=NOW - timedelta(days=30), last_accessed=NOW - timedelta(days=5))
        assert score("weather", record, now=NOW) == pytest.approx(0.1 + 0.15)

    def test_recency_never_negative(self):
        old = NOW - timedelta(days=400)
        record = make_record(created_at=old, last_accessed=old)
        assert score("weather", record, now=NOW) == pytest.approx(0.1)

    def test_frequency_bonus_capped(self):
        record = make_record(frequency=10)
        assert score("weather", record, now=NOW) == pytest.approx(0.3 + 0.2)

    @pytest.mark.parametrize(
        "kind,bonus",
        [(MemoryKind.CORRECTION, 0.3), (MemoryKind.PATTERN, 0.2), (MemoryKind.GOAL, 0.0)],
    )
    def test_kind_bonus(self, kind, bonus):
        record = make_record(kind=kind)
        assert score("weather", record, now=NOW) == pytest.approx(0.3 + bonus)

    def test_stored_relevance_prior_is_ignored(self):
        low = make_record(relevance=0.1)
        high = make_record(relevance=1.5)
        assert score("django", low, now=NOW) == score("django", high, now=NOW)

    def test_adding_summary_term_never_decreases(self):
        record = make_record(
            summary="async database drivers",
            input="which driver",
            tags=[],
            created_at=NOW - timedelta(days=40),
            last_accessed=NOW - timedelta(days=40),
        )
        base = score("drivers", record, now=NOW)
        extended = score("drivers database", record, now=NOW)
        assert extended >= base

    def test_correction_scenario(self):
        record = MemoryRecord(
            id="correction_1",
            agent_id="automation",
            kind=MemoryKind.CORRECTION,
            input="fix my script",
            output="use try/catch",
            summary=generate_summary("fix my script", "use try/catch"),
            tags=extract_tags("fix my script", "use try/catch"),
            created_at=NOW,
            last_accessed=NOW,
        )
        assert score("fix script", record, now=NOW) >= 0.5


class TestGenerateSummary:
    def test_picks_line_with_most_overlap(self):
        output = "Sure, happy to help.\nUse pandas to merge the csv files.\nLet me know!"
        assert generate_summary("merge csv files", output) == "Use pandas to merge the csv files."

    def test_falls_back_to_first_line(self):
        assert generate_summary("unrelated", "First line\nSecond line") == "First line"

    def test_truncates_long_lines(self):
        summary = generate_summary("topic", "topic " * 100)
        assert len(summary) == 203
        assert summary.endswith("...")

    def test_empty_output(self):
        assert generate_summary("anything", "") == ""


class TestExtractTags:
    def test_most_frequent_terms_first(self):
        tags = extract_tags("deploy docker image", "docker compose builds the docker image")
        assert tags[0] == "docker"
        assert "image" in tags
        assert len(tags) <= 5

    def test_no_stop_words(self):
        assert "the" not in extract_tags("the plan", "the outline of the plan")
