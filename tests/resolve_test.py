import dataclasses
import threading

import pytest

from transcript_facts.fallback import FallbackResult
from transcript_facts.parse_transcript import (
    CourseCode,
    ExtractorConfig,
    ParsedTranscript,
    parse_transcript_local,
    resolve,
)

NO_HEADER = "Advising Transcript\nCMPT 225 3.0 B+ 9.99\nSTAT 270 3.0 A- 11.01\n"
FULL = "Major - Computing Science CMPT 01\nTotal Units: 92.00\n" + NO_HEADER


class Recorder:
    def __init__(self, payload=None):
        self.payload = payload
        self.snippets = []

    def __call__(self, snippet):
        self.snippets.append(snippet)
        return self.payload


def test_unknown_sentinels_without_fallback():
    result = resolve(NO_HEADER)
    assert result.major == "Unknown"
    assert result.total_credits_completed == 0
    assert [str(c) for c in result.completed_courses] == ["CMPT 225", "STAT 270"]


def test_failing_fallback_downgrades_to_no_data():
    def broken(snippet):
        raise ConnectionError("service unavailable")

    events = []
    result = resolve(NO_HEADER, broken, on_event=events.append)
    assert result.major == "Unknown"
    assert result.total_credits_completed == 0
    assert len(result.completed_courses) == 2
    fb = [e for e in events if e.stage == "fallback"]
    assert fb and fb[0].detail.startswith("failed: ConnectionError")


def test_fallback_not_consulted_when_local_patterns_suffice():
    rec = Recorder({"student_major": "Physics", "total_credits_completed": 1})
    result = resolve(FULL, rec)
    assert rec.snippets == []
    assert result.major == "Computing Science"
    assert result.total_credits_completed == 92.0


def test_fallback_fills_only_missing_fields_and_never_courses():
    raw = "Total Units: 30.00\n" + NO_HEADER
    rec = Recorder(
        {
            "student_major": "Physics",
            "total_credits_completed": 10,
            "completed_courses": [{"code": "PHYS 999"}],
        }
    )
    result = resolve(raw, rec)
    assert result.major == "Physics"
    assert result.total_credits_completed == 30.0
    assert CourseCode("PHYS", "999") not in result.completed_courses


def test_fallback_gets_bounded_header_snippet_while_courses_scan_everything():
    raw = "Header\n" + "x" * 4000 + "\nMATH 151 3.0 A 12.00\n"
    rec = Recorder(FallbackResult(major="Mathematics", total_credits=3.0))
    result = resolve(raw, rec)
    assert len(rec.snippets) == 1
    assert rec.snippets[0] == raw[:2500]
    assert [str(c) for c in result.completed_courses] == ["MATH 151"]
    assert result.major == "Mathematics"
    assert result.total_credits_completed == 3.0


def test_snippet_budget_is_configurable():
    rec = Recorder()
    resolve(NO_HEADER, rec, config=ExtractorConfig(snippet_chars=10))
    assert rec.snippets == [NO_HEADER[:10]]


def test_fallback_json_text_reply():
    reply = '```json\n{"student_major": "Statistics", "total_credits_completed": 61.5}\n```'
    result = resolve(NO_HEADER, Recorder(reply))
    assert result.major == "Statistics"
    assert result.total_credits_completed == 61.5


def test_malformed_fallback_reply_is_no_data():
    result = resolve(NO_HEADER, Recorder("I could not find a major."))
    assert result.major == "Unknown"
    assert result.total_credits_completed == 0


def test_slow_fallback_times_out():
    release = threading.Event()

    def slow(snippet):
        release.wait(5)
        return {"student_major": "Too Late"}

    events = []
    try:
        result = resolve(NO_HEADER, slow, timeout=0.05, on_event=events.append)
    finally:
        release.set()
    assert result.major == "Unknown"
    assert any(e.stage == "fallback" and e.detail.startswith("failed") for e in events)


def test_parsed_transcript_is_frozen_and_serializable():
    result = resolve(FULL)
    with pytest.raises(dataclasses.FrozenInstanceError):
        result.major = "Other"  # type: ignore[misc]
    assert result.to_dict() == {
        "student_major": "Computing Science",
        "completed_courses": [{"code": "CMPT 225"}, {"code": "STAT 270"}],
        "total_credits_completed": 92.0,
    }


def test_parse_transcript_local():
    assert parse_transcript_local(NO_HEADER) is None
    local = parse_transcript_local("BSC Physics\n" + NO_HEADER)
    assert local == ParsedTranscript(
        major="Physics",
        completed_courses=(CourseCode("CMPT", "225"), CourseCode("STAT", "270")),
        total_credits_completed=0.0,
    )
