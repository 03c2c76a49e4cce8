from transcript_facts.parse_transcript import (
    ExtractorConfig,
    extract_major,
    extract_total_credits,
)


def test_major_dash_strips_trailing_program_code():
    assert extract_major("Major - Computing Science CMPT 01") == "Computing Science"
    assert extract_major("Major - Computing Science MAJ 01\nTerm") == "Computing Science"
    assert extract_major("major -Statistics\nGPA 3.1") == "Statistics"


def test_major_dash_keeps_words_that_contain_code_letters():
    assert extract_major("Major - Business Administration") == "Business Administration"


def test_major_from_bsc_line():
    assert extract_major("Plan: BSC Computing Science WQB Requirements") == "Computing Science"
    assert extract_major("BSC Mathematics Active in Program") == "Mathematics"
    assert extract_major("BSC Physics\nTerm 1") == "Physics"


def test_major_from_bare_bachelor_of_science_program():
    raw = "Program: Bachelor of Science\nActive in Program"
    assert extract_major(raw) == "Computing Science"
    assert extract_major(raw, ExtractorConfig(major_fallback="Physics")) == "Physics"


def test_major_dash_wins_over_later_patterns():
    raw = "Program: Bachelor of Science Active\nMajor - Statistics STAT\nBSC Physics\n"
    assert extract_major(raw) == "Statistics"


def test_major_absent():
    assert extract_major("") is None
    assert extract_major("CMPT 225 3.0 B+") is None


def test_total_units():
    assert extract_total_credits("Total Units: 92.00") == 92.0
    assert extract_total_credits("total units:120") == 120.0


def test_passed_triple_uses_third_number():
    assert extract_total_credits("Passed: 15.00 15.00 87.50") == 87.5


def test_total_units_preferred_over_passed():
    assert extract_total_credits("Passed: 1.00 2.00 3.00\nTotal Units: 45.00") == 45.0


def test_total_credits_absent():
    assert extract_total_credits("") is None
    assert extract_total_credits("Units Attempted 12") is None
