from __future__ import annotations

import argparse
import json
import os
import re
import sys
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

from transcript_facts.fallback import FallbackFn, call_fallback

# -------- Primary extractor (pdfplumber) --------
try:
    import pdfplumber  # type: ignore
except Exception:
    pdfplumber = None  # type: ignore


# ---------- Department whitelist ----------
SFU_DEPARTMENTS = frozenset(
    {
        "ARCH", "BISC", "BUS", "CA", "CHEM", "CMNS", "CMPT", "EDUC", "ENGL", "ENSC", "FAL",
        "FAN", "GEOG", "HUM", "IAT", "MACM", "MATH", "PHIL", "PHYS", "POL", "PSYC", "STAT",
    }
)  # fmt: skip

# Administrative lines that put department-looking letters next to grade-looking ones.
NOISE_MARKERS = (
    r"CF\s+PREQ",
    r"PREQ\s+SET",
    r"STUDENT\s+GROUP",
    r"CS\d+\s+-",
)

UNKNOWN_MAJOR = "Unknown"
MIN_TRANSCRIPT_CHARS = 50


@dataclass(frozen=True)
class ExtractorConfig:
    departments: frozenset[str] = SFU_DEPARTMENTS
    window_before: int = 30
    window_after: int = 50
    noise_markers: tuple[str, ...] = NOISE_MARKERS
    # Major/program and the credit summary sit in the document header.
    snippet_chars: int = 2500
    # "Program: Bachelor of Science" with no major text is reported as this.
    major_fallback: str = "Computing Science"
    _noise_re: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "departments", frozenset(d.upper() for d in self.departments))
        object.__setattr__(
            self, "_noise_re", re.compile("|".join(self.noise_markers) or r"(?!)", re.I)
        )

    def with_departments(self, extra: Iterable[str], only: bool = False) -> ExtractorConfig:
        base = frozenset() if only else self.departments
        return replace(self, departments=base | {d.upper() for d in extra})

    def is_noise(self, context: str) -> bool:
        return self._noise_re.search(context) is not None


DEFAULT_CONFIG = ExtractorConfig()


@dataclass(frozen=True)
class ExtractionEvent:
    stage: str
    count: int = 0
    codes: tuple[str, ...] = ()
    detail: str = ""


EventHook = Callable[[ExtractionEvent], None]


def _emit(on_event: Optional[EventHook], stage: str, **kw) -> None:
    if on_event is not None:
        on_event(ExtractionEvent(stage, **kw))


@dataclass(frozen=True)
class CourseCode:
    department: str
    number: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "department", self.department.strip().upper())
        object.__setattr__(self, "number", self.number.strip())

    def __str__(self) -> str:
        return f"{self.department} {self.number}"

    @classmethod
    def parse(cls, s: str) -> CourseCode:
        m = _CODE_TEXT.fullmatch(s.strip())
        if not m:
            raise ValueError(f"not a course code: {s!r}")
        return cls(m.group(1), m.group(2).upper())


@dataclass(frozen=True)
class ParsedTranscript:
    major: str
    completed_courses: tuple[CourseCode, ...]
    total_credits_completed: float

    def to_dict(self) -> dict:
        return {
            "student_major": self.major,
            "completed_courses": [{"code": str(c)} for c in self.completed_courses],
            "total_credits_completed": self.total_credits_completed,
        }


# ---------- Regexes ----------
# 225, 105W, or a transfer placeholder such as X12
COURSE_NUM = r"(?:\d{3}[A-Z]?|[A-Z]\d{2})"
GRADE = r"(?:[A-F]\s*[+\-]?|CR)"

_CODE_TEXT = re.compile(rf"(?i)([A-Z]{{3,4}})[- ]?({COURSE_NUM})")

# "CMPT 225 3.0 B+", "CMPT2253.0 B-", "PSYC 100 3.0 CR". The lookahead keeps a
# trailing grade from eating the next department's first letter.
COURSE_AND_GRADE_RE = re.compile(
    rf"\b([A-Z]{{3,4}})[- ]?({COURSE_NUM})(?:\s*[\d.]+)?(?:\s*\d+)?\s*({GRADE})(?=\s|$|\d)"
)
# "CHEMX120.0 A TR-C"
COURSE_AND_TRANSFER_RE = re.compile(
    rf"\b([A-Z]{{3,4}})[- ]?({COURSE_NUM})\s*[\d.]+\s*({GRADE}|TR)(?=\s+TR-[CT])"
)
COURSE_CODE_ONLY_RE = re.compile(rf"\b([A-Z]{{3,4}})[- ]?({COURSE_NUM})\b")
# grade followed by grade points ("B+ 9.99"), or a transfer mark
REAL_GRADE_OR_TRANSFER = re.compile(rf"(?<![A-Z]){GRADE}\s+[\d.]|\bTR-[CT]\b")

MAJOR_DASH_RE = re.compile(r"(?i)\bMajor\s*-\s*([^\n\r]+)")
MAJOR_CODE_SUFFIX_RE = re.compile(
    r"\s+(?:CMPT|STAT|MATH|BUS|APSC|DCMPT|MAJ|MIN)[A-Z0-9]*(?:\s*\d+)?\s*$"
)
BSC_RE = re.compile(r"(?i)\bBSC\s+([A-Za-z\s]+?)(?:\s+WQB|\s+Active|\n)")
PROGRAM_BSC_RE = re.compile(r"(?i)Program:\s*Bachelor of Science\s*(?:\n|Active)")

TOTAL_UNITS_RE = re.compile(r"(?i)Total\s+Units:\s*(\d+(?:\.\d+)?)")
PASSED_RE = re.compile(r"(?i)Passed:\s*[\d.]+\s+[\d.]+\s+(\d+(?:\.\d+)?)")

_WS = re.compile(r"\s+")


def normalize(raw: str) -> str:
    s = raw.upper().replace("\xa0", " ")
    return _WS.sub(" ", s).strip()


def _collect(
    rx: re.Pattern[str],
    text: str,
    tier: str,
    seen: set[CourseCode],
    config: ExtractorConfig,
    on_event: Optional[EventHook],
) -> list[str]:
    added: list[str] = []
    for m in rx.finditer(text):
        code = CourseCode(m.group(1), m.group(2))
        if code.department not in config.departments:
            _emit(on_event, "tier_skipped", codes=(str(code),), detail=tier)
            continue
        if code not in seen:
            seen.add(code)
            added.append(str(code))
    return added


def _bare_codes(
    text: str, seen: set[CourseCode], config: ExtractorConfig, on_event: Optional[EventHook]
) -> list[str]:
    added: list[str] = []
    for m in COURSE_CODE_ONLY_RE.finditer(text):
        code = CourseCode(m.group(1), m.group(2))
        if code.department not in config.departments or code in seen:
            continue
        start = max(0, m.start() - config.window_before)
        end = min(len(text), m.end() + config.window_after)
        context = text[start:end]
        if config.is_noise(context):
            _emit(on_event, "tier3_rejected", codes=(str(code),), detail="noise")
            continue
        if not REAL_GRADE_OR_TRANSFER.search(context):
            _emit(on_event, "tier3_rejected", codes=(str(code),), detail="no grade")
            continue
        seen.add(code)
        added.append(str(code))
    return added


def extract_completed_courses(
    raw: str,
    config: ExtractorConfig = DEFAULT_CONFIG,
    on_event: Optional[EventHook] = None,
) -> list[CourseCode]:
    """
    Completed = graded (A-F, CR) or transfer credit (TR-C / TR-T).

    Three passes over the normalized text; later passes only add codes the
    earlier ones did not find. Result is sorted by canonical code string.
    """
    text = normalize(raw)
    _emit(on_event, "normalized", count=len(text), detail=text[:400])

    seen: set[CourseCode] = set()
    graded = _collect(COURSE_AND_GRADE_RE, text, "tier1", seen, config, on_event)
    _emit(on_event, "tier1", count=len(graded), codes=tuple(graded))
    transfer = _collect(COURSE_AND_TRANSFER_RE, text, "tier2", seen, config, on_event)
    _emit(on_event, "tier2", count=len(transfer), codes=tuple(transfer))
    bare = _bare_codes(text, seen, config, on_event)
    _emit(on_event, "tier3", count=len(bare), codes=tuple(bare))

    result = sorted(seen, key=str)
    _emit(on_event, "courses", count=len(result), codes=tuple(str(c) for c in result))
    return result


def extract_major(raw: str, config: ExtractorConfig = DEFAULT_CONFIG) -> str | None:
    m = MAJOR_DASH_RE.search(raw)
    if m:
        s = MAJOR_CODE_SUFFIX_RE.sub("", m.group(1).strip()).strip()
        if s:
            return s
    m = BSC_RE.search(raw)
    if m and m.group(1).strip():
        return m.group(1).strip()
    # Heuristic: a bare BSc program line at SFU is almost always Computing Science.
    if PROGRAM_BSC_RE.search(raw):
        return config.major_fallback
    return None


def extract_total_credits(raw: str) -> float | None:
    for rx in (TOTAL_UNITS_RE, PASSED_RE):
        m = rx.search(raw)
        if m:
            return float(m.group(1))
    return None


def parse_transcript_local(
    raw: str, config: ExtractorConfig = DEFAULT_CONFIG
) -> ParsedTranscript | None:
    """Local patterns only. None when the major cannot be determined."""
    major = extract_major(raw, config)
    if major is None:
        return None
    credits = extract_total_credits(raw)
    return ParsedTranscript(
        major=major,
        completed_courses=tuple(extract_completed_courses(raw, config)),
        total_credits_completed=credits if credits is not None else 0.0,
    )


def resolve(
    raw: str,
    fallback: Optional[FallbackFn] = None,
    *,
    config: ExtractorConfig = DEFAULT_CONFIG,
    timeout: Optional[float] = None,
    on_event: Optional[EventHook] = None,
) -> ParsedTranscript:
    """
    Local extraction first; the fallback collaborator only fills a missing
    major and/or credit total from a header snippet. Course codes always come
    from the full text and never from the fallback.
    """
    courses = extract_completed_courses(raw, config, on_event)
    major = extract_major(raw, config)
    _emit(on_event, "major", count=int(major is not None), detail=major or "")
    credits = extract_total_credits(raw)
    _emit(on_event, "credits", count=int(credits is not None), detail=f"{credits}")

    if (major is None or credits is None) and fallback is not None:
        snippet = raw[: config.snippet_chars]
        try:
            extra = call_fallback(fallback, snippet, timeout=timeout)
        except Exception as e:
            # a failed collaborator means "no additional data"
            _emit(on_event, "fallback", detail=f"failed: {type(e).__name__}: {e}")
        else:
            _emit(
                on_event,
                "fallback",
                count=len(snippet),
                detail=f"major={extra.major!r} credits={extra.total_credits!r}",
            )
            if major is None:
                major = extra.major
            if credits is None:
                credits = extra.total_credits

    result = ParsedTranscript(
        major=major or UNKNOWN_MAJOR,
        completed_courses=tuple(courses),
        total_credits_completed=credits if credits is not None else 0.0,
    )
    _emit(on_event, "resolved", count=len(result.completed_courses), detail=result.major)
    return result


def extract_pdf_text(path: Path) -> str:
    if pdfplumber is None:
        return ""
    try:
        with pdfplumber.open(path) as pdf:
            pages = [page.extract_text() or "" for page in pdf.pages]
    except Exception:
        return ""
    return "\n".join(pages).strip()


def load_text(path: Path) -> str:
    if path.suffix.lower() == ".pdf":
        return extract_pdf_text(path)
    return path.read_text(encoding="utf-8", errors="replace")


def run_file(
    path: Path,
    config: ExtractorConfig = DEFAULT_CONFIG,
    fallback: Optional[FallbackFn] = None,
    on_event: Optional[EventHook] = None,
) -> ParsedTranscript:
    return resolve(load_text(path), fallback, config=config, on_event=on_event)


def _config_from_args(args: argparse.Namespace) -> ExtractorConfig:
    config = ExtractorConfig(snippet_chars=args.snippet_chars)
    if args.only_departments:
        config = config.with_departments(args.only_departments, only=True)
    if args.departments:
        config = config.with_departments(args.departments)
    return config


def _print_event(ev: ExtractionEvent) -> None:
    codes = f" {', '.join(ev.codes)}" if ev.codes else ""
    detail = f" ({ev.detail})" if ev.detail and ev.stage != "normalized" else ""
    print(f"[verbose] {ev.stage}: {ev.count}{codes}{detail}")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="transcript-facts")
    parser.add_argument("inputs", nargs="+", help="Transcript PDF or text file(s)")
    parser.add_argument(
        "--departments", nargs="+", default=None, help="Extra department codes to accept"
    )
    parser.add_argument(
        "--only-departments",
        nargs="+",
        default=None,
        help="Replace the department whitelist entirely",
    )
    parser.add_argument(
        "--snippet-chars",
        type=int,
        default=DEFAULT_CONFIG.snippet_chars,
        help="Header snippet size handed to a fallback collaborator",
    )
    parser.add_argument("--json", action="store_true", help="Print results as JSON")
    parser.add_argument("--verbose", action="store_true", help="Print extraction stage events")
    args = parser.parse_args(argv if argv is not None else sys.argv[1:])

    config = _config_from_args(args)
    verbose = args.verbose or os.environ.get("TRANSCRIPT_DEBUG", "").strip() == "1"
    hook = _print_event if verbose and not args.json else None

    as_json: dict[str, dict] = {}
    for inp in args.inputs:
        p = Path(inp)
        base = p.name
        if not p.exists():
            print(f"File not found: {p}")
            continue

        raw = load_text(p)
        if len(raw.strip()) < MIN_TRANSCRIPT_CHARS:
            print(f"Results for {base}")
            print(" [not enough text to be a transcript]")
            continue

        result = resolve(raw, config=config, on_event=hook)
        if args.json:
            as_json[str(p)] = result.to_dict()
            continue

        print(f"Results for {base}")
        print(f"  Major: {result.major}")
        print(f"  Total units: {result.total_credits_completed:g}")
        if not result.completed_courses:
            print(" [no completed courses detected]")
        for code in result.completed_courses:
            print(f"  {code}")
        print(f"Parsed {base} ({len(result.completed_courses)} completed courses)")

    if args.json:
        print(json.dumps(as_json, indent=2))


if __name__ == "__main__":
    main()
