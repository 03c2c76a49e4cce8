from __future__ import annotations

import argparse
import re
from pathlib import Path
from typing import List, Optional, Pattern, Set

from transcript_facts.parse_transcript import (
    DEFAULT_CONFIG,
    ExtractionEvent,
    extract_completed_courses,
    extract_major,
    extract_total_credits,
    normalize,
)

try:
    import pdfplumber  # type: ignore
except Exception:
    pdfplumber = None  # type: ignore

# Where the course table usually starts in the normalized text.
SECTION_ANCHORS = ("TRANSFER", "SUB CAT", "CMPT")


def parse_pages_arg(p: Optional[str]) -> Optional[Set[int]]:
    if not p:
        return None
    pages: Set[int] = set()
    for chunk in (c.strip() for c in p.split(",")):
        m = re.fullmatch(r"(\d+)(?:-(\d+))?", chunk)
        if not m:
            continue
        a = int(m.group(1))
        b = int(m.group(2) or a)
        pages.update(range(min(a, b), max(a, b) + 1))
    return pages


def read_pages(path: Path, page_set: Optional[Set[int]] = None) -> List[str]:
    if path.suffix.lower() != ".pdf":
        return [path.read_text(encoding="utf-8", errors="replace")]
    if pdfplumber is None:
        return []
    out: List[str] = []
    with pdfplumber.open(path) as pdf:  # type: ignore[misc]
        for pidx, page in enumerate(pdf.pages, start=1):  # type: ignore[attr-defined]
            if page_set and pidx not in page_set:
                continue
            out.append(page.extract_text() or "")
    return out


def course_section_slice(text: str, width: int = 1200) -> str:
    """Normalized text around where the course rows begin, for regex debugging."""
    starts = []
    for anchor in SECTION_ANCHORS:
        idx = text.find(anchor)
        if idx == -1:
            continue
        # back up a little before the first department code
        starts.append(max(0, idx - 100) if anchor == "CMPT" else idx)
    if not starts:
        return ""
    start = min(starts)
    return text[start : start + width]


def _print_event(ev: ExtractionEvent) -> None:
    if ev.stage == "normalized":
        return
    codes = ", ".join(ev.codes[:15])
    print(f"  {ev.stage:<14} {ev.count:>4}  {codes}  {ev.detail}".rstrip())


def main(argv: Optional[List[str]] = None) -> None:
    ap = argparse.ArgumentParser(
        prog="transcript-facts-debug",
        description="Dump transcript text and per-tier course matches for debugging",
    )
    ap.add_argument("path", help="Path to transcript PDF or text file")
    ap.add_argument("--pages", help="Pages to include, e.g. 1-2,4", default=None)
    ap.add_argument("--grep", help="Regex to filter raw lines", default=None)
    ap.add_argument("--width", type=int, default=1200, help="Course section slice width")
    args = ap.parse_args(argv)

    path = Path(args.path)
    if not path.exists():
        print("File not found:", path)
        return
    if path.suffix.lower() == ".pdf" and pdfplumber is None:
        print("pdfplumber unavailable in this environment.")
        return

    rx: Optional[Pattern[str]] = re.compile(args.grep, re.I) if args.grep else None
    pages = read_pages(path, parse_pages_arg(args.pages))
    for pidx, page_text in enumerate(pages, start=1):
        for line in page_text.splitlines():
            if rx and not rx.search(line):
                continue
            print(f"[page {pidx}] {line}")
    print("-" * 60)

    raw = "\n".join(pages)
    text = normalize(raw)
    print(f"raw length: {len(raw)}  normalized length: {len(text)}")
    print(f"normalized sample: {text[:400]!r}")
    section = course_section_slice(text, args.width)
    if section:
        print("--- normalized text around courses ---")
        print(repr(section))
        print("--- end slice ---")

    print("tier events:")
    extract_completed_courses(raw, DEFAULT_CONFIG, on_event=_print_event)
    print(f"major: {extract_major(raw)!r}")
    print(f"total credits: {extract_total_credits(raw)!r}")


if __name__ == "__main__":
    main()
