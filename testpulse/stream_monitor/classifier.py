"""Classify raw test-runner output lines into structured events.

Each line is matched against an ordered table of ``(pattern, builder)``
rows; the first row that matches produces the event.  Supporting another
runner dialect means appending rows to ``RULES``, not adding branches.

Two families of output are understood:

* symbolic markers (``✓ name (25ms)``, ``✗ name``, ``○ name``) with
  indentation-based nesting, as printed by Jest, Mocha and Vitest;
* tabular summaries (``Tests: 4 passed, 1 failed, 5 total``) and the
  pytest / Go equivalents.

Classification never raises.  Lines that match nothing are dropped.
"""

import re
from collections.abc import Callable, Iterable
from datetime import datetime

from testpulse.stream_monitor.models.test_event import (
    SuiteSummary,
    TestEvent,
    utc_now,
)

ClassifiedEvent = TestEvent | SuiteSummary
Builder = Callable[[re.Match[str], datetime], ClassifiedEvent | None]

_ANSI_RE = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]|\x1b[@-_]")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")

_TRAILING_DURATION_RE = re.compile(
    r"\((?P<duration>\d+(?:\.\d+)?)\s*(?P<unit>ms|s)\)$"
)

_PASS_GLYPHS = r"(?:✓|✔|√|\[PASS\])"
_FAIL_GLYPHS = r"(?:✗|✕|×|✘|\[FAIL\])"
_SKIP_GLYPHS = r"(?:○|◌|⚬|↓|\[SKIP\])"

_TALLY_RE = re.compile(
    r"(?P<count>\d+)\s+(?P<label>passed|failed|skipped|pending|todo|errors?)",
    re.IGNORECASE,
)
_TOTAL_RE = re.compile(r"(?:(?P<done>\d+)\s+of\s+)?(?P<total>\d+)\s+total")


def clean_line(line: object) -> str:
    """Coerce input to text and strip ANSI and control characters."""
    if not isinstance(line, str):
        return ""
    return _CONTROL_RE.sub("", _ANSI_RE.sub("", line)).rstrip()


def indent_of(line: str) -> int:
    """Width of the leading whitespace, counting a tab as four columns."""
    stripped = line.lstrip(" \t")
    return len(line[: len(line) - len(stripped)].expandtabs(4))


def _to_ms(value: str | None, unit: str | None) -> float | None:
    if value is None:
        return None
    amount = float(value)
    return amount * 1000 if (unit or "ms").lower() == "s" else amount


def _start(match: re.Match[str], now: datetime) -> TestEvent:
    groups = match.groupdict()
    file_name = groups.get("file")
    test_name = groups.get("test") or file_name or ""
    return TestEvent(
        kind="start", test_name=test_name.strip(), file_name=file_name, timestamp=now
    )


def split_duration(text: str) -> tuple[str, float | None]:
    """Split ``name (25ms)`` into the name and the duration in milliseconds."""
    match = _TRAILING_DURATION_RE.search(text)
    if match is None or match.start() == 0:
        return text, None
    name = text[: match.start()]
    if not name[-1].isspace() or not name.strip():
        return text, None
    return name.strip(), _to_ms(match.group("duration"), match.group("unit"))


def _marker(kind: str) -> Builder:
    def build(match: re.Match[str], now: datetime) -> TestEvent:
        name, duration_ms = split_duration(match.group("rest"))
        return TestEvent(
            kind=kind,  # type: ignore[arg-type]
            test_name=name.strip(),
            duration_ms=duration_ms,
            timestamp=now,
        )

    return build


_STATUS_KINDS = {
    "PASS": "pass",
    "PASSED": "pass",
    "XPASS": "pass",
    "FAIL": "fail",
    "FAILED": "fail",
    "ERROR": "fail",
    "SKIP": "skip",
    "SKIPPED": "skip",
    "XFAIL": "skip",
}


def _status(match: re.Match[str], now: datetime) -> TestEvent:
    groups = match.groupdict()
    return TestEvent(
        kind=_STATUS_KINDS[groups["status"].upper()],  # type: ignore[arg-type]
        test_name=groups["name"].strip(),
        file_name=groups.get("file"),
        duration_ms=_to_ms(groups.get("duration"), groups.get("unit")),
        timestamp=now,
    )


def _parse_tallies(body: str) -> dict[str, int]:
    counts = {"passed": 0, "failed": 0, "skipped": 0}
    for tally in _TALLY_RE.finditer(body):
        label = tally.group("label").lower()
        count = int(tally.group("count"))
        if label == "passed":
            counts["passed"] += count
        elif label in {"failed", "error", "errors"}:
            counts["failed"] += count
        else:
            counts["skipped"] += count
    return counts


def _tally(scope: str) -> Builder:
    def build(match: re.Match[str], now: datetime) -> SuiteSummary:
        body = match.group("body")
        total_match = _TOTAL_RE.search(body)
        total = int(total_match.group("total")) if total_match else None
        return SuiteSummary(
            scope=scope,  # type: ignore[arg-type]
            total=total,
            timestamp=now,
            **_parse_tallies(body),
        )

    return build


def _pytest_summary(match: re.Match[str], now: datetime) -> SuiteSummary:
    counts = _parse_tallies(match.group("body"))
    return SuiteSummary(
        scope="tests",
        total=sum(counts.values()),
        duration_ms=_to_ms(match.group("duration"), "s"),
        timestamp=now,
        **counts,
    )


def _time(match: re.Match[str], now: datetime) -> SuiteSummary:
    return SuiteSummary(
        duration_ms=_to_ms(match.group("duration"), match.group("unit")),
        timestamp=now,
    )


_MOCHA_LABELS = {"passing": "passed", "failing": "failed", "pending": "skipped"}


def _mocha_summary(match: re.Match[str], now: datetime) -> SuiteSummary:
    label = _MOCHA_LABELS[match.group("label")]
    return SuiteSummary(
        duration_ms=_to_ms(match.group("duration"), match.group("unit")),
        timestamp=now,
        **{label: int(match.group("count"))},
    )


RULES: list[tuple[re.Pattern[str], Builder]] = [
    # Start markers
    (
        re.compile(
            r"^\s*Running:?\s+(?P<file>\S+)"
            r"(?:\s+::\s+(?P<test>.+)|\s+\(\d+ of \d+\))?$"
        ),
        _start,
    ),
    (re.compile(r"^\s*Starting test:\s*(?P<test>.+)$"), _start),
    (re.compile(r"^\s*RUNS\s+(?P<file>\S+)\s*$"), _start),
    (
        re.compile(
            r"^\s*(?:PASS|FAIL)\s+(?P<file>\S+\.\w+)"
            r"(?:\s+\(\d+(?:\.\d+)?\s*m?s\))?\s*$"
        ),
        _start,
    ),
    (re.compile(r"^\s*=== RUN\s+(?P<test>\S+)\s*$"), _start),
    # Symbolic markers
    (re.compile(rf"^\s*{_PASS_GLYPHS}\s+(?P<rest>.+)$"), _marker("pass")),
    (re.compile(rf"^\s*{_FAIL_GLYPHS}\s+(?P<rest>.+)$"), _marker("fail")),
    (re.compile(rf"^\s*{_SKIP_GLYPHS}\s+(?P<rest>.+)$"), _marker("skip")),
    # Status words (pytest -v, go test -v)
    (
        re.compile(
            r"^(?P<file>[^\s:]+\.py)::(?P<name>\S+)\s+"
            r"(?P<status>PASSED|FAILED|SKIPPED|ERROR|XFAIL|XPASS)\b"
        ),
        _status,
    ),
    (
        re.compile(
            r"^\s*--- (?P<status>PASS|FAIL|SKIP): (?P<name>\S+)"
            r"(?: \((?P<duration>\d+(?:\.\d+)?)(?P<unit>s)\))?\s*$"
        ),
        _status,
    ),
    # Summaries
    (re.compile(r"^\s*Tests?:\s+(?P<body>.*\btotal)\s*$"), _tally("tests")),
    (re.compile(r"^\s*Test Suites:\s+(?P<body>.*\btotal)\s*$"), _tally("suites")),
    (
        re.compile(r"^\s*Time:\s+(?P<duration>\d+(?:\.\d+)?)\s*(?P<unit>ms|s)\b"),
        _time,
    ),
    (
        re.compile(
            r"^=+\s+(?P<body>\d+ \w+(?:, \d+ \w+)*) in "
            r"(?P<duration>\d+(?:\.\d+)?)s\b.*=+\s*$"
        ),
        _pytest_summary,
    ),
    (
        re.compile(
            r"^\s*(?P<count>\d+) (?P<label>passing|failing|pending)"
            r"(?: \((?P<duration>\d+(?:\.\d+)?)(?P<unit>ms|s)\))?\s*$"
        ),
        _mocha_summary,
    ),
]


def classify_line(line: object, now: datetime | None = None) -> ClassifiedEvent | None:
    """Turn one line of output into an event, or None when nothing matches."""
    text = clean_line(line)
    if not text.strip():
        return None

    timestamp = now or utc_now()
    for pattern, build in RULES:
        match = pattern.match(text)
        if match:
            return build(match, timestamp)
    return None


class LineClassifier:
    """Classify batches of lines, attaching error text to failures.

    An unmatched line indented deeper than the most recent failure marker
    is treated as that failure's error output.  Only the previous line's
    state is consulted.
    """

    def __init__(self, now: Callable[[], datetime] = utc_now) -> None:
        """Initialize classifier with a timestamp source."""
        self._now = now

    def classify(self, line: object) -> ClassifiedEvent | None:
        """Classify a single line without continuation handling."""
        return classify_line(line, self._now())

    def classify_lines(self, lines: Iterable[object]) -> list[ClassifiedEvent]:
        """Classify lines in order, returning the events they produce."""
        events: list[ClassifiedEvent] = []
        pending_fail: TestEvent | None = None
        fail_indent = 0

        for raw in lines:
            text = clean_line(raw)
            event = self.classify(text)

            if event is None:
                if (
                    pending_fail is not None
                    and text.strip()
                    and indent_of(text) > fail_indent
                ):
                    pending_fail = _append_error(pending_fail, text.strip())
                continue

            if pending_fail is not None:
                events.append(pending_fail)
                pending_fail = None

            if isinstance(event, TestEvent) and event.kind == "fail":
                pending_fail = event
                fail_indent = indent_of(text)
            else:
                events.append(event)

        if pending_fail is not None:
            events.append(pending_fail)
        return events


def _append_error(event: TestEvent, text: str) -> TestEvent:
    error_text = f"{event.error_text}\n{text}" if event.error_text else text
    return event.model_copy(update={"error_text": error_text})
