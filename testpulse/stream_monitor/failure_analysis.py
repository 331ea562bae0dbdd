"""Classify failure output into actionable insights."""

import re
from collections.abc import Callable
from typing import Literal, NamedTuple

from pydantic import BaseModel, Field

from testpulse.stream_monitor.models.test_event import TestEvent
from testpulse.stream_monitor.watchers import TestWatcher

FailureType = Literal[
    "syntax_error",
    "type_error",
    "logic_error",
    "dependency_error",
    "timeout_error",
    "async_error",
]
Severity = Literal["low", "medium", "high", "critical"]

SEVERITY_ORDER: dict[str, int] = {"critical": 0, "high": 1, "medium": 2, "low": 3}


class FailureInsight(BaseModel):
    """Diagnosis of one failure's error output."""

    test_name: str | None = Field(default=None, description="Failing test")
    type: FailureType = Field(..., description="Category of error")
    severity: Severity = Field(..., description="How urgent the error is")
    description: str = Field(..., description="What went wrong")
    suggested_fix: str = Field(..., description="How to address it")
    confidence: float = Field(..., ge=0, le=1)


def _type_error_fix(match: re.Match[str], text: str) -> str:
    if "undefined" in text:
        return (
            "Check for undefined values. "
            "Add null checks or initialize variables properly."
        )
    if "is not a function" in text:
        return (
            "Verify the object has the expected method. "
            "Check imports and type definitions."
        )
    return "Review type definitions and ensure proper type checking."


class _ErrorRule(NamedTuple):
    pattern: re.Pattern[str]
    type: FailureType
    severity: Severity
    confidence: float
    describe: Callable[[re.Match[str]], str]
    fix: Callable[[re.Match[str], str], str]


ERROR_RULES: list[_ErrorRule] = [
    _ErrorRule(
        pattern=re.compile(r"Cannot find module ['\"`](.+?)['\"`]"),
        type="dependency_error",
        severity="critical",
        confidence=0.95,
        describe=lambda m: f"Missing module: {m.group(1)}",
        fix=lambda m, _: f"Install the missing module: npm install {m.group(1)}",
    ),
    _ErrorRule(
        pattern=re.compile(r"(?:ModuleNotFoundError|ImportError): (.+)"),
        type="dependency_error",
        severity="critical",
        confidence=0.95,
        describe=lambda m: f"Import failed: {m.group(1)}",
        fix=lambda m, _: "Install the missing package or fix the import path.",
    ),
    _ErrorRule(
        pattern=re.compile(r"SyntaxError: (.+)"),
        type="syntax_error",
        severity="high",
        confidence=0.9,
        describe=lambda m: f"Syntax error: {m.group(1)}",
        fix=lambda m, _: (
            "Fix syntax errors in the code. Check for missing brackets, "
            "semicolons, or typos."
        ),
    ),
    _ErrorRule(
        pattern=re.compile(r"TypeError: (.+)"),
        type="type_error",
        severity="high",
        confidence=0.85,
        describe=lambda m: f"Type error: {m.group(1)}",
        fix=_type_error_fix,
    ),
    _ErrorRule(
        pattern=re.compile(r"(?:ReferenceError|NameError): (.+?) is not defined"),
        type="dependency_error",
        severity="high",
        confidence=0.7,
        describe=lambda m: f"Reference error: {m.group(1)} is not defined",
        fix=lambda m, _: (
            "Check imports and ensure all dependencies are properly installed "
            "and imported."
        ),
    ),
    _ErrorRule(
        pattern=re.compile(r"(?:Timeout of (\d+)ms exceeded|timed out)", re.IGNORECASE),
        type="timeout_error",
        severity="medium",
        confidence=0.7,
        describe=lambda m: (
            f"Test timeout exceeded ({m.group(1)}ms)"
            if m.group(1)
            else "Test timed out"
        ),
        fix=lambda m, _: (
            "Optimize slow operations, increase timeout, or check for infinite loops."
        ),
    ),
    _ErrorRule(
        pattern=re.compile(r"Expected (.+?),? but received (.+)", re.IGNORECASE),
        type="logic_error",
        severity="medium",
        confidence=0.7,
        describe=lambda m: (
            f"Assertion failed: expected {m.group(1)} but received {m.group(2)}"
        ),
        fix=lambda m, _: (
            "Review test logic and implementation. Check if the expected "
            "behavior matches the actual implementation."
        ),
    ),
    _ErrorRule(
        pattern=re.compile(r"AssertionError: (.+)"),
        type="logic_error",
        severity="medium",
        confidence=0.7,
        describe=lambda m: f"Assertion failed: {m.group(1)}",
        fix=lambda m, _: (
            "Review test logic and implementation. Check if the expected "
            "behavior matches the actual implementation."
        ),
    ),
    _ErrorRule(
        pattern=re.compile(
            r"(?:Promise rejection was not handled|UnhandledPromiseRejection)",
            re.IGNORECASE,
        ),
        type="async_error",
        severity="high",
        confidence=0.7,
        describe=lambda m: "Unhandled promise rejection",
        fix=lambda m, _: (
            "Add proper error handling for promises. Use try-catch blocks "
            "or .catch() methods."
        ),
    ),
]


def analyze_error(
    text: str | None, test_name: str | None = None
) -> FailureInsight | None:
    """Diagnose error output using the first matching rule."""
    if not text:
        return None

    for rule in ERROR_RULES:
        match = rule.pattern.search(text)
        if match is None:
            continue
        confidence = rule.confidence
        if text.count(match.group(0)) > 1:
            confidence = min(1.0, confidence + 0.1)
        return FailureInsight(
            test_name=test_name,
            type=rule.type,
            severity=rule.severity,
            description=rule.describe(match),
            suggested_fix=rule.fix(match, text),
            confidence=confidence,
        )
    return None


class FailureCollector(TestWatcher):
    """Collect a diagnosis for every failed test with recognisable output."""

    def __init__(self) -> None:
        """Initialize an empty collector."""
        self._insights: list[FailureInsight] = []
        self._seen: set[tuple[str, str]] = set()

    def on_test_complete(self, event: TestEvent) -> None:
        """Diagnose failures; other outcomes are ignored."""
        if event.kind != "fail":
            return
        insight = analyze_error(event.error_text, event.test_name)
        if insight is None:
            return
        key = (insight.type, insight.description)
        if key in self._seen:
            return
        self._seen.add(key)
        self._insights.append(insight)

    @property
    def insights(self) -> list[FailureInsight]:
        """Diagnoses ordered by severity, then confidence."""
        return sorted(
            self._insights,
            key=lambda i: (SEVERITY_ORDER[i.severity], -i.confidence),
        )

    def clear(self) -> None:
        """Forget collected diagnoses."""
        self._insights.clear()
        self._seen.clear()
