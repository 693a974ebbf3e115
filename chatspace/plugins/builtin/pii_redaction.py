"""PII redaction interceptor.

Scans outgoing user messages (and, optionally, model responses) for
personal data and applies the configured action:

    redact -> replace each match with a placeholder and hand the new
              message to the next interceptor
    warn   -> let the message through unchanged, record findings
    block  -> stop the chain; the LLM is never called

Plugin settings (``Settings.plugin_config["pii-redaction"]``):
    action: "redact" | "warn" | "block"  (default "redact")
    scan_responses: bool                   (default True)
    disabled_patterns: list of pattern names to skip

Responses are scanned once the full text is known, after streaming ends. In
a streamed turn the raw deltas have already gone out as ``token`` events, so
redaction only changes the final ``done`` message that clients persist.
Set ``scan_responses`` to false when that final rewrite is not wanted.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum

import structlog

from chatspace.plugins.base import (
    MessageInterceptor,
    PluginCategory,
    PluginContext,
    PluginMetadata,
)
from chatspace.plugins.context import ConversationContext, InterceptResult, Message

log = structlog.get_logger(__name__)


class PIIAction(StrEnum):
    """Action to take when PII is detected."""

    REDACT = "redact"  # Replace PII with placeholder
    WARN = "warn"  # Log warning, allow through
    BLOCK = "block"  # Reject the message


@dataclass(frozen=True)
class PIIPattern:
    """A pattern for detecting PII in text."""

    name: str
    pattern: str  # Regex pattern
    replacement: str  # Replacement text for REDACT action


@dataclass(frozen=True)
class PIIFinding:
    pattern_name: str
    start: int
    end: int
    replacement: str


# Order matters: earlier patterns win when two matches overlap
BUILTIN_PATTERNS: tuple[PIIPattern, ...] = (
    PIIPattern(
        name="email",
        pattern=r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b",
        replacement="[REDACTED_EMAIL]",
    ),
    PIIPattern(
        name="credit_card",
        pattern=(
            r"\b(?:"
            r"4\d{3}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}"  # Visa
            r"|5[1-5]\d{2}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}"  # Mastercard
            r"|3[47]\d{2}[\s-]?\d{6}[\s-]?\d{5}"  # Amex
            r")\b"
        ),
        replacement="[REDACTED_CREDIT_CARD]",
    ),
    PIIPattern(
        name="ssn",
        pattern=r"\b\d{3}-\d{2}-\d{4}\b",
        replacement="[REDACTED_SSN]",
    ),
    PIIPattern(
        name="phone",
        pattern=r"(?<![\w-])(?:\+\d{1,3}[\s.-]?)?\(?\d{3}\)?[\s.-]?\d{3}[\s.-]?\d{4}\b",
        replacement="[REDACTED_PHONE]",
    ),
    PIIPattern(
        name="ip_address",
        pattern=(
            r"\b(?:(?:25[0-5]|2[0-4]\d|[01]?\d\d?)\.){3}"
            r"(?:25[0-5]|2[0-4]\d|[01]?\d\d?)\b"
        ),
        replacement="[REDACTED_IP]",
    ),
)


class PIIScanner:
    """Finds and redacts PII matches in text."""

    def __init__(self, patterns: tuple[PIIPattern, ...] = BUILTIN_PATTERNS) -> None:
        self._compiled = [(p, re.compile(p.pattern)) for p in patterns]

    def scan(self, text: str) -> list[PIIFinding]:
        """Non-overlapping findings, sorted by position."""
        findings: list[PIIFinding] = []
        taken: list[tuple[int, int]] = []
        for pattern, regex in self._compiled:
            for match in regex.finditer(text):
                start, end = match.span()
                if any(start < t_end and end > t_start for t_start, t_end in taken):
                    continue
                taken.append((start, end))
                findings.append(PIIFinding(pattern.name, start, end, pattern.replacement))
        findings.sort(key=lambda f: f.start)
        return findings

    def redact(self, text: str, findings: list[PIIFinding]) -> str:
        # Replace from the end so earlier offsets stay valid
        for finding in sorted(findings, key=lambda f: f.start, reverse=True):
            text = text[: finding.start] + finding.replacement + text[finding.end :]
        return text


class PIIRedactionPlugin(MessageInterceptor):
    """Redacts, flags or blocks personal data in chat messages."""

    def __init__(self) -> None:
        self._metadata = PluginMetadata(
            id="pii-redaction",
            name="PII Redaction",
            version="1.0.0",
            category=PluginCategory.SAFETY,
            description="Detects emails, phone numbers, card numbers and similar data in messages",
            author="Chatspace",
            icon="shield",
        )
        self.action = PIIAction.REDACT
        self.scan_responses = True
        self._scanner = PIIScanner()

    @property
    def metadata(self) -> PluginMetadata:
        return self._metadata

    async def initialize(self, context: PluginContext) -> None:
        settings = context.settings
        self.action = PIIAction(settings.get("action", PIIAction.REDACT))
        self.scan_responses = bool(settings.get("scan_responses", True))

        disabled = set(settings.get("disabled_patterns", ()))
        self._scanner = PIIScanner(tuple(p for p in BUILTIN_PATTERNS if p.name not in disabled))
        log.info(
            "pii.plugin_loaded",
            action=str(self.action),
            scan_responses=self.scan_responses,
            disabled_patterns=sorted(disabled),
        )

    async def on_before_send(
        self, message: Message, context: ConversationContext
    ) -> InterceptResult:
        return self._check(message, context, block_allowed=True)

    async def on_after_receive(
        self, message: Message, context: ConversationContext
    ) -> InterceptResult:
        if not self.scan_responses:
            return InterceptResult()
        # A response is never blocked; at most it is redacted
        return self._check(message, context, block_allowed=False)

    def _check(
        self, message: Message, context: ConversationContext, *, block_allowed: bool
    ) -> InterceptResult:
        findings = self._scanner.scan(message.content)
        if not findings:
            return InterceptResult()

        names = sorted({f.pattern_name for f in findings})
        context.plugin_data["pii_findings"] = names

        if self.action == PIIAction.BLOCK and block_allowed:
            log.warning("pii.blocked", finding_count=len(findings), pattern_names=names)
            return InterceptResult.cancel(f"PII detected: {', '.join(names)}", pii_findings=names)

        if self.action == PIIAction.WARN:
            log.warning("pii.warning", finding_count=len(findings), pattern_names=names)
            return InterceptResult(metadata={"pii_findings": names})

        redacted = self._scanner.redact(message.content, findings)
        log.info("pii.redacted", redaction_count=len(findings), pattern_names=names)
        return InterceptResult.replace_with(
            message.with_content(redacted),
            pii_findings=names,
            pii_redactions=len(findings),
        )
