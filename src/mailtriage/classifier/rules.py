"""Deterministic rule engine for priority, action and date eligibility.

The rules are held in one versioned policy table: named rule sets, each an
ordered list of (name, pattern) entries sharing a verdict. The rule engine
decides on its own when the model can be skipped, corrects the model's
priority where it is known to be wrong, and is the whole decision when the
model call fails.

Priority precedence (validate_priority):
    force-low > force-high (unless no-reply sender) > model value > medium

All patterns are case-insensitive and matched against the lowercased
"subject body sender" text with a regex timeout. A timed-out pattern
counts as no match.

Usage:
    from mailtriage.classifier.rules import RulePolicy

    policy = RulePolicy.default()
    if policy.should_skip_ai(subject, body, sender):
        priority = policy.determine_priority(subject, body, sender)
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import regex

from mailtriage.classifier.models import DEFAULT_PRIORITY, VALID_PRIORITIES, Priority
from mailtriage.core.logging import get_logger

if TYPE_CHECKING:
    from mailtriage.config_schema import RulesConfig

logger = get_logger(__name__)

POLICY_VERSION = "2025.11"

REGEX_TIMEOUT = 1.0

# Model actions shorter than this are replaced by pattern extraction
MIN_AI_ACTION_LENGTH = 10
# Cleaned model actions must be longer than this to be kept
MIN_KEPT_ACTION_LENGTH = 5
EXTRACTED_ACTION_MAX_LENGTH = 100
AI_ACTION_MAX_LENGTH = 200

_FLAGS = regex.IGNORECASE

NO_REPLY_PATTERN = r"(?:no-?reply|do-?not-?reply)@"

# ---------------------------------------------------------------------------
# Default policy table: rule set -> ordered (name, pattern) entries
# ---------------------------------------------------------------------------

DEFAULT_RULES: dict[str, list[tuple[str, str]]] = {
    "skip_ai": [
        ("one_time_code", r"\b(otp|verification code|2fa|tpin|auth code)\b"),
        ("validity_window", r"\bvalid for \d+ (min|hour)"),
        ("no_reply_sender", NO_REPLY_PATTERN),
        ("promotional", r"unsubscribe|promotional"),
        ("newsletter", r"newsletter|digest|weekly update"),
        ("social_notification", r"(linkedin|facebook|instagram|twitter) (notification|connection)"),
        ("transaction", r"transaction (statement|receipt|confirmation)"),
    ],
    "force_low": [
        ("one_time_code", r"\b(otp|verification code|tpin|2fa|auth code)\b"),
        ("validity_window", r"\bvalid for \d+"),
        ("no_reply_sender", NO_REPLY_PATTERN),
        ("promotional", r"unsubscribe|promotional"),
        (
            "transaction",
            r"(transaction|statement) (generated|available)"
            r"|transaction (statement|receipt|confirmation)",
        ),
        ("newsletter", r"newsletter|digest"),
    ],
    "force_high": [
        ("urgency", r"\b(urgent|asap|critical|immediate action)\b"),
        ("same_day_deadline", r"\b(deadline today|due today|interview today)\b"),
        ("final_notice", r"\bfinal (notice|reminder|warning)\b"),
    ],
    "fallback_low": [
        ("one_time_code", r"\b(otp|verification code|tpin|2fa)\b"),
        ("no_reply_sender", NO_REPLY_PATTERN),
        ("promotional", r"unsubscribe|promotional|newsletter"),
        ("transaction", r"transaction (statement|receipt)"),
    ],
    "fallback_high": [
        ("urgency", r"\b(urgent|asap|critical)\b"),
        ("near_deadline", r"\bdeadline (today|tomorrow)\b"),
        ("interview_today", r"\binterview today\b"),
        ("final_notice", r"\bfinal (notice|warning)\b"),
    ],
    "date_block": [
        ("one_time_code", r"\b(otp|verification code|tpin)\b"),
        ("validity_window", r"\bvalid for \d+"),
        ("expiry_window", r"\bexpires in \d+"),
        ("no_reply_sender", NO_REPLY_PATTERN),
        ("transaction", r"(transaction|statement) (generated|sent|available)"),
        ("marketing", r"promotional|marketing|newsletter"),
        ("offer_end", r"(sale|offer|deal) (ends|expires)"),
    ],
    "actionable_context": [
        ("event_noun", r"\b(meeting|appointment|deadline|due date|submission|interview)\b"),
        ("time_preposition", r"\b(scheduled for|set for|by|before|until)\b"),
        ("attendance", r"\b(rsvp|confirm|register|attend)\b"),
    ],
}

DEFAULT_MEETING_KEYWORDS: tuple[str, ...] = (
    "meeting",
    "call",
    "appointment",
    "discussion",
    "conference",
    "join via",
    "zoom",
    "google meet",
)

VERDICTS: dict[str, str] = {
    "skip_ai": "skip_ai",
    "force_low": "low",
    "force_high": "high",
    "fallback_low": "low",
    "fallback_high": "high",
    "date_block": "no_due_date",
    "actionable_context": "parse_body_dates",
    "meeting": "meeting",
}

# Action extraction, tried in order; group 1 is the action
ACTION_PATTERNS: tuple[regex.Pattern, ...] = (
    regex.compile(r"action required:?\s*([^.!?\n]+)", _FLAGS),
    regex.compile(r"\bplease\s+([^.!?\n]{10,100})", _FLAGS),
    regex.compile(r"\byou (?:need|must|should)\s+([^.!?\n]{10,100})", _FLAGS),
    regex.compile(r"\b(?:confirm|review|approve|respond|reply)\s+([^.!?\n]{10,100})", _FLAGS),
)

FILLER_PREFIX_PATTERN = regex.compile(r"^(please|kindly|you need to|you should)\s+", _FLAGS)


# ---------------------------------------------------------------------------
# Policy table types
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PolicyRule:
    """One named pattern in a rule set."""

    name: str
    pattern: regex.Pattern

    def matches(self, text: str) -> bool:
        try:
            return self.pattern.search(text, timeout=REGEX_TIMEOUT) is not None
        except TimeoutError:
            logger.warning("rule_pattern_timeout", rule=self.name)
            return False


@dataclass(frozen=True, slots=True)
class RuleSet:
    """Ordered rules sharing one verdict. The first matching rule wins."""

    name: str
    verdict: str
    rules: tuple[PolicyRule, ...]

    @classmethod
    def build(cls, name: str, entries: Iterable[tuple[str, str]]) -> RuleSet:
        rules = tuple(
            PolicyRule(name=rule_name, pattern=regex.compile(pattern, _FLAGS))
            for rule_name, pattern in entries
        )
        return cls(name=name, verdict=VERDICTS[name], rules=rules)

    def first_match(self, text: str) -> PolicyRule | None:
        for rule in self.rules:
            if rule.matches(text):
                return rule
        return None


@dataclass(frozen=True, slots=True)
class RuleMatch:
    """Which rule decided a verdict, for logging."""

    rule_set: str
    rule: str
    verdict: str


def combined_text(subject: str, body: str, sender: str) -> str:
    """The lowercased text every rule set is matched against."""
    return f"{subject or ''} {body or ''} {sender or ''}".lower()


def _meeting_rule_set(keywords: Iterable[str]) -> RuleSet:
    entries = [(keyword, rf"\b{regex.escape(keyword.lower())}\b") for keyword in keywords]
    return RuleSet.build("meeting", entries)


def _custom_entries(name: str, patterns: list[str]) -> list[tuple[str, str]]:
    return [(f"{name}_{i}", pattern) for i, pattern in enumerate(patterns, start=1)]


# ---------------------------------------------------------------------------
# Rule policy
# ---------------------------------------------------------------------------


class RulePolicy:
    """The authoritative rule table and the decisions built on it.

    Attributes:
        version: Policy version label (suffixed with '+config' when overridden)
        rule_sets: Rule sets by name, in evaluation order
    """

    def __init__(self, rule_sets: dict[str, RuleSet], version: str = POLICY_VERSION):
        missing = set(VERDICTS) - set(rule_sets)
        if missing:
            raise ValueError(f"Rule policy missing rule sets: {', '.join(sorted(missing))}")
        self.rule_sets = rule_sets
        self.version = version
        self._no_reply = regex.compile(NO_REPLY_PATTERN, _FLAGS)

    @classmethod
    def default(cls) -> RulePolicy:
        """Build the policy from the built-in table."""
        rule_sets = {name: RuleSet.build(name, entries) for name, entries in DEFAULT_RULES.items()}
        rule_sets["meeting"] = _meeting_rule_set(DEFAULT_MEETING_KEYWORDS)
        return cls(rule_sets)

    @classmethod
    def from_config(cls, rules_config: RulesConfig | None) -> RulePolicy:
        """Build the policy, replacing rule sets overridden in config.yaml."""
        if rules_config is None:
            return cls.default()

        overrides = rules_config.model_dump()
        rule_sets: dict[str, RuleSet] = {}
        for name, entries in DEFAULT_RULES.items():
            custom = overrides.get(name)
            if custom:
                rule_sets[name] = RuleSet.build(name, _custom_entries(name, custom))
            else:
                rule_sets[name] = RuleSet.build(name, entries)

        keywords = overrides.get("meeting_keywords") or DEFAULT_MEETING_KEYWORDS
        rule_sets["meeting"] = _meeting_rule_set(keywords)

        overridden = any(value for value in overrides.values())
        version = f"{POLICY_VERSION}+config" if overridden else POLICY_VERSION
        return cls(rule_sets, version=version)

    def match(self, rule_set: str, text: str) -> RuleMatch | None:
        """Evaluate one rule set against already-combined text."""
        rules = self.rule_sets[rule_set]
        rule = rules.first_match(text)
        if rule is None:
            return None
        return RuleMatch(rule_set=rule_set, rule=rule.name, verdict=rules.verdict)

    def describe(self) -> list[dict[str, Any]]:
        """Flatten the table for display: one row per rule, in order."""
        return [
            {
                "rule_set": rule_set.name,
                "verdict": rule_set.verdict,
                "rule": rule.name,
                "pattern": rule.pattern.pattern,
            }
            for rule_set in self.rule_sets.values()
            for rule in rule_set.rules
        ]

    def is_no_reply_sender(self, sender: str) -> bool:
        return self._no_reply.search(sender or "", timeout=REGEX_TIMEOUT) is not None

    # -- skip decision ------------------------------------------------------

    def should_skip_ai(self, subject: str, body: str, sender: str) -> bool:
        """Return True when the message is obviously low-value.

        Used to avoid spending a model call on OTPs, automated senders,
        marketing, newsletters, social notifications and receipts.
        """
        hit = self.match("skip_ai", combined_text(subject, body, sender))
        if hit:
            logger.debug("rule_skip_ai", rule=hit.rule)
        return hit is not None

    # -- priority -----------------------------------------------------------

    def validate_priority(
        self,
        subject: str,
        body: str,
        sender: str,
        ai_priority: Any,
    ) -> Priority:
        """Correct the model's priority with the force rules.

        Args:
            subject: Subject line
            body: Normalized body
            sender: Sender
            ai_priority: Whatever the model returned for priority

        Returns:
            Final priority
        """
        text = combined_text(subject, body, sender)

        low = self.match("force_low", text)
        if low:
            if ai_priority != "low":
                logger.debug("priority_forced", verdict="low", rule=low.rule, ai_priority=ai_priority)
            return "low"

        high = self.match("force_high", text)
        if high and not self.is_no_reply_sender(sender):
            if ai_priority != "high":
                logger.debug(
                    "priority_forced", verdict="high", rule=high.rule, ai_priority=ai_priority
                )
            return "high"

        if isinstance(ai_priority, str):
            candidate = ai_priority.strip().lower()
            if candidate in VALID_PRIORITIES:
                return candidate  # type: ignore[return-value]

        return DEFAULT_PRIORITY

    def determine_priority(self, subject: str, body: str, sender: str) -> Priority:
        """Rule-only priority for the skip and fallback paths."""
        text = combined_text(subject, body, sender)

        if self.match("fallback_low", text):
            return "low"

        if self.match("fallback_high", text) and not self.is_no_reply_sender(sender):
            return "high"

        return DEFAULT_PRIORITY

    # -- actions ------------------------------------------------------------

    def validate_action(self, content: str, ai_action: Any) -> str | None:
        """Clean the model's action, or extract one when it is unusable."""
        if (
            not isinstance(ai_action, str)
            or ai_action.strip().lower() == "null"
            or len(ai_action.strip()) < MIN_AI_ACTION_LENGTH
        ):
            return self.extract_action(content)

        action = FILLER_PREFIX_PATTERN.sub("", ai_action.strip(), count=1, timeout=REGEX_TIMEOUT)
        action = action.strip()[:AI_ACTION_MAX_LENGTH].strip()
        return action if len(action) > MIN_KEPT_ACTION_LENGTH else None

    def extract_action(self, text: str) -> str | None:
        """Pull a directive out of the body with the ordered action patterns."""
        if not text:
            return None
        for pattern in ACTION_PATTERNS:
            try:
                match = pattern.search(text, timeout=REGEX_TIMEOUT)
            except TimeoutError:
                logger.warning("action_pattern_timeout", pattern=pattern.pattern[:50])
                continue
            if match and match.group(1).strip():
                return match.group(1).strip()[:EXTRACTED_ACTION_MAX_LENGTH].strip()
        return None

    # -- dates and meetings -------------------------------------------------

    def blocks_due_date(self, text: str) -> RuleMatch | None:
        """Match the date-exclusion rules against combined text."""
        return self.match("date_block", text)

    def has_actionable_context(self, text: str) -> bool:
        """True when the text justifies parsing dates out of the body."""
        return self.match("actionable_context", text) is not None

    def is_meeting_email(self, subject: str, body: str) -> bool:
        """True when subject or body names a meeting-like event (whole words)."""
        text = f"{subject or ''} {body or ''}".lower()
        return self.match("meeting", text) is not None


# ---------------------------------------------------------------------------
# Module-level helpers bound to the default policy
# ---------------------------------------------------------------------------

_DEFAULT_POLICY = RulePolicy.default()


def default_policy() -> RulePolicy:
    """Return the shared, immutable built-in policy."""
    return _DEFAULT_POLICY


def should_skip_ai(subject: str, body: str, sender: str) -> bool:
    return _DEFAULT_POLICY.should_skip_ai(subject, body, sender)


def validate_priority(subject: str, body: str, sender: str, ai_priority: Any) -> Priority:
    return _DEFAULT_POLICY.validate_priority(subject, body, sender, ai_priority)


def determine_priority(subject: str, body: str, sender: str) -> Priority:
    return _DEFAULT_POLICY.determine_priority(subject, body, sender)


def validate_action(content: str, ai_action: Any) -> str | None:
    return _DEFAULT_POLICY.validate_action(content, ai_action)


def extract_action(text: str) -> str | None:
    return _DEFAULT_POLICY.extract_action(text)


def is_meeting_email(subject: str, body: str) -> bool:
    return _DEFAULT_POLICY.is_meeting_email(subject, body)
