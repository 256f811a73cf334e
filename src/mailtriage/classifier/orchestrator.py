"""Classification orchestrator.

Turns one inbound message into a ClassificationResult:

1. Normalize the body
2. If the rule engine says the message is obviously low-value, skip the
   model and return the rule-based result (method 'rules_skip')
3. Otherwise ask the model for summary, priority, action and dueDate,
   then correct each field with the rule engine and the date resolver
4. Any model or parse failure returns the rule-based result
   (method 'rules_fallback')

classify() never raises. The rule-based result for a given message and
day is deterministic, so a failing provider always yields the same answer.

Usage:
    from mailtriage.classifier.orchestrator import EmailClassifier

    classifier = EmailClassifier.from_config(config)
    result = await classifier.classify(message)
"""

from __future__ import annotations

import time
from typing import Any

from mailtriage.classifier.ai_client import (
    CompletionClient,
    create_completion_client,
    parse_json_answer,
)
from mailtriage.classifier.dates import DateResolver
from mailtriage.classifier.models import ClassificationResult, InboundMessage, Method
from mailtriage.classifier.normalizer import ContentNormalizer
from mailtriage.classifier.prompts import RESPONSE_FIELDS, SYSTEM_PROMPT, build_user_prompt
from mailtriage.classifier.rules import RulePolicy
from mailtriage.config_schema import AppConfig
from mailtriage.core.errors import ClassificationError, CompletionError, ResponseParseError
from mailtriage.core.logging import get_logger, sender_domain

logger = get_logger(__name__)

DEFAULT_SUMMARY_MAX_LENGTH = 200
EMPTY_SUMMARY = "(no content)"


def fallback_summary(content: str, subject: str, max_length: int = DEFAULT_SUMMARY_MAX_LENGTH) -> str:
    """Summary used when the model is skipped or fails.

    The leading slice of the content, with '...' when it was cut. Empty
    content falls back to the subject, then to a fixed placeholder.
    """
    if content:
        if len(content) > max_length:
            return content[:max_length] + "..."
        return content
    if subject and subject.strip():
        return subject.strip()
    return EMPTY_SUMMARY


class EmailClassifier:
    """Hybrid rule/model email classifier.

    Attributes:
        client: Completion client used for the model path
        normalizer: Body normalizer
        policy: Rule policy
        resolver: Due date resolver
        summary_max_length: Content slice length for fallback summaries
    """

    def __init__(
        self,
        client: CompletionClient,
        normalizer: ContentNormalizer | None = None,
        policy: RulePolicy | None = None,
        resolver: DateResolver | None = None,
        summary_max_length: int = DEFAULT_SUMMARY_MAX_LENGTH,
    ):
        self.client = client
        self.normalizer = normalizer or ContentNormalizer()
        self.policy = policy or RulePolicy.default()
        self.resolver = resolver or DateResolver(policy=self.policy)
        self.summary_max_length = summary_max_length

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        client: CompletionClient | None = None,
    ) -> EmailClassifier:
        """Wire a classifier from the application config."""
        policy = RulePolicy.from_config(config.rules)
        return cls(
            client=client or create_completion_client(config.ai),
            normalizer=ContentNormalizer(
                max_length=config.normalizer.prompt_max_length,
                storage_max_length=config.normalizer.storage_max_length,
            ),
            policy=policy,
            resolver=DateResolver(timezone=config.timezone, policy=policy),
            summary_max_length=config.normalizer.summary_max_length,
        )

    async def classify(self, message: InboundMessage) -> ClassificationResult:
        """Classify one message. Never raises."""
        start_time = time.monotonic()
        content = self.normalizer.normalize(message.body).text

        if self.policy.should_skip_ai(message.subject, content, message.sender):
            result = self.rule_based_result(message, content, method="rules_skip")
            self._log_result(message, result, start_time)
            return result

        try:
            result = await self._classify_with_ai(message, content)
        except ClassificationError as e:
            logger.warning(
                "classification_fallback",
                message_id=message.id,
                max_attempts=e.attempts,
                error=str(e),
            )
            result = self.rule_based_result(message, content)
        except Exception as e:
            logger.error(
                "classification_unexpected_error",
                message_id=message.id,
                error_type=type(e).__name__,
                error=str(e),
            )
            result = self.rule_based_result(message, content)

        self._log_result(message, result, start_time)
        return result

    def rule_based_result(
        self,
        message: InboundMessage,
        content: str | None = None,
        method: Method = "rules_fallback",
    ) -> ClassificationResult:
        """Build the result from the rule engine and date resolver alone.

        Args:
            message: The message being classified
            content: Normalized body (normalized here when omitted)
            method: 'rules_skip' or 'rules_fallback'
        """
        if content is None:
            content = self.normalizer.normalize(message.body).text

        due = self.resolver.resolve(None, message.subject, content, message.sender)
        return ClassificationResult(
            subject=message.subject,
            summary=fallback_summary(content, message.subject, self.summary_max_length),
            priority=self.policy.determine_priority(message.subject, content, message.sender),
            action=self.policy.extract_action(content),
            due_date=due.date,
            due_time=due.time,
            method=method,
        )

    async def _classify_with_ai(self, message: InboundMessage, content: str) -> ClassificationResult:
        """Model path.

        Raises:
            ClassificationError: If the completion fails or its answer can't be parsed
        """
        prompt = build_user_prompt(
            subject=message.subject,
            sender=message.sender,
            content=content,
            today=self.resolver.now().date().isoformat(),
        )
        attempts = getattr(self.client, "max_attempts", 1)

        try:
            answer = await self.client.complete(prompt, system=SYSTEM_PROMPT)
            data = parse_json_answer(answer)
        except CompletionError as e:
            raise ClassificationError(
                f"Completion failed for message {message.id}: {e}",
                message_id=message.id,
                attempts=attempts,
            ) from e
        except ResponseParseError as e:
            logger.debug("ai_response_unparseable", message_id=message.id, raw_text=e.raw_text[:100])
            raise ClassificationError(
                f"Unparseable model answer for message {message.id}: {e}",
                message_id=message.id,
                attempts=attempts,
            ) from e

        return self._build_result(message, content, data)

    def _build_result(
        self,
        message: InboundMessage,
        content: str,
        data: dict[str, Any],
    ) -> ClassificationResult:
        extra = sorted(set(data) - set(RESPONSE_FIELDS))
        if extra:
            logger.debug("ai_response_extra_fields", message_id=message.id, fields=extra)
        data = {name: data.get(name) for name in RESPONSE_FIELDS}

        summary = data.get("summary")
        if not isinstance(summary, str) or not summary.strip():
            summary = fallback_summary(content, message.subject, self.summary_max_length)

        priority = self.policy.validate_priority(
            message.subject, content, message.sender, data.get("priority")
        )
        action = self.policy.validate_action(content, data.get("action"))
        due = self.resolver.resolve(data.get("dueDate"), message.subject, content, message.sender)

        return ClassificationResult(
            subject=message.subject,
            summary=summary.strip(),
            priority=priority,
            action=action,
            due_date=due.date,
            due_time=due.time,
            method="ai",
        )

    def _log_result(
        self,
        message: InboundMessage,
        result: ClassificationResult,
        start_time: float,
    ) -> None:
        logger.info(
            "classification_complete",
            message_id=message.id,
            sender_domain=sender_domain(message.sender),
            method=result.method,
            priority=result.priority,
            has_action=result.action is not None,
            due_date=result.due_date.isoformat() if result.due_date else None,
            duration_ms=int((time.monotonic() - start_time) * 1000),
        )
