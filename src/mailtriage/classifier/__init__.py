"""Email classification components.

This package provides the per-message classification pipeline:
- Content normalizer for preparing email bodies
- Rule policy for skip, priority, action and date-eligibility decisions
- Date resolver for due dates from model output and natural language
- Completion clients for the model call
- Orchestrator combining all of the above
"""

from mailtriage.classifier.ai_client import (
    AnthropicCompletionClient,
    ChatCompletionClient,
    CompletionClient,
    create_completion_client,
    parse_json_answer,
)
from mailtriage.classifier.dates import DateResolver, DueDate
from mailtriage.classifier.models import ClassificationResult, InboundMessage, Priority
from mailtriage.classifier.normalizer import (
    ContentNormalizer,
    NormalizationResult,
    normalize_content,
)
from mailtriage.classifier.orchestrator import EmailClassifier
from mailtriage.classifier.rules import RuleMatch, RulePolicy, is_meeting_email

__all__ = [
    # Completion clients
    "AnthropicCompletionClient",
    "ChatCompletionClient",
    "CompletionClient",
    "create_completion_client",
    "parse_json_answer",
    # Dates
    "DateResolver",
    "DueDate",
    # Models
    "ClassificationResult",
    "InboundMessage",
    "Priority",
    # Normalization
    "ContentNormalizer",
    "NormalizationResult",
    "normalize_content",
    # Orchestrator
    "EmailClassifier",
    # Rules
    "RuleMatch",
    "RulePolicy",
    "is_meeting_email",
]
