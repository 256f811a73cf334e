"""Email body normalization.

Turns a raw (often HTML) email body into a single line of plain text that
both the rule engine and the model prompt can work on:

1. Drop <style> and <script> blocks with their content
2. Replace remaining tags with a space
3. Decode the common entities and drop any other named entity
4. Collapse whitespace runs and trim
5. Truncate to max_length

CRITICAL SECURITY NOTE:
All regex operations use the `regex` library with a timeout on each call
to prevent ReDoS attacks from malicious email content.

Normalization never raises. If any step fails the raw input, truncated to
the bound, is returned instead.

Usage:
    from mailtriage.classifier.normalizer import ContentNormalizer, normalize_content

    normalizer = ContentNormalizer()
    result = normalizer.normalize(body)
    print(result.text)

    # Or use convenience function
    text = normalize_content(body)
"""

from __future__ import annotations

from dataclasses import dataclass, field

import regex

from mailtriage.core.errors import NormalizationError
from mailtriage.core.logging import get_logger

logger = get_logger(__name__)

# Working windows for the pipeline
DEFAULT_MAX_LENGTH = 1500  # Body text sent to the model
DEFAULT_STORAGE_MAX_LENGTH = 2000  # Body text kept with the stored record

# Regex timeout in seconds (CRITICAL: all operations MUST use this)
REGEX_TIMEOUT = 1.0

# Step 1: non-content blocks
STYLE_BLOCK_PATTERN = regex.compile(r"<style[^>]*>.*?</style>", regex.IGNORECASE | regex.DOTALL)
SCRIPT_BLOCK_PATTERN = regex.compile(
    r"<script[^>]*>.*?</script>", regex.IGNORECASE | regex.DOTALL
)

# Step 2: tags
HTML_TAG_PATTERN = regex.compile(r"<[^>]+>")

# Step 3: entities, decoded in this order
ENTITY_REPLACEMENTS: tuple[tuple[str, str], ...] = (
    ("&nbsp;", " "),
    ("&amp;", "&"),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
)
NAMED_ENTITY_PATTERN = regex.compile(r"&[a-z]+;", regex.IGNORECASE)

# Step 4: whitespace
WHITESPACE_PATTERN = regex.compile(r"\s+")


def _safe_sub(pattern: regex.Pattern, repl: str, text: str, step: str) -> str:
    """Perform a regex substitution with timeout.

    Raises:
        NormalizationError: If the pattern times out
    """
    try:
        return pattern.sub(repl, text, timeout=REGEX_TIMEOUT)
    except TimeoutError as e:
        raise NormalizationError(
            f"Regex timeout in step '{step}'", step=step, partial_result=text
        ) from e


@dataclass
class NormalizationResult:
    """Result of body normalization with metadata for debugging.

    Attributes:
        text: The normalized text
        original_length: Length of the input text
        was_truncated: Whether the text was cut to max_length
        steps_applied: Steps that modified the text
        degraded: True when a step failed and raw text was returned
    """

    text: str
    original_length: int
    was_truncated: bool
    steps_applied: list[str] = field(default_factory=list)
    degraded: bool = False


class ContentNormalizer:
    """Normalizes raw email bodies into bounded plain text.

    Attributes:
        max_length: Bound for prompt text (default 1500)
        storage_max_length: Bound for stored text (default 2000)
    """

    def __init__(
        self,
        max_length: int = DEFAULT_MAX_LENGTH,
        storage_max_length: int = DEFAULT_STORAGE_MAX_LENGTH,
    ):
        self.max_length = max_length
        self.storage_max_length = storage_max_length

    def normalize(self, text: str | None, max_length: int | None = None) -> NormalizationResult:
        """Run the full normalization pipeline.

        Args:
            text: Raw body text or HTML (None is treated as empty)
            max_length: Override for the length bound

        Returns:
            NormalizationResult; never raises
        """
        limit = max_length if max_length is not None else self.max_length
        if not text:
            return NormalizationResult(text="", original_length=0, was_truncated=False)

        try:
            return self._run_pipeline(text, limit)
        except NormalizationError as e:
            logger.warning(
                "normalization_step_failed",
                step=e.step,
                original_length=len(text),
            )
        except Exception as e:
            # Malformed input must never stop classification
            logger.warning(
                "normalization_failed",
                error_type=type(e).__name__,
                error=str(e),
                original_length=len(text),
            )

        return NormalizationResult(
            text=text[:limit],
            original_length=len(text),
            was_truncated=len(text) > limit,
            degraded=True,
        )

    def normalize_for_storage(self, text: str | None) -> str:
        """Normalize with the (longer) storage bound."""
        return self.normalize(text, max_length=self.storage_max_length).text

    def _run_pipeline(self, text: str, limit: int) -> NormalizationResult:
        steps: list[str] = []
        current = text

        cleaned = _safe_sub(STYLE_BLOCK_PATTERN, "", current, "strip_blocks")
        cleaned = _safe_sub(SCRIPT_BLOCK_PATTERN, "", cleaned, "strip_blocks")
        if cleaned != current:
            steps.append("strip_blocks")
            current = cleaned

        cleaned = _safe_sub(HTML_TAG_PATTERN, " ", current, "strip_tags")
        if cleaned != current:
            steps.append("strip_tags")
            current = cleaned

        cleaned = self._decode_entities(current)
        if cleaned != current:
            steps.append("decode_entities")
            current = cleaned

        cleaned = _safe_sub(WHITESPACE_PATTERN, " ", current, "normalize_whitespace").strip()
        if cleaned != current:
            steps.append("normalize_whitespace")
            current = cleaned

        was_truncated = len(current) > limit
        if was_truncated:
            current = current[:limit]
            steps.append("truncate")

        return NormalizationResult(
            text=current,
            original_length=len(text),
            was_truncated=was_truncated,
            steps_applied=steps,
        )

    @staticmethod
    def _decode_entities(text: str) -> str:
        for entity, replacement in ENTITY_REPLACEMENTS:
            text = text.replace(entity, replacement)
        return _safe_sub(NAMED_ENTITY_PATTERN, "", text, "decode_entities")


def normalize_content(text: str | None, max_length: int = DEFAULT_MAX_LENGTH) -> str:
    """Convenience function to normalize a body.

    Args:
        text: Raw body text or HTML
        max_length: Maximum length for the output

    Returns:
        Normalized text string
    """
    return ContentNormalizer(max_length=max_length).normalize(text).text
