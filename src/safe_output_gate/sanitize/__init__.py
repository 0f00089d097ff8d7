"""Text sanitization for agent-supplied content."""

from safe_output_gate.sanitize.engine import Sanitizer, sanitize_text
from safe_output_gate.sanitize.models import Redaction, SanitizationResult

__all__ = ["Redaction", "SanitizationResult", "Sanitizer", "sanitize_text"]
