"""Safety layer: crisis escalation classification and event logging.

Provides:
- EscalationClassifier: Ordered first-match tier classification per language
- EscalationEventLogger: Best-effort persistence of triggered tiers
"""

from src.companion.safety.escalation import (
    EscalationClassifier,
    EscalationEventLogger,
    resolve_language,
)

__all__ = [
    "EscalationClassifier",
    "EscalationEventLogger",
    "resolve_language",
]
