"""Turn processing.

Provides:
- TurnPipeline: Safety check, context assembly, generation and session update
"""

from src.companion.chat.pipeline import TurnPipeline

__all__ = ["TurnPipeline"]
