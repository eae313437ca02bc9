"""Agents package for model-backed message processing."""

from negotiator.agents.translation_agent import (
    TranslationAgent,
    classify_failure,
    create_translation_agent,
)

__all__ = [
    "TranslationAgent",
    "classify_failure",
    "create_translation_agent",
]
