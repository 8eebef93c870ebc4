"""
SDK for the generation orchestrator.

Provides credit-guarded helpers around third-party model APIs.
"""

from .openai_client import EnhancedPrompt, GuardedPromptEnhancer

__all__ = ["EnhancedPrompt", "GuardedPromptEnhancer"]
