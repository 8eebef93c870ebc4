"""
Guarded OpenAI prompt enhancement.

Rewrites generation prompts with a chat completion and bills the
PROMPT_ENHANCEMENT price only after the completion succeeds.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from openai import OpenAI

from ..core.errors import InsufficientCredits, ValidationError
from ..core.pricing import resolve_prompt_enhancement_cost
from ..storage.ledger import CreditLedger
from ..storage.repository import CostPolicyStore

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
MAX_PROMPT_LENGTH = 5000

_PRINCIPLES = """Describe the scene, not just list words. Build a vivid, cohesive description:
- setting, time of day, atmosphere and mood
- spatial relationships between foreground, midground and background
- camera perspective, composition, lighting and color palette when they help
- subject details: appearance, materials, textures, actions
Keep the user's original intent. Prefer concrete description over superlatives and
avoid conflicting style directives. Return ONLY the enhanced prompt, with no
explanations, prefixes or commentary."""

SYSTEM_PROMPTS = {
    "image": (
        "You are an expert prompt engineer for AI image generation. "
        "Keep the result between 75 and 500 characters.\n\n" + _PRINCIPLES
    ),
    "video": (
        "You are an expert prompt engineer for AI video generation. "
        "Also describe camera movement (dolly, tracking, pan, aerial) and how the "
        "scene changes over time.\n\n" + _PRINCIPLES
    ),
}


@dataclass(frozen=True)
class EnhancedPrompt:
    """Result of one enhancement call."""
    text: str
    cost: Decimal
    charged: bool
    request_id: Optional[str] = None


class GuardedPromptEnhancer:
    """OpenAI chat wrapper that enforces the credit ledger.

    Credits are checked before the API call and deducted after it succeeds.
    API failures propagate unchanged and leave the balance untouched.
    """

    def __init__(
        self,
        ledger: CreditLedger,
        policy_store: CostPolicyStore,
        model: str = DEFAULT_MODEL,
        client: Optional[OpenAI] = None
    ):
        """Initialize the enhancer.

        Args:
            ledger: Credit ledger to check and charge
            policy_store: Source of the PROMPT_ENHANCEMENT price
            model: OpenAI chat model name
            client: Preconfigured OpenAI client (defaults to one from the environment)

        Raises:
            ValueError: If model is empty
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")

        self.ledger = ledger
        self.policy_store = policy_store
        self.model = model
        self.client = client or OpenAI()

    def enhance(
        self,
        user_id: str,
        prompt: str,
        kind: str = "image",
        temperature: float = 0.7,
        max_tokens: int = 500
    ) -> EnhancedPrompt:
        """Enhance a prompt for image or video generation.

        Args:
            user_id: Account to bill
            prompt: Prompt to rewrite
            kind: "image" or "video"
            temperature: Sampling temperature
            max_tokens: Completion token cap

        Returns:
            EnhancedPrompt with the rewritten text and billing outcome

        Raises:
            ValidationError: If the prompt is empty, too long, or kind is unknown
            InsufficientCredits: If the balance does not cover the price
            OpenAI API errors: Propagated without modification
        """
        if not prompt or not prompt.strip():
            raise ValidationError("Prompt is required")
        if len(prompt) > MAX_PROMPT_LENGTH:
            raise ValidationError(f"Prompt is too long (maximum {MAX_PROMPT_LENGTH} characters)")
        if kind not in SYSTEM_PROMPTS:
            raise ValidationError(f"kind must be one of: {sorted(SYSTEM_PROMPTS)}")

        cost = resolve_prompt_enhancement_cost(self.policy_store.load())
        if not self.ledger.check_credits(user_id, cost):
            available = self.ledger.get_balance(user_id) or Decimal("0")
            raise InsufficientCredits(
                f"Insufficient credits: {cost} required, {available} available",
                required=cost,
                available=available,
            )

        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPTS[kind]},
                {"role": "user", "content": prompt},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
        )

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise ValueError("OpenAI response contained no enhanced prompt")

        charged = self.ledger.deduct_credits(user_id, cost, "Prompt Enhancement")
        if not charged:
            logger.error(
                "Prompt enhancement for %s succeeded but %s credits could not be deducted",
                user_id, cost, extra={"user_id": user_id, "event": "ledger_inconsistency"},
            )

        return EnhancedPrompt(
            text=content.strip(),
            cost=cost,
            charged=charged,
            request_id=getattr(response, "id", None),
        )
