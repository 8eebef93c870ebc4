"""
Unit tests for SDK layer.

Tests the OpenAI prompt enhancer's credit checks and billing.
"""

import os
import shutil
import tempfile
from decimal import Decimal
from unittest.mock import Mock, patch

import pytest

from ai_gen_orchestrator.core.errors import InsufficientCredits, ValidationError
from ai_gen_orchestrator.core.pricing import CostBucket, CostPolicy
from ai_gen_orchestrator.sdk.openai_client import SYSTEM_PROMPTS, GuardedPromptEnhancer
from ai_gen_orchestrator.storage.ledger import CreditLedger
from ai_gen_orchestrator.storage.repository import CostPolicyStore, initialize_schema


def _completion(content="A lighthouse on a basalt cliff at dusk, warm beam cutting through sea mist"):
    response = Mock()
    response.id = "chatcmpl-123"
    response.choices = [Mock()]
    response.choices[0].message.content = content
    return response


class TestGuardedPromptEnhancer:
    """Test GuardedPromptEnhancer billing behavior."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.ledger = CreditLedger(self.db_path)
        self.policy_store = CostPolicyStore(self.db_path)
        self.client = Mock()
        self.client.chat.completions.create.return_value = _completion()

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _enhancer(self):
        return GuardedPromptEnhancer(self.ledger, self.policy_store, client=self.client)

    @patch('ai_gen_orchestrator.sdk.openai_client.OpenAI')
    def test_default_client(self, mock_openai_class):
        enhancer = GuardedPromptEnhancer(self.ledger, self.policy_store)
        assert enhancer.model == "gpt-4o-mini"
        assert enhancer.client is mock_openai_class.return_value

    def test_missing_model(self):
        with pytest.raises(ValueError, match="model is required"):
            GuardedPromptEnhancer(self.ledger, self.policy_store, model="  ", client=self.client)

    def test_enhance_charges_after_success(self):
        self.ledger.add_credits("alice", Decimal("10"), "Top-up")

        result = self._enhancer().enhance("alice", "lighthouse at dusk", kind="video")

        assert result.text.startswith("A lighthouse")
        assert result.cost == Decimal("1")
        assert result.charged is True
        assert result.request_id == "chatcmpl-123"
        assert self.ledger.get_balance("alice") == Decimal("9")

        entry = self.ledger.fetch_ledger_entries("alice")[0]
        assert entry.kind == "usage"
        assert entry.description == "Prompt Enhancement"

        kwargs = self.client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["messages"][0] == {"role": "system", "content": SYSTEM_PROMPTS["video"]}
        assert kwargs["messages"][1] == {"role": "user", "content": "lighthouse at dusk"}

    def test_price_comes_from_policy(self):
        self.policy_store.save(CostPolicy(
            video=CostBucket(default=Decimal("60")),
            image=CostBucket(default=Decimal("5")),
            prompt_enhancement=Decimal("2.5"),
        ))
        self.ledger.add_credits("alice", Decimal("10"), "Top-up")

        result = self._enhancer().enhance("alice", "a red fox")
        assert result.cost == Decimal("2.5")
        assert self.ledger.get_balance("alice") == Decimal("7.5")

    def test_insufficient_credits(self):
        self.ledger.add_credits("alice", Decimal("0.5"), "Top-up")

        with pytest.raises(InsufficientCredits) as exc_info:
            self._enhancer().enhance("alice", "a red fox")

        assert exc_info.value.required == Decimal("1")
        assert exc_info.value.available == Decimal("0.5")
        self.client.chat.completions.create.assert_not_called()

    def test_api_error_not_charged(self):
        """API errors propagate and leave the balance untouched."""
        self.ledger.add_credits("alice", Decimal("10"), "Top-up")
        self.client.chat.completions.create.side_effect = RuntimeError("API Error")

        with pytest.raises(RuntimeError, match="API Error"):
            self._enhancer().enhance("alice", "a red fox")
        assert self.ledger.get_balance("alice") == Decimal("10")

    def test_empty_completion_not_charged(self):
        self.ledger.add_credits("alice", Decimal("10"), "Top-up")
        self.client.chat.completions.create.return_value = _completion(content="   ")

        with pytest.raises(ValueError, match="no enhanced prompt"):
            self._enhancer().enhance("alice", "a red fox")
        assert self.ledger.get_balance("alice") == Decimal("10")

    def test_validation(self):
        enhancer = self._enhancer()
        with pytest.raises(ValidationError):
            enhancer.enhance("alice", "   ")
        with pytest.raises(ValidationError, match="too long"):
            enhancer.enhance("alice", "x" * 5001)
        with pytest.raises(ValidationError, match="kind"):
            enhancer.enhance("alice", "a red fox", kind="audio")
        self.client.chat.completions.create.assert_not_called()

    def test_failed_deduction_reported(self):
        self.ledger.add_credits("alice", Decimal("10"), "Top-up")
        with patch.object(self.ledger, "deduct_credits", return_value=False):
            result = self._enhancer().enhance("alice", "a red fox")
        assert result.charged is False
        assert result.text
