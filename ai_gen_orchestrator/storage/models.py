"""
Data models for storage layer.

Defines ledger and job history records plus credit unit conversion.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_UP
from typing import Optional

from ai_gen_orchestrator.core.errors import ErrorKind
from ai_gen_orchestrator.core.jobs import JobStatus

# Balances and amounts are stored as integer hundredths of a credit
CREDIT_SCALE = 100

LEDGER_KINDS = ("usage", "purchase", "bonus", "refund", "topup")


def to_units(amount: Decimal) -> int:
    """Convert credits to stored units, rounding UP to the nearest unit."""
    scaled = (Decimal(str(amount)) * CREDIT_SCALE).to_integral_value(rounding=ROUND_UP)
    return int(scaled)


def from_units(units: int) -> Decimal:
    return Decimal(units) / CREDIT_SCALE


@dataclass(frozen=True)
class LedgerEntry:
    """Immutable, signed credit movement.

    Append-only: entries are never modified or deleted. Spending is negative,
    top-ups and refunds are positive.
    """
    user_id: str
    amount: Decimal
    kind: str
    description: str
    timestamp: datetime
    job_id: Optional[str] = None
    id: Optional[int] = None


@dataclass(frozen=True)
class JobLedgerRecord:
    """Durable mirror of a finished generation job.

    Written once when the job reaches a terminal status and corrected at
    most once afterwards.
    """
    id: str
    user_id: str
    model_id: str
    variant_id: str
    provider: str
    prompt: str
    status: JobStatus
    cost: Decimal
    charged: bool
    created_at: datetime
    updated_at: datetime
    negative_prompt: Optional[str] = None
    resolution: Optional[str] = None
    duration: Optional[str] = None
    aspect_ratio: Optional[str] = None
    provider_task_id: Optional[str] = None
    result_url: Optional[str] = None
    artifact_data_url: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    needs_materialization_retry: bool = False
    needs_billing_reconciliation: bool = False
    corrected: bool = False
    poll_attempts: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status is JobStatus.SUCCEEDED

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal
