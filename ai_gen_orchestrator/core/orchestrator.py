"""
Generation pipeline entry point.

One call runs one job start to finish on the calling thread:

    validate -> price -> check credits -> upload -> submit -> poll
             -> materialize -> deduct -> persist

Credits are checked before the provider is contacted and deducted only after
the provider reports success, so a failed or abandoned job is never charged.
The returned JobLedgerRecord is always terminal.
"""

import logging
import sqlite3
import threading
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from ai_gen_orchestrator.config.loader import OrchestratorConfig, PollingSettings
from ai_gen_orchestrator.providers.base import ProviderAdapter, ProviderError, ProviderRequest
from ai_gen_orchestrator.providers.registry import AdapterFactory
from ai_gen_orchestrator.storage.ledger import CreditLedger
from ai_gen_orchestrator.storage.models import JobLedgerRecord
from ai_gen_orchestrator.storage.repository import CostPolicyStore, JobRecordRepository

from .errors import (
    DownloadFailed,
    GenerationError,
    InsufficientCredits,
    LedgerInconsistency,
    PollTimeout,
    ProviderFailed,
    SubmissionFailed,
    UnexpectedGenerationError,
    UploadFailed,
    ValidationError,
)
from .jobs import GenerationJob, GenerationParams, JobStatus, PollingPolicy, new_job_id
from .materializer import ResultMaterializer
from .poller import JobPoller, ProgressCallback
from .pricing import CostOptions, resolve_cost
from .registry import ModelDescriptor, VariantDescriptor, describe_model, validate_request

logger = logging.getLogger(__name__)

RecordErrorHook = Callable[[JobLedgerRecord, Exception], None]

DEFAULT_ARTIFACT_MIME_TYPES = {"video": "video/mp4", "image": "image/png"}


class GenerationOrchestrator:
    """Runs generation jobs against the configured providers.

    Args:
        ledger: Credit ledger used for the pre-check and the final deduction
        job_repository: Destination for terminal job records
        policy_store: Source of the active cost policy
        adapters: Maps a model's provider key to its adapter
        materializer: Downloads finished artifacts
        polling_settings: Polling overrides and request ceiling
        sleep: Wait function handed to the poller; None means real waiting
        on_record_error: Called when persisting a record fails
    """

    def __init__(
        self,
        ledger: CreditLedger,
        job_repository: JobRecordRepository,
        policy_store: CostPolicyStore,
        adapters: Callable[[str], ProviderAdapter],
        materializer: ResultMaterializer,
        polling_settings: Optional[PollingSettings] = None,
        sleep: Optional[Callable[[float], None]] = None,
        on_record_error: Optional[RecordErrorHook] = None
    ):
        self.ledger = ledger
        self.job_repository = job_repository
        self.policy_store = policy_store
        self.adapters = adapters
        self.materializer = materializer
        self.polling_settings = polling_settings or PollingSettings()
        self.sleep = sleep
        self.on_record_error = on_record_error

    @classmethod
    def from_config(cls, config: OrchestratorConfig, api_key: Optional[str] = None) -> "GenerationOrchestrator":
        """Build an orchestrator with real adapters from configuration.

        Raises:
            ValueError: If no API key is given and the configured variable is unset
        """
        db_path = config.database.path
        adapters = AdapterFactory(
            api_key=api_key or config.kie.resolve_api_key(),
            base_url=config.kie.base_url,
            upload_base_url=config.kie.upload_base_url,
            timeout_seconds=config.kie.timeout_seconds,
        )
        return cls(
            ledger=CreditLedger(db_path),
            job_repository=JobRecordRepository(db_path),
            policy_store=CostPolicyStore(db_path, ttl_seconds=config.pricing.cache_ttl_seconds),
            adapters=adapters,
            materializer=ResultMaterializer(),
            polling_settings=config.polling,
        )

    def close(self) -> None:
        close_adapters = getattr(self.adapters, "close", None)
        if close_adapters is not None:
            close_adapters()
        self.materializer.close()

    def resolve_polling(
        self,
        model_id: str,
        variant: VariantDescriptor,
        override: Optional[PollingPolicy] = None
    ) -> PollingPolicy:
        """Per-call override, else configured override, else the variant's policy; then clamped."""
        policy = override or self.polling_settings.policy_for(model_id, variant.id, variant.polling)
        return self.polling_settings.clamp(policy)

    def quote(self, model: ModelDescriptor, variant: VariantDescriptor, params: GenerationParams) -> Decimal:
        """Price a validated request with the currently active policy."""
        policy = self.policy_store.load()
        options = CostOptions(variant=variant.id, resolution=params.resolution, duration=params.duration)
        return resolve_cost(policy, model.kind, model.id, options)

    def submit_generation_job(
        self,
        user_id: str,
        model_id: str,
        variant_id: str,
        params: GenerationParams,
        polling: Optional[PollingPolicy] = None,
        on_progress: Optional[ProgressCallback] = None,
        cancel: Optional[threading.Event] = None
    ) -> JobLedgerRecord:
        """Run one generation job to a terminal status.

        Args:
            user_id: Account to bill
            model_id: Registry model identifier
            variant_id: Variant within the model
            params: Prompt, options and input assets
            polling: Overrides the polling policy for this call
            on_progress: Called with (attempt, max_attempts) before each wait
            cancel: Setting it abandons polling; the job ends timed_out

        Returns:
            Terminal JobLedgerRecord. Validation and insufficient-credit
            rejections are returned without being persisted.

        Raises:
            UnexpectedGenerationError: For failures outside the known taxonomy
        """
        job_id = new_job_id()
        created_at = datetime.now()
        log_extra = {"user_id": user_id, "job_id": job_id, "model_id": model_id}

        try:
            model, variant, params = validate_request(model_id, variant_id, params)
            price = self.quote(model, variant, params)
            if not self.ledger.check_credits(user_id, price):
                available = self.ledger.get_balance(user_id) or Decimal("0")
                raise InsufficientCredits(
                    f"Insufficient credits: {price} required, {available} available",
                    required=price,
                    available=available,
                )
        except (ValidationError, InsufficientCredits) as exc:
            logger.info("Job %s rejected: %s", job_id, exc.detail, extra={**log_extra, "event": exc.kind.value})
            return self._rejected_record(job_id, user_id, model_id, variant_id, params, exc, created_at)
        except Exception as exc:
            logger.error("Unexpected failure preparing job %s", job_id, exc_info=True, extra=log_extra)
            error = UnexpectedGenerationError(job_id)
            self._persist(self._rejected_record(job_id, user_id, model_id, variant_id, params, error, created_at))
            raise error from exc

        job = GenerationJob(
            id=job_id,
            user_id=user_id,
            model_id=model.id,
            variant_id=variant.id,
            provider=model.provider,
            api_model=variant.api_model,
            price=price,
            params=params,
        )
        logger.info(
            "Job %s started: %s/%s for %s credits", job_id, model.id, variant.id, price,
            extra={**log_extra, "event": "job_started"},
        )

        try:
            self._run(job, model, variant, polling, on_progress, cancel)
        except GenerationError as exc:
            logger.warning("Job %s failed: %s", job_id, exc.detail, extra={**log_extra, "event": exc.kind.value})
            job.fail(exc)
        except Exception as exc:
            logger.error("Unexpected failure in job %s", job_id, exc_info=True, extra=log_extra)
            error = UnexpectedGenerationError(job_id)
            if not job.status.is_terminal:
                job.fail(error)
            self._persist(self._to_record(job, created_at))
            raise error from exc

        record = self._to_record(job, created_at)
        self._persist(record)
        logger.info(
            "Job %s finished: %s (charged=%s)", job_id, record.status.value, record.charged,
            extra={**log_extra, "event": "job_finished"},
        )
        return record

    def _run(
        self,
        job: GenerationJob,
        model: ModelDescriptor,
        variant: VariantDescriptor,
        polling: Optional[PollingPolicy],
        on_progress: Optional[ProgressCallback],
        cancel: Optional[threading.Event]
    ) -> None:
        adapter = self.adapters(model.provider)
        params = job.params

        try:
            job.image_urls = adapter.upload_assets(params.images)
            job.video_urls = adapter.upload_assets(params.videos)
        except ProviderError as exc:
            raise UploadFailed(f"Failed to upload input assets: {exc.message}", code=exc.code) from exc

        request = ProviderRequest(
            api_model=variant.api_model,
            variant_id=variant.id,
            prompt=params.prompt,
            negative_prompt=params.negative_prompt,
            resolution=params.resolution,
            duration=params.duration,
            aspect_ratio=params.aspect_ratio,
            image_urls=tuple(job.image_urls),
            video_urls=tuple(job.video_urls),
            continuation_task_id=params.continuation_task_id,
            shots=params.shots,
            seeds=params.seeds,
            watermark=params.watermark,
            output_format=params.output_format,
        )
        try:
            provider_task_id = adapter.submit(request)
        except ProviderError as exc:
            raise SubmissionFailed(f"Failed to start generation: {exc.message}", code=exc.code) from exc
        job.start_polling(provider_task_id)
        logger.info("Job %s submitted as provider task %s", job.id, provider_task_id)

        poller = JobPoller(
            adapter,
            provider_task_id,
            self.resolve_polling(model.id, variant, polling),
            on_progress=on_progress,
        )
        outcome = poller.run(sleep=self.sleep, cancel=cancel)
        job.poll_attempts = outcome.attempts

        if outcome.status is JobStatus.TIMED_OUT:
            job.fail(PollTimeout(outcome.error_message, code=outcome.error_code), status=JobStatus.TIMED_OUT)
            return
        if outcome.status is JobStatus.FAILED:
            raise ProviderFailed(outcome.error_message or "Generation failed", code=outcome.error_code)

        job.succeed(outcome.result_urls[0])
        self._settle(job, model, variant)

    def _settle(self, job: GenerationJob, model: ModelDescriptor, variant: VariantDescriptor) -> None:
        """Materialize the artifact and charge for a succeeded job."""
        try:
            job.artifact_data_url = self.materializer.materialize(
                job.result_url, DEFAULT_ARTIFACT_MIME_TYPES.get(model.kind)
            )
        except DownloadFailed as exc:
            # Still billed; the result URL stays on the record for a later download
            logger.warning("Job %s artifact download failed: %s", job.id, exc.detail)
            job.needs_materialization_retry = True
            job.flag(exc)

        reason = f"{model.display_name} {variant.name}"
        if self.ledger.deduct_credits(job.user_id, job.price, reason, job_id=job.id):
            job.charged = True
            return

        error = LedgerInconsistency(
            f"Generation succeeded but {job.price} credits could not be deducted from {job.user_id}"
        )
        logger.error(
            "Ledger inconsistency for job %s: %s", job.id, error.detail,
            extra={"user_id": job.user_id, "job_id": job.id, "event": error.kind.value},
        )
        job.needs_billing_reconciliation = True
        job.flag(error)

    def _persist(self, record: JobLedgerRecord) -> None:
        """Best-effort history write; failures never change the job outcome."""
        try:
            self.job_repository.insert_job_record(record)
        except sqlite3.Error as exc:
            logger.error("Failed to save history for job %s", record.id, exc_info=True)
            if self.on_record_error is not None:
                try:
                    self.on_record_error(record, exc)
                except Exception:
                    logger.warning("Record error hook raised; ignoring", exc_info=True)

    def _to_record(self, job: GenerationJob, created_at: datetime) -> JobLedgerRecord:
        params = job.params
        return JobLedgerRecord(
            id=job.id,
            user_id=job.user_id,
            model_id=job.model_id,
            variant_id=job.variant_id,
            provider=job.provider,
            prompt=params.prompt,
            status=job.status,
            cost=job.price,
            charged=job.charged,
            created_at=created_at,
            updated_at=datetime.now(),
            negative_prompt=params.negative_prompt,
            resolution=params.resolution,
            duration=params.duration,
            aspect_ratio=params.aspect_ratio,
            provider_task_id=job.provider_task_id,
            result_url=job.result_url,
            artifact_data_url=job.artifact_data_url,
            error_kind=job.error.kind if job.error else None,
            error_message=job.error.detail if job.error else None,
            needs_materialization_retry=job.needs_materialization_retry,
            needs_billing_reconciliation=job.needs_billing_reconciliation,
            poll_attempts=job.poll_attempts,
        )

    def _rejected_record(
        self,
        job_id: str,
        user_id: str,
        model_id: str,
        variant_id: str,
        params: GenerationParams,
        error: GenerationError,
        created_at: datetime
    ) -> JobLedgerRecord:
        cost = Decimal("0")
        if isinstance(error, InsufficientCredits) and error.required is not None:
            cost = error.required
        model = describe_model(model_id)
        return JobLedgerRecord(
            id=job_id,
            user_id=user_id,
            model_id=model_id,
            variant_id=variant_id,
            provider=model.provider if model else "",
            prompt=params.prompt,
            status=JobStatus.FAILED,
            cost=cost,
            charged=False,
            created_at=created_at,
            updated_at=datetime.now(),
            negative_prompt=params.negative_prompt,
            resolution=params.resolution,
            duration=params.duration,
            aspect_ratio=params.aspect_ratio,
            error_kind=error.kind,
            error_message=error.detail,
        )
