"""
Verification Flow Controller

Sequences admission control, upload, attribute write, verification and
availability monitoring for a blob. Stage failures are wrapped in
VerificationFlowError so callers can tell which stage failed.
"""

import asyncio
from typing import Optional, Union
import structlog

from blobverify.allocation import StorageAllocationManager
from blobverify.errors import MonitoringFailed, VerificationFlowError
from blobverify.models import (
    BlobUploadResult,
    FlowOptions,
    FlowStage,
    MonitoringOutcome,
    UploadOptions,
    VerificationResult,
    VerifyOptions,
)
from blobverify.verification import BlobVerificationManager

logger = structlog.get_logger()

BatchItem = tuple[bytes, Optional[dict[str, str]]]


class VerificationFlowController:
    """
    End-to-end verification flow.

    Usage:
        flow = VerificationFlowController(allocation_manager, verification_manager)
        result = await flow.execute_verification_flow(
            data,
            metadata={"contentType": "application/json"},
        )
    """

    def __init__(
        self,
        allocation_manager: StorageAllocationManager,
        verification_manager: BlobVerificationManager,
    ):
        self.allocation = allocation_manager
        self.verification = verification_manager

    @property
    def storage(self):
        return self.verification.storage

    @staticmethod
    def _is_cancelled(cancel: Optional[asyncio.Event]) -> bool:
        return cancel is not None and cancel.is_set()

    async def execute_verification_flow(
        self,
        data: bytes,
        metadata: Optional[dict[str, str]] = None,
        options: Optional[FlowOptions] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> BlobUploadResult:
        """
        Allocate, upload, tag, verify and optionally monitor a blob.

        Args:
            data: Blob bytes
            metadata: Attributes to attach and then verify
            options: Flow options
            cancel: Optional event; once set, no further stage is started and
                the partial result is returned with cancelled=True

        Returns:
            BlobUploadResult with the output of every stage that ran

        Raises:
            VerificationFlowError: a stage failed; .stage and .cause tell which and why
        """
        options = options or FlowOptions()
        metadata = metadata or {}
        stage = FlowStage.ALLOCATION

        try:
            required = self.allocation.calculate_required_storage(len(data), options.duration_days)
            allocation = await self.allocation.ensure_storage_allocated(required)

            stage = FlowStage.UPLOAD
            upload = await self.verification.verify_upload(
                data,
                UploadOptions(
                    wait_for_certification=options.wait_for_certification,
                    wait_timeout=options.wait_timeout,
                    min_providers=options.min_providers,
                    epochs=options.epochs,
                ),
                cancel=cancel,
            )
            blob_id = upload.blob_id
            cancelled = upload.cancelled or self._is_cancelled(cancel)

            attributes_written = False
            if metadata and not cancelled:
                stage = FlowStage.ATTRIBUTES
                await self.storage.execute_write_attributes_transaction(blob_id, metadata)
                attributes_written = True

            cancelled = cancelled or self._is_cancelled(cancel)
            verification: Optional[VerificationResult] = None
            if options.verify_after_upload and not cancelled:
                stage = FlowStage.VERIFICATION
                verification = await self.verification.verify_blob(
                    blob_id,
                    data,
                    metadata,
                    VerifyOptions(require_certification=options.require_certification),
                )

            cancelled = cancelled or self._is_cancelled(cancel)
            monitoring: Optional[MonitoringOutcome] = None
            if options.monitor_availability and not cancelled:
                stage = FlowStage.MONITORING
                try:
                    monitoring = await self.verification.monitor_blob_availability(
                        blob_id, upload.checksums, options.monitor, cancel=cancel
                    )
                except MonitoringFailed as e:
                    if options.fail_on_monitoring:
                        raise
                    logger.warning("Monitoring failed", blob_id=blob_id, attempts=e.attempts)
                    monitoring = MonitoringOutcome(successful=False, attempts_made=e.attempts)
                cancelled = monitoring.cancelled

        except Exception as e:
            logger.error("Verification flow failed", stage=stage.value, error=str(e))
            raise VerificationFlowError(stage.value, e) from e

        result = BlobUploadResult(
            blob_id=blob_id,
            allocation=allocation,
            upload=upload,
            attributes_written=attributes_written,
            verification=verification,
            monitoring=monitoring,
            cancelled=cancelled,
        )

        if cancelled:
            logger.info("Verification flow cancelled", blob_id=blob_id, stage=stage.value)
            return result

        logger.info(
            "Verification flow completed",
            blob_id=blob_id,
            certified=upload.certified,
            verified=result.verified,
            monitored=monitoring.successful if monitoring else None,
        )
        return result

    async def verify_existing_data(
        self,
        blob_id: str,
        expected_data: Optional[bytes] = None,
        expected_metadata: Optional[dict[str, str]] = None,
        options: Optional[VerifyOptions] = None,
    ) -> VerificationResult:
        """Verify a blob that was stored earlier."""
        try:
            return await self.verification.verify_blob(
                blob_id, expected_data, expected_metadata, options
            )
        except Exception as e:
            raise VerificationFlowError(FlowStage.VERIFICATION.value, e) from e

    async def verify_batch(
        self,
        items: list[BatchItem],
        options: Optional[FlowOptions] = None,
        concurrency: int = 4,
    ) -> list[Union[BlobUploadResult, VerificationFlowError]]:
        """
        Run the flow for independent blobs concurrently.

        Results are returned in input order; a failed item yields its
        VerificationFlowError in place instead of failing the batch.
        """
        semaphore = asyncio.Semaphore(max(concurrency, 1))

        async def run_item(data: bytes, metadata: Optional[dict[str, str]]):
            async with semaphore:
                try:
                    return await self.execute_verification_flow(data, metadata, options)
                except VerificationFlowError as e:
                    return e

        results = await asyncio.gather(*(run_item(data, metadata) for data, metadata in items))

        failed = [r for r in results if isinstance(r, VerificationFlowError)]
        logger.info(
            "Batch verification completed",
            total=len(results),
            successful=len(results) - len(failed),
            failed=len(failed),
        )
        return list(results)

    async def close(self):
        """Clean up resources."""
        await self.storage.close()
        await self.allocation.oracle.close()
