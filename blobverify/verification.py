"""
Blob Verification Manager

Uploads blobs, waits for network certification, re-reads stored content
to compare it against the pre-upload checksums, and monitors availability.

Network state is eventually consistent, so certification and availability
are observed with bounded polling loops. Sleep and clock are injectable so
the loops can be driven by a fake clock.
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional
from pydantic import BaseModel, Field
import structlog

from blobverify.checksums import ChecksumEngine
from blobverify.clients.base import StorageClient
from blobverify.errors import BackendUnavailable, InvalidArgument, MonitoringFailed
from blobverify.models import (
    BlobRecord,
    ChecksumSet,
    MatchStatus,
    MetadataMismatch,
    MonitoringOutcome,
    MonitorOptions,
    UploadOptions,
    UploadVerification,
    VerificationResult,
    VerificationStage,
    VerifyOptions,
)

logger = structlog.get_logger()

Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], float]


class VerificationConfig(BaseModel):
    """Configuration for the verification manager."""

    # Seconds between certification status polls
    poll_interval: float = Field(default=1.0, gt=0)


class BlobVerificationManager:
    """
    Verifies uploaded blobs against their pre-upload checksums.

    A mismatch is a result, not an error: verify_blob returns
    success=False with details. Only failures to talk to the backend
    are raised.
    """

    def __init__(
        self,
        storage_client: StorageClient,
        checksum_engine: Optional[ChecksumEngine] = None,
        config: Optional[VerificationConfig] = None,
        sleep: Optional[Sleep] = None,
        clock: Optional[Clock] = None,
    ):
        self.storage = storage_client
        self.checksums = checksum_engine or ChecksumEngine()
        self.config = config or VerificationConfig()
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or time.monotonic

    def _stage(self, blob_id: Optional[str], stage: VerificationStage, **kw) -> None:
        logger.debug("Verification stage", blob_id=blob_id, stage=stage.value, **kw)

    @staticmethod
    def _is_cancelled(cancel: Optional[asyncio.Event]) -> bool:
        return cancel is not None and cancel.is_set()

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def verify_upload(
        self,
        data: bytes,
        options: Optional[UploadOptions] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> UploadVerification:
        """
        Upload data and check its network state.

        Steps run strictly in order: checksum, write, certification
        status (optionally waiting), provider query, PoA check.

        Args:
            data: Blob bytes
            options: Certification wait and provider requirements
            cancel: Optional event that stops the certification wait

        Returns:
            UploadVerification. A certification timeout is not an error,
            it is reported as certified=False.
        """
        options = options or UploadOptions()
        if not data:
            raise InvalidArgument("Cannot upload empty data")

        checksums = self.checksums.compute_checksums(data)

        self._stage(None, VerificationStage.UPLOADING, size=len(data))
        try:
            written = await self.storage.write_blob(data, epochs=options.epochs)
        except Exception:
            self._stage(None, VerificationStage.FAILED)
            raise
        blob_id = written.blob_id

        logger.info("Uploaded blob", blob_id=blob_id, size_bytes=len(data))

        deadline = self._clock() + options.wait_timeout
        record = await self._poll_blob_info(blob_id, options.wait_timeout)
        polls = 1
        cancelled = False

        if options.wait_for_certification and not (record and record.certified):
            self._stage(blob_id, VerificationStage.AWAITING_CERTIFICATION, timeout=options.wait_timeout)
            record, extra_polls, cancelled = await self._wait_for_certification(
                blob_id, record, deadline, cancel
            )
            polls += extra_polls

        certified = record is not None and record.certified
        if options.wait_for_certification and not certified and not cancelled:
            logger.warning(
                "Certification not observed before timeout",
                blob_id=blob_id,
                wait_timeout=options.wait_timeout,
                polls=polls,
            )

        providers = await self.storage.get_storage_providers(blob_id)
        has_min_providers = len(providers) >= options.min_providers

        try:
            poa_complete = await self.storage.verify_poa(blob_id)
        except BackendUnavailable as e:
            logger.warning("PoA check failed", blob_id=blob_id, error=str(e))
            poa_complete = False

        if not certified or not poa_complete or not has_min_providers:
            reasons = []
            if not certified:
                reasons.append("not certified")
            if not poa_complete:
                reasons.append("PoA incomplete")
            if not has_min_providers:
                reasons.append(f"insufficient providers ({len(providers)}/{options.min_providers})")
            logger.warning("Blob upload verification incomplete", blob_id=blob_id, reasons=reasons)

        self._stage(blob_id, VerificationStage.DONE)

        return UploadVerification(
            blob_id=blob_id,
            checksums=checksums,
            certified=certified,
            certified_epoch=record.certified_epoch if record else None,
            poa_complete=poa_complete,
            has_min_providers=has_min_providers,
            provider_count=len(providers),
            certification_polls=polls,
            cancelled=cancelled,
        )

    async def _poll_blob_info(self, blob_id: str, timeout: float) -> Optional[BlobRecord]:
        """Read blob status; a transient failure or a hung call counts as not yet certified."""
        try:
            return await asyncio.wait_for(self.storage.get_blob_info(blob_id), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Blob status poll timed out", blob_id=blob_id, timeout=timeout)
            return None
        except BackendUnavailable as e:
            logger.warning("Blob status poll failed", blob_id=blob_id, error=str(e))
            return None

    async def _wait_for_certification(
        self,
        blob_id: str,
        record: Optional[BlobRecord],
        deadline: float,
        cancel: Optional[asyncio.Event],
    ) -> tuple[Optional[BlobRecord], int, bool]:
        polls = 0

        while record is None or not record.certified:
            if self._is_cancelled(cancel):
                logger.info("Certification wait cancelled", blob_id=blob_id, polls=polls)
                return record, polls, True

            remaining = deadline - self._clock()
            if remaining <= 0:
                break

            await self._sleep(min(self.config.poll_interval, remaining))
            remaining = deadline - self._clock()
            if remaining <= 0:
                break

            latest = await self._poll_blob_info(blob_id, remaining)
            polls += 1
            if latest is not None:
                record = latest

        return record, polls, False

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    async def verify_blob(
        self,
        blob_id: str,
        expected_data: Optional[bytes] = None,
        expected_metadata: Optional[dict[str, str]] = None,
        options: Optional[VerifyOptions] = None,
    ) -> VerificationResult:
        """
        Re-read a stored blob and compare it with what was sent.

        Args:
            blob_id: Blob to verify
            expected_data: Original bytes; content is NOT_CHECKED when None
            expected_metadata: Attributes that must be present with equal
                values; extra remote attributes are ignored
            options: Read retry and certification requirements

        Returns:
            VerificationResult with tri-state content/metadata matches

        Raises:
            BackendUnavailable: the blob could not be read within max_retries
        """
        options = options or VerifyOptions()
        self._stage(blob_id, VerificationStage.VERIFYING)

        data, attempts = await self._read_with_retry(blob_id, options)
        actual = self.checksums.compute_checksums(data)

        content_match = MatchStatus.NOT_CHECKED
        if expected_data is not None:
            content_match = self._compare_content(expected_data, data, actual)

        record = await self.storage.get_blob_info(blob_id)
        providers = await self.storage.get_storage_providers(blob_id)

        metadata_match = MatchStatus.NOT_CHECKED
        mismatches: list[MetadataMismatch] = []
        if expected_metadata:
            metadata_match, mismatches = await self._verify_metadata(blob_id, expected_metadata)

        certified = record.certified
        success = (
            (certified or not options.require_certification)
            and content_match.acceptable
            and metadata_match.acceptable
        )

        result = VerificationResult(
            success=success,
            blob_id=blob_id,
            checksums=actual,
            content_match=content_match,
            metadata_match=metadata_match,
            certified=certified,
            provider_count=len(providers),
            attempts=attempts,
            size=len(data),
            certified_epoch=record.certified_epoch,
            mismatches=mismatches,
        )

        if success:
            self._stage(blob_id, VerificationStage.DONE)
            logger.info("Blob verified", blob_id=blob_id, certified=certified, attempts=attempts)
        else:
            self._stage(blob_id, VerificationStage.FAILED)
            logger.warning(
                "Blob verification failed",
                blob_id=blob_id,
                certified=certified,
                content_match=content_match.value,
                metadata_match=metadata_match.value,
                mismatched_keys=[m.key for m in mismatches],
            )

        return result

    def _compare_content(self, expected: bytes, actual: bytes, actual_checksums: ChecksumSet) -> MatchStatus:
        if len(expected) != len(actual):
            logger.warning("Size mismatch", expected=len(expected), actual=len(actual))
            return MatchStatus.MISMATCHED
        return MatchStatus.from_bool(self.checksums.compute_checksums(expected) == actual_checksums)

    async def _read_with_retry(self, blob_id: str, options: VerifyOptions) -> tuple[bytes, int]:
        last_error: Optional[BackendUnavailable] = None

        for attempt in range(1, options.max_retries + 1):
            try:
                return await self.storage.read_blob(blob_id), attempt
            except BackendUnavailable as e:
                last_error = e
                if attempt == options.max_retries:
                    break
                delay = options.base_delay * 2 ** (attempt - 1)
                logger.warning(
                    "Blob read failed, retrying",
                    blob_id=blob_id,
                    attempt=attempt,
                    max_retries=options.max_retries,
                    delay=delay,
                    error=str(e),
                )
                await self._sleep(delay)

        logger.error("Blob read failed", blob_id=blob_id, attempts=options.max_retries)
        raise last_error

    async def _verify_metadata(
        self,
        blob_id: str,
        expected: dict[str, str],
    ) -> tuple[MatchStatus, list[MetadataMismatch]]:
        remote = await self.storage.get_blob_metadata(blob_id)
        mismatches = []
        for key, value in expected.items():
            actual = remote.get(key)
            if actual is None or str(actual) != str(value):
                mismatches.append(
                    MetadataMismatch(
                        key=key,
                        expected=str(value),
                        actual=None if actual is None else str(actual),
                    )
                )
        return MatchStatus.from_bool(not mismatches), mismatches

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    async def monitor_blob_availability(
        self,
        blob_id: str,
        expected_checksums: ChecksumSet,
        options: Optional[MonitorOptions] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> MonitoringOutcome:
        """
        Poll until the blob reads back with the expected checksums.

        Makes at most max_attempts reads, spaced by interval, and stops
        early on a match or once timeout has elapsed. Each attempt is bounded
        by the time left, so a hung backend call counts as a failed attempt.
        With require_certification the blob must also be certified.

        Returns:
            MonitoringOutcome; cancelled=True when the cancel event was set

        Raises:
            MonitoringFailed: attempts or time exhausted without a match
        """
        options = options or MonitorOptions()
        self._stage(blob_id, VerificationStage.MONITORING, max_attempts=options.max_attempts)

        started = self._clock()
        attempts = 0
        reason: Optional[str] = None
        last_error: Optional[BaseException] = None

        for attempt in range(1, options.max_attempts + 1):
            if self._is_cancelled(cancel):
                logger.info("Monitoring cancelled", blob_id=blob_id, attempts=attempts)
                return MonitoringOutcome(successful=False, attempts_made=attempts, cancelled=True)

            remaining = options.timeout - (self._clock() - started)
            if remaining <= 0:
                reason = f"timed out after {options.timeout}s"
                break

            attempts = attempt
            try:
                reason = await self._check_availability(
                    blob_id, expected_checksums, options.require_certification, remaining
                )
                if reason is None:
                    self._stage(blob_id, VerificationStage.DONE, attempts=attempts)
                    logger.info(
                        "Blob verified available",
                        blob_id=blob_id,
                        attempt=attempts,
                        max_attempts=options.max_attempts,
                    )
                    return MonitoringOutcome(successful=True, attempts_made=attempts)
                reason = f"{reason} (attempt {attempts})"
            except asyncio.TimeoutError:
                reason = f"attempt {attempts} did not complete within {remaining:.2f}s"
            except BackendUnavailable as e:
                reason = str(e)
                last_error = e

            if attempt < options.max_attempts:
                logger.debug(
                    "Monitoring attempt failed, retrying",
                    blob_id=blob_id,
                    attempt=attempt,
                    interval=options.interval,
                    reason=reason,
                )
                await self._sleep(options.interval)

        self._stage(blob_id, VerificationStage.FAILED, attempts=attempts)
        raise MonitoringFailed(blob_id, attempts, reason=reason, cause=last_error)

    async def _check_availability(
        self,
        blob_id: str,
        expected_checksums: ChecksumSet,
        require_certification: bool,
        timeout: float,
    ) -> Optional[str]:
        """Read the blob once and return why it is not yet available, or None."""

        async def check() -> Optional[str]:
            data = await self.storage.read_blob(blob_id)
            if not self.checksums.matches(data, expected_checksums):
                return "checksum mismatch during monitoring"
            if require_certification and not (await self.storage.get_blob_info(blob_id)).certified:
                return "blob not certified"
            return None

        return await asyncio.wait_for(check(), timeout=timeout)
