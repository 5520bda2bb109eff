"""
Specialist Marketplace Backend — Cloudinary Media Storage
==========================================================

What:  Stores listing images in Cloudinary through the official SDK,
       and signs direct browser uploads.
Why:   Production images are served from Cloudinary's CDN, already resized
       (longest side ≤ 1200px) and quality-optimized.
How:   cloudinary.uploader.upload / destroy with per-call credentials,
       run in a worker thread (the SDK is blocking), wrapped in tenacity
       retries and a circuit breaker.
Who:   Selected by deps.build_media_storage() when credentials are set.

Resilience Strategy:
    1. Tenacity retry with exponential backoff + jitter for SDK transport
       errors and 5xx / 429 API errors
    2. Circuit breaker so a Cloudinary outage fails uploads instantly
       instead of holding every request for the whole retry schedule
    3. Other API errors are the client's fault (bad image) and become
       a ValidationError without touching the breaker

API errors are requested as data (return_error=True) so the HTTP status
can be inspected; the SDK still raises cloudinary.exceptions.Error for
network and response-parsing failures.
"""

import asyncio
import logging
import secrets
import time
import uuid
from typing import Any, Callable, Dict, Mapping, Optional

import cloudinary.api
import cloudinary.uploader
import cloudinary.utils
from cloudinary.exceptions import Error as CloudinaryError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)
from tenacity.wait import wait_base

from marketplace.config import Settings, settings
from marketplace.exceptions import (
    CircuitBreakerOpenError,
    StorageConfigurationError,
    StorageServiceError,
    ValidationError,
)
from marketplace.services.storage_base import IncomingFile, MediaStorage, UploadedAsset

logger = logging.getLogger(__name__)

# Longest side capped at 1200px, automatic quality
UPLOAD_TRANSFORMATION = "c_limit,h_1200,w_1200,q_auto"

_UNSIGNED_PARAMS = {"file", "api_key", "resource_type", "cloud_name"}


# ══════════════════════════════════════════════════════════════════════════
# Circuit Breaker Implementation
# ══════════════════════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    Circuit breaker guarding calls to the storage provider.

    State Machine:
        CLOSED (normal operation)
            → On failure: increment failure_count
            → When failure_count >= threshold: transition to OPEN

        OPEN (rejecting all requests)
            → All calls raise CircuitBreakerOpenError immediately
            → After recovery_timeout seconds: transition to HALF_OPEN

        HALF_OPEN (testing recovery)
            → Allow requests through
            → On success: transition to CLOSED (reset failure_count)
            → On failure: transition back to OPEN (reset timer)

    Not shared between worker processes; each uvicorn worker trips on its own.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 5, recovery_timeout: int = 60):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None

    def can_execute(self) -> bool:
        """
        Raises:
            CircuitBreakerOpenError if OPEN and the recovery timeout hasn't elapsed.
        """
        if self.state == self.OPEN:
            elapsed = time.time() - (self.last_failure_time or 0)
            if elapsed < self.recovery_timeout:
                raise CircuitBreakerOpenError(recovery_time=int(self.recovery_timeout - elapsed))
            logger.info("Circuit breaker transitioning to HALF_OPEN after %.1fs", elapsed)
            self.state = self.HALF_OPEN
        return True

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("Circuit breaker transitioning to CLOSED (storage recovered)")
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.time()

        if self.state == self.HALF_OPEN:
            logger.warning("Circuit breaker returning to OPEN (test request failed)")
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold:
            logger.warning(
                "Circuit breaker OPENING after %d consecutive failures",
                self.failure_count,
            )
            self.state = self.OPEN


# ══════════════════════════════════════════════════════════════════════════
# Signing
# ══════════════════════════════════════════════════════════════════════════

def sign_params(params: Mapping[str, Any], api_secret: str) -> str:
    """SHA-1 request signature over the signable, non-empty parameters."""
    signable = {
        key: value
        for key, value in params.items()
        if key not in _UNSIGNED_PARAMS and value not in (None, "")
    }
    return cloudinary.utils.api_sign_request(signable, api_secret)


def create_upload_signature(
    app_settings: Optional[Settings] = None,
    timestamp: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Sign a direct browser → Cloudinary upload into the configured folder.

    Returns:
        signature, timestamp, cloud_name, api_key and folder, everything the
        client needs to post to Cloudinary itself.

    Raises:
        StorageConfigurationError: credentials are missing
    """
    cfg = app_settings or settings
    if not cfg.cloudinary_configured:
        raise StorageConfigurationError()

    ts = timestamp if timestamp is not None else int(time.time())
    signature = sign_params(
        {"folder": cfg.cloudinary_folder, "timestamp": ts},
        cfg.cloudinary_api_secret,
    )
    return {
        "signature": signature,
        "timestamp": ts,
        "cloud_name": cfg.cloudinary_cloud_name,
        "api_key": cfg.cloudinary_api_key,
        "folder": cfg.cloudinary_folder,
    }


# ══════════════════════════════════════════════════════════════════════════
# Cloudinary Storage
# ══════════════════════════════════════════════════════════════════════════

class TransientStorageError(Exception):
    """A Cloudinary API error worth retrying (5xx or 429)."""

    def __init__(self, status_code: Optional[int], message: str):
        super().__init__(f"Cloudinary returned {status_code}: {message}")
        self.status_code = status_code


class CloudinaryStorage(MediaStorage):
    """
    Cloudinary implementation of MediaStorage.

    Error Handling Chain:
        SDK call fails → tenacity retries (SDK errors, 5xx, 429)
        → All retries fail → record circuit breaker failure → StorageServiceError
        → Circuit breaker threshold reached → future calls rejected instantly
        → Recovery timeout elapsed → next call is let through (HALF_OPEN)
    """

    name = "cloudinary"

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        folder: str,
        timeout: float = 30.0,
        max_attempts: Optional[int] = None,
        retry_wait: Optional[wait_base] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.folder = folder
        self.timeout = timeout

        self.max_attempts = max_attempts or settings.retry_max_attempts
        self.retry_wait = retry_wait or wait_exponential_jitter(
            initial=settings.retry_min_wait,
            max=settings.retry_max_wait,
            jitter=1,
        )
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )

        logger.info(
            "CloudinaryStorage initialized for cloud=%s folder=%s, "
            "circuit_breaker(threshold=%d, recovery=%ds)",
            cloud_name,
            folder,
            self.circuit_breaker.failure_threshold,
            self.circuit_breaker.recovery_timeout,
        )

    @classmethod
    def from_settings(cls, app_settings: Settings) -> "CloudinaryStorage":
        return cls(
            cloud_name=app_settings.cloudinary_cloud_name,
            api_key=app_settings.cloudinary_api_key,
            api_secret=app_settings.cloudinary_api_secret,
            folder=app_settings.cloudinary_folder,
            timeout=app_settings.storage_timeout,
            max_attempts=app_settings.retry_max_attempts,
            retry_wait=wait_exponential_jitter(
                initial=app_settings.retry_min_wait,
                max=app_settings.retry_max_wait,
                jitter=1,
            ),
            circuit_breaker=CircuitBreaker(
                failure_threshold=app_settings.cb_failure_threshold,
                recovery_timeout=app_settings.cb_recovery_timeout,
            ),
        )

    @property
    def credentials(self) -> Dict[str, Any]:
        return {
            "cloud_name": self.cloud_name,
            "api_key": self.api_key,
            "api_secret": self.api_secret,
        }

    async def store(self, upload: IncomingFile) -> UploadedAsset:
        """
        Upload one image.

        Raises:
            CircuitBreakerOpenError: too many recent failures
            ValidationError: Cloudinary rejected the image itself
            StorageServiceError: Cloudinary unreachable after all retries
        """
        self.circuit_breaker.can_execute()

        request_id = str(uuid.uuid4())[:8]
        public_id = f"specialist-{int(time.time() * 1000)}-{secrets.randbelow(10**9)}"

        logger.info("[%s] Uploading %s (%d bytes) to Cloudinary", request_id, upload.filename, upload.size)
        start_time = time.time()

        result = await self._call(
            cloudinary.uploader.upload,
            request_id,
            upload.content,
            folder=self.folder,
            public_id=public_id,
            resource_type="image",
            transformation=UPLOAD_TRANSFORMATION,
            filename=upload.filename,
        )

        logger.info(
            "[%s] Cloudinary upload completed in %.0fms: %s",
            request_id,
            (time.time() - start_time) * 1000,
            result.get("public_id"),
        )
        return UploadedAsset(
            original_name=upload.filename,
            size=result.get("bytes") or upload.size,
            mime_type=upload.content_type,
            secure_url=result.get("secure_url"),
            url=result.get("url"),
            public_id=result.get("public_id", f"{self.folder}/{public_id}"),
        )

    async def delete(self, asset: UploadedAsset) -> None:
        if not asset.public_id:
            return
        await self._call(
            cloudinary.uploader.destroy,
            str(uuid.uuid4())[:8],
            asset.public_id,
            resource_type="image",
        )
        logger.info("Destroyed Cloudinary asset %s", asset.public_id)

    async def _call(
        self,
        method: Callable[..., Dict[str, Any]],
        request_id: str,
        *args: Any,
        **options: Any,
    ) -> Dict[str, Any]:
        """Run one SDK call through the retry policy and the circuit breaker."""
        try:
            result = await self._call_with_retry(method, *args, **options)
        except ValidationError:
            raise
        except (CloudinaryError, TransientStorageError) as e:
            self.circuit_breaker.record_failure()
            logger.error("[%s] All Cloudinary retries exhausted: %s", request_id, str(e))
            raise StorageServiceError(
                message="Image upload failed after multiple attempts. Please try again later.",
                retry_after=self.circuit_breaker.recovery_timeout,
                context={"request_id": request_id, "attempts": self.max_attempts},
            )

        self.circuit_breaker.record_success()
        return result

    async def _call_with_retry(
        self,
        method: Callable[..., Dict[str, Any]],
        *args: Any,
        **options: Any,
    ) -> Dict[str, Any]:
        """
        Call the blocking SDK in a worker thread, retrying transient failures.

        The retry wraps only the SDK call; the breaker check in store()
        is not repeated per attempt.
        """
        options = {
            **options,
            **self.credentials,
            "timeout": self.timeout,
            "return_error": True,
        }
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type((CloudinaryError, TransientStorageError)),
            stop=stop_after_attempt(self.max_attempts),
            wait=self.retry_wait,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                result = await asyncio.to_thread(method, *args, **options)
                return self._check_result(result)

    @staticmethod
    def _check_result(result: Dict[str, Any]) -> Dict[str, Any]:
        error = (result or {}).get("error")
        if not error:
            return result

        message = error.get("message") or "Unknown Cloudinary error"
        status_code = error.get("http_code")
        if status_code is not None and (status_code == 429 or status_code >= 500):
            raise TransientStorageError(status_code, message)
        raise ValidationError(
            message=f"Image upload rejected: {message}",
            field="images",
            context={"status_code": status_code},
        )

    async def health_check(self) -> bool:
        """
        Ping the admin API. Skipped (reported unhealthy) while the circuit is open
        so health checks don't keep hammering a failing provider.
        """
        if self.circuit_breaker.state == CircuitBreaker.OPEN:
            return False
        try:
            await asyncio.to_thread(cloudinary.api.ping, timeout=5, **self.credentials)
            return True
        except CloudinaryError as e:
            logger.warning("Cloudinary health check failed: %s", str(e))
            return False
