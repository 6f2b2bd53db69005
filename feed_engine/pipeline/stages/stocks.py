"""Stages of the stocks batch pipeline.

External I/O is simulated with delays through :meth:`StageContext.sleep`,
so every stage honours the run deadline and the configured delay scale.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from types import MappingProxyType

from feed_engine.exceptions import StageExecutionError
from feed_engine.pipeline.base import BaseStage, StageContext
from feed_engine.pipeline.retry import RetryConfig, retry_with_backoff

PIPELINE_NAME = "stocks"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationStage(BaseStage):
    name = "Configuration"
    description = "Configure HTTP client and validate system settings"
    DEFAULTS = MappingProxyType({"connectTimeout": "10000", "requestTimeout": "10000"})

    def __init__(self, connect_timeout_ms: int | None = None, request_timeout_ms: int | None = None) -> None:
        defaults = dict(self.DEFAULTS)
        if connect_timeout_ms is not None:
            defaults["connectTimeout"] = str(connect_timeout_ms)
        if request_timeout_ms is not None:
            defaults["requestTimeout"] = str(request_timeout_ms)
        super().__init__(defaults)

    def execute(self, params: Mapping[str, str], ctx: StageContext) -> None:
        ctx.log("Configuring Stocks Batch execution environment")
        connect_timeout = self.int_param(params, "connectTimeout")
        request_timeout = self.int_param(params, "requestTimeout")
        if connect_timeout <= 0 or request_timeout <= 0:
            raise StageExecutionError("HTTP client timeouts must be positive")

        ctx.log(f"Setting HTTP client timeouts - Connect: {connect_timeout}ms, Request: {request_timeout}ms")
        ctx.log("HTTP client configured successfully")
        ctx.sleep(200)
        ctx.log("Configuration validation completed")
        ctx.log("Configuration stage completed successfully")


# ---------------------------------------------------------------------------
# Delivery status check
# ---------------------------------------------------------------------------


class DeliveryNotReadyError(StageExecutionError):
    """The delivery system does not have the data file yet."""


DeliveryStatusCheck = Callable[[int, int], str]


def simulated_delivery_status(attempt: int, max_attempts: int) -> str:
    """Report the file missing until the final attempt, which sees ``PENDING``."""
    if attempt < max_attempts:
        raise DeliveryNotReadyError("File not found")
    return "PENDING"


class DeliveryCheckStage(BaseStage):
    name = "Delivery Status Check"
    description = "Check if data file is available in the delivery system"
    DEFAULTS = MappingProxyType({"retryCount": "3", "retryDelay": "1000"})

    def __init__(self, status_check: DeliveryStatusCheck = simulated_delivery_status) -> None:
        super().__init__()
        self._status_check = status_check

    def execute(self, params: Mapping[str, str], ctx: StageContext) -> None:
        ctx.log("Starting delivery status check")
        retry_count = self.int_param(params, "retryCount")
        retry_delay = self.int_param(params, "retryDelay")
        if retry_delay < 0:
            raise StageExecutionError(f"retryDelay must not be negative, got {retry_delay}")

        ctx.log(f"Retry configuration - Count: {retry_count}, Delay: {retry_delay}ms")
        ctx.log("Checking delivery system for file presence")
        if retry_count < 1:
            # no attempts configured; nothing to wait for
            ctx.log("Delivery check stage completed successfully")
            return

        attempt = 0

        def check() -> str:
            nonlocal attempt
            attempt += 1
            ctx.log(f"Attempt {attempt} of {retry_count} - Checking delivery status")
            ctx.sleep(retry_delay / 2)
            return self._status_check(attempt, retry_count)

        def on_retry(_attempt: int, _delay: float, exc: Exception) -> None:
            ctx.log(f"{exc}, retrying in {retry_delay}ms")

        try:
            status = retry_with_backoff(
                check,
                RetryConfig.fixed(max_retries=retry_count - 1, delay=retry_delay / 2000),
                retryable_exceptions=(DeliveryNotReadyError,),
                on_retry=on_retry,
                sleep=lambda seconds: ctx.sleep(seconds * 1000),
            )
        except DeliveryNotReadyError as exc:
            raise StageExecutionError(f"Delivery file not available after {attempt} attempts: {exc}") from exc

        ctx.log(f"Delivery status check completed - Status: {status}")
        ctx.log("Delivery check stage completed successfully")


# ---------------------------------------------------------------------------
# Data processing
# ---------------------------------------------------------------------------


class DataProcessingStage(BaseStage):
    name = "Data Processing"
    description = "Process stocks data feed and transform records"
    DEFAULTS = MappingProxyType({"batchSize": "100", "parallel": "false"})

    BATCH_COUNT = 5

    def execute(self, params: Mapping[str, str], ctx: StageContext) -> None:
        ctx.log("Starting stocks data processing")
        batch_size = self.int_param(params, "batchSize")
        parallel = self.bool_param(params, "parallel")
        if batch_size <= 0:
            raise StageExecutionError(f"batchSize must be positive, got {batch_size}")

        ctx.log(f"Processing configuration - Batch size: {batch_size}, Parallel: {str(parallel).lower()}")
        ctx.log("Reading stocks data feed...")
        ctx.sleep(300)
        ctx.log("Parsing data format (CSV/JSON)...")
        ctx.sleep(200)

        total = batch_size * self.BATCH_COUNT
        ctx.log(f"Processing {total} stock records in batches of {batch_size}")
        for batch in range(1, self.BATCH_COUNT + 1):
            ctx.log(f"Processing batch {batch}/{self.BATCH_COUNT} ({batch_size} records)")
            ctx.sleep(150 if parallel else 200)
            if batch == 3:
                ctx.log(f"Applying data transformations for batch {batch}")

        ctx.log("All data batches processed successfully")
        ctx.log(f"Total records processed: {total}")
        ctx.log("Data processing stage completed successfully")


# ---------------------------------------------------------------------------
# Data validation
# ---------------------------------------------------------------------------


class ValidationStage(BaseStage):
    name = "Data Validation"
    description = "Validate data format, structure, and business rules"
    DEFAULTS = MappingProxyType({"strictMode": "true", "errorThreshold": "0.05"})

    TOTAL_RECORDS = 500
    ERROR_COUNT = 12

    def execute(self, params: Mapping[str, str], ctx: StageContext) -> None:
        ctx.log("Starting data validation")
        strict_mode = self.bool_param(params, "strictMode")
        threshold = self.float_param(params, "errorThreshold")

        ctx.log(
            f"Validation configuration - Strict mode: {str(strict_mode).lower()}, "
            f"Error threshold: {threshold * 100:.2f}%"
        )
        for step, delay in (
            ("Validating data format and structure...", 300),
            ("Checking required fields presence...", 200),
            ("Validating data types and ranges...", 250),
            ("Running business rule validations...", 200),
        ):
            ctx.log(step)
            ctx.sleep(delay)

        error_rate = self.ERROR_COUNT / self.TOTAL_RECORDS
        ctx.log(
            f"Validation results: {self.TOTAL_RECORDS} records, {self.ERROR_COUNT} errors ({error_rate * 100:.2f}%)"
        )

        if error_rate > threshold:
            if strict_mode:
                raise StageExecutionError(
                    f"Validation failed - Error rate {error_rate * 100:.2f}% exceeds threshold {threshold * 100:.2f}%"
                )
            ctx.log("WARNING: Error rate exceeds threshold but continuing due to non-strict mode")
        else:
            ctx.log("Data quality validation passed - Error rate within acceptable limits")

        ctx.log("Data validation stage completed successfully")


# ---------------------------------------------------------------------------
# Finalization
# ---------------------------------------------------------------------------


class FinalizationStage(BaseStage):
    name = "Finalization"
    description = "Finalize processing, cleanup resources, and generate reports"
    DEFAULTS = MappingProxyType({"cleanup": "true", "generateReport": "true"})

    def execute(self, params: Mapping[str, str], ctx: StageContext) -> None:
        ctx.log("Starting finalization process")
        cleanup = self.bool_param(params, "cleanup")
        generate_report = self.bool_param(params, "generateReport")
        ctx.log(
            f"Finalization configuration - Cleanup: {str(cleanup).lower()}, "
            f"Generate report: {str(generate_report).lower()}"
        )

        ctx.log("Updating database timestamps...")
        ctx.sleep(200)
        ctx.log("Writing execution metadata...")
        ctx.sleep(150)

        if generate_report:
            ctx.log("Generating execution summary report...")
            ctx.sleep(300)
            ctx.log(f"Report generated: stocks_batch_{int(time.time() * 1000)}.json")

        if cleanup:
            ctx.log("Cleaning up temporary files...")
            ctx.sleep(100)
            ctx.log("Releasing system resources...")
            ctx.sleep(100)

        ctx.log("Sending notification to monitoring systems...")
        ctx.sleep(150)
        ctx.log("All completion tasks finished successfully")
        ctx.log("Stocks batch processing completed successfully")


def build_stocks_pipeline(
    connect_timeout_ms: int | None = None,
    request_timeout_ms: int | None = None,
) -> list[BaseStage]:
    """Return fresh instances of the five stocks stages in execution order."""
    return [
        ConfigurationStage(connect_timeout_ms, request_timeout_ms),
        DeliveryCheckStage(),
        DataProcessingStage(),
        ValidationStage(),
        FinalizationStage(),
    ]
