"""
Configuration for the transfer service.

This module provides:
- TransferConfig: Batching limits, queue names, TTLs and defaults used by
  the transfer engine and maintenance operations
"""

from __future__ import annotations

from dataclasses import dataclass

SEVEN_DAYS_SECONDS = 7 * 24 * 60 * 60


@dataclass(frozen=True)
class TransferConfig:
    """
    Configuration for transfer, maintenance and scheduling operations.

    Attributes:
        batch_size: Records requested per peek call. Brokers cap a single
            peek, so scans page through the queue in batches of this size.
        max_total_messages: Ceiling on records examined by one scan.
        default_peek_count: Records shown per queue by validate() when the
            caller gives no peek count.
        default_schedule_delay_seconds: Delay used by schedule_batch() when
            the caller gives none.
        tracking_ttl_seconds: Time-to-live of tracking entries.
        sample_metadata_limit: Maximum metadata samples kept in a transfer
            report when sample metadata is requested.
        purge_receive_batch_size: Records received per call while draining.
        purge_receive_timeout_seconds: How long a drain waits for messages
            before deciding a queue is empty.
        source_queue_name: Name of the queue messages are moved from.
        destination_queue_name: Name of the queue messages are moved to.
        error_queue_name: Name of the error sink queue.
        enable_tracing: Enable OpenTelemetry tracing.

    Example:
        >>> config = TransferConfig(batch_size=50, max_total_messages=500)
    """

    batch_size: int = 100
    max_total_messages: int = 1000
    default_peek_count: int = 10
    default_schedule_delay_seconds: int = 3600
    tracking_ttl_seconds: int = SEVEN_DAYS_SECONDS
    sample_metadata_limit: int = 5
    purge_receive_batch_size: int = 100
    purge_receive_timeout_seconds: float = 0.5
    source_queue_name: str = "source"
    destination_queue_name: str = "destination"
    error_queue_name: str = "poc-dead-letter"
    enable_tracing: bool = True

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.batch_size < 1:
            raise ValueError(
                f"batch_size must be positive, got {self.batch_size}. "
                "Use a value like 100 (default); brokers usually cap a single peek."
            )

        if self.max_total_messages < 1:
            raise ValueError(
                f"max_total_messages must be positive, got {self.max_total_messages}."
            )

        if self.default_peek_count < 1:
            raise ValueError(
                f"default_peek_count must be positive, got {self.default_peek_count}."
            )

        if self.default_schedule_delay_seconds < 0:
            raise ValueError(
                "default_schedule_delay_seconds must be >= 0, "
                f"got {self.default_schedule_delay_seconds}."
            )

        if self.tracking_ttl_seconds < 1:
            raise ValueError(
                f"tracking_ttl_seconds must be positive, got {self.tracking_ttl_seconds}. "
                "Tracking entries always expire; use 604800 (7 days, default)."
            )

        if self.sample_metadata_limit < 0:
            raise ValueError(
                f"sample_metadata_limit must be >= 0, got {self.sample_metadata_limit}."
            )

        if self.purge_receive_batch_size < 1:
            raise ValueError(
                "purge_receive_batch_size must be positive, "
                f"got {self.purge_receive_batch_size}."
            )

        if self.purge_receive_timeout_seconds < 0:
            raise ValueError(
                "purge_receive_timeout_seconds must be >= 0, "
                f"got {self.purge_receive_timeout_seconds}."
            )

        names = (self.source_queue_name, self.destination_queue_name, self.error_queue_name)
        if any(not name for name in names):
            raise ValueError("Queue names must be non-empty strings.")
        if len(set(names)) != len(names):
            raise ValueError(
                f"Source, destination and error queues must be distinct, got {names}."
            )


__all__ = ["TransferConfig", "SEVEN_DAYS_SECONDS"]
