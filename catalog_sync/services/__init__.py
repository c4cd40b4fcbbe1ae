"""Business logic services for catalog synchronization.

Available Services:
    - transformer: supplier record shapes -> canonical catalog records
    - validation: bulk-file parsing, normalization and validation
    - staging: bulk upload staging and reconciliation
    - rate_limit: per-endpoint rate-limit gate
    - decision: channel selection heuristics
    - scheduler: periodic and queued sync jobs
    - orchestrator: per-type decision and execution of sync runs
    - sync_state: Redis status snapshot and manual triggers

Only the I/O-free modules are re-exported here; import the others
from their modules.
"""
from catalog_sync.services.rate_limit import RateLimitGate
from catalog_sync.services.validation import (
    normalize_identifier,
    derive_composite_key,
    calculate_total_quantity,
    process_bulk_file,
)
from catalog_sync.services.transformer import (
    transform_api_record,
    transform_bulk_feed_record,
    transform_pricing_record,
    transform_kit_record,
    transform_bulk_file_record,
)

__all__: list[str] = [
    "RateLimitGate",
    # Validation
    "normalize_identifier",
    "derive_composite_key",
    "calculate_total_quantity",
    "process_bulk_file",
    # Transformer
    "transform_api_record",
    "transform_bulk_feed_record",
    "transform_pricing_record",
    "transform_kit_record",
    "transform_bulk_file_record",
]
