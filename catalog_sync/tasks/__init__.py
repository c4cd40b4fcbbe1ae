"""arq task functions for the catalog sync worker.

This package contains:
- sync_tasks: Orchestrated and scheduler-guarded sync runs, single-record
  updates, manual trigger polling and status publishing
- upload_tasks: Bulk file validation, staging and reconciliation
"""
from catalog_sync.tasks.sync_tasks import (
    intelligent_sync_task,
    trigger_full_sync_task,
    trigger_incremental_sync_task,
    request_part_update_task,
    update_part_now_task,
    poll_manual_sync_trigger,
    publish_status_task,
)
from catalog_sync.tasks.upload_tasks import (
    process_bulk_upload_task,
    reconcile_upload_session_task,
    reconcile_staging_record_task,
)

__all__ = [
    "intelligent_sync_task",
    "trigger_full_sync_task",
    "trigger_incremental_sync_task",
    "request_part_update_task",
    "update_part_now_task",
    "poll_manual_sync_trigger",
    "publish_status_task",
    "process_bulk_upload_task",
    "reconcile_upload_session_task",
    "reconcile_staging_record_task",
]
