"""Executor registry mapping each sync method to its executor instance."""
from typing import Dict, List, Optional

from catalog_sync.errors.exceptions import CatalogSyncError
from catalog_sync.executors.base import SyncExecutor
from catalog_sync.models.enums import SyncMethod


# Populated by the worker at startup
_executor_registry: Dict[SyncMethod, SyncExecutor] = {}


def register_executor(method: SyncMethod, executor: SyncExecutor, replace: bool = False) -> None:
    """Register the executor serving a sync method.

    Args:
        method: Channel served by the executor
        executor: Instance implementing SyncExecutor
        replace: Allow overwriting an existing registration

    Raises:
        ValueError: If the method is already registered and replace is False
        TypeError: If executor does not implement SyncExecutor
    """
    if not isinstance(executor, SyncExecutor):
        raise TypeError(
            f"Executor {type(executor).__name__} must inherit from SyncExecutor"
        )

    if method in _executor_registry and not replace:
        raise ValueError(
            f"Sync method '{method.value}' is already registered. "
            f"Existing: {type(_executor_registry[method]).__name__}"
        )

    _executor_registry[method] = executor


def get_executor(method: SyncMethod) -> SyncExecutor:
    """Get the executor for a sync method.

    Raises:
        CatalogSyncError: If no executor is registered for the method
    """
    executor: Optional[SyncExecutor] = _executor_registry.get(method)
    if executor is None:
        available = ", ".join(m.value for m in _executor_registry) or "none"
        raise CatalogSyncError(
            f"No executor registered for '{method.value}'. Available executors: {available}"
        )
    return executor


def registered_executors() -> Dict[SyncMethod, SyncExecutor]:
    """Snapshot of the registry, as injected into the orchestrator."""
    return dict(_executor_registry)


def list_registered_methods() -> List[str]:
    return [method.value for method in _executor_registry]


def clear_executors() -> None:
    """Remove every registration (worker shutdown and tests)."""
    _executor_registry.clear()
