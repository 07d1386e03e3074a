"""Runtime wiring for the store back-office.

The runtime context is built once per session and handed explicitly to the
front-end. It owns the single :class:`~store_backoffice.catalog.CatalogStore`
instance, so every view reads the same snapshot and every mutation funnels
through the catalog's own operations.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from . import data_manager, log
from .backend import BackendError, WorkbookBackend
from .catalog import CatalogStore
from .checkout import CheckoutSession, SalesRecorder
from .constants import EXPECTED_SCHEMA_VERSION
from .notifications import LOAD_FAILED, Notifier


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration, backend, and session-scoped services."""

    settings: data_manager.ConfigSettings
    backend: WorkbookBackend
    notifier: Notifier
    catalog: CatalogStore
    recorder: SalesRecorder
    session: CheckoutSession


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration, open the backing workbook, and load the catalog.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Context whose catalog is already loaded and subscribed
            to the backend's change feed.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    backend = WorkbookBackend.from_settings(settings)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return build_context(settings, backend)


def build_context(settings: data_manager.ConfigSettings, backend: WorkbookBackend) -> RuntimeContext:
    """Assemble session services around an already opened backend."""
    notifier = Notifier()
    catalog = CatalogStore(backend, settings.user_id, notifier)
    catalog.open()
    return RuntimeContext(
        settings=settings,
        backend=backend,
        notifier=notifier,
        catalog=catalog,
        recorder=SalesRecorder(backend, settings.user_id),
        session=CheckoutSession(),
    )


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def list_sales(context: RuntimeContext) -> List[data_manager.SaleRow]:
    """Fetch the signed-in user's sales; an unreadable store yields no sales."""
    if context.settings.user_id is None:
        return []
    try:
        return context.backend.fetch_sales(context.settings.user_id)
    except BackendError as exc:
        log.error("Failed to load sales transactions: %s", exc)
        context.notifier.error(LOAD_FAILED)
        return []


def sync_external_changes(context: RuntimeContext) -> int:
    """Pick up edits other sessions saved to the workbook.

    Returns:
        int: Number of change events published (each refreshes the catalog).
    """
    try:
        events = context.backend.poll()
    except BackendError as exc:
        log.error("Failed to check for external changes: %s", exc)
        context.notifier.error(LOAD_FAILED)
        return 0
    return len(events)
