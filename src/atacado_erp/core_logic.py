"""Shared business logic plumbing for Atacado ERP.

Every BLL module (orders, finance, notifications, auth...) receives a
:class:`RuntimeContext` carrying the parsed settings and the live workbook,
and, for anything that acts on behalf of a user, an explicit
:class:`Session`. Nothing in the package reads an ambient "current user".
This module holds the pieces those modules share: context loading and
persistence, id generation, timestamp resolution, read caches and the small
input guards.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TypeVar

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION, MONEY_QUANTUM, UserRole
from .errors import PersistenceError, ValidationError

_Row = TypeVar("_Row")


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and workbook references used by the BLL."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class Session:
    """Authenticated caller passed explicitly into BLL operations.

    ``authenticated_at`` records when the credentials were last checked; it
    drives the re-authentication window for destructive operations.
    """

    user_id: str
    name: str
    role: UserRole
    authenticated_at: datetime

    def is_fresh(self, *, window_minutes: int, now: Optional[datetime] = None) -> bool:
        """Return ``True`` when the credentials were verified recently enough."""

        moment = _resolve_timestamp(now)
        return moment - self.authenticated_at <= timedelta(minutes=window_minutes)

    def refreshed(self, moment: datetime) -> "Session":
        return replace(self, authenticated_at=moment)


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current UTC time when it is ``None``.

    Naive overrides are read as UTC so every stored timestamp is aware and
    can be compared with the clock.
    """

    if candidate is None:
        return datetime.now(UTC)
    if candidate.tzinfo is None:
        return candidate.replace(tzinfo=UTC)
    return candidate


def generate_document_id(*, prefix: str, when: Optional[datetime] = None) -> str:
    """Generate a sortable, collision-free document identifier.

    Args:
        prefix (str): Collection designator (``"O"`` orders, ``"T"``
            transactions, ``"N"`` notifications...).
        when (datetime | None): Timestamp embedded in the identifier; defaults
            to the current UTC time.

    Returns:
        str: ``{prefix}{YYYYMMDDHHMMSSffffff}-{6 hex chars}``.

    The timestamp keeps ids roughly chronological; the random suffix keeps
    ids unique when a batch creates many documents within one microsecond.
    """

    when = _resolve_timestamp(when)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}-{uuid.uuid4().hex[:6]}"


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict cache buckets after mutating the collections they mirror."""

    if not names:
        return
    log.debug("Invalidating cache buckets: %s", ", ".join(names))
    for name in names:
        context._cache.pop(name, None)


def cached_rows(
    context: RuntimeContext,
    collection: str,
    deserializer: Callable[[Dict[str, Any]], _Row],
) -> List[_Row]:
    """Return every row of ``collection`` as typed records, memoized per context.

    The cache bucket is keyed by collection name; callers that write to the
    collection must call :func:`invalidate_cache` with the same name.
    """

    bucket = _get_cache_bucket(context, collection)
    if "all" not in bucket:
        documents = data_manager.query_documents(context.workbook, collection)
        bucket["all"] = [deserializer(document) for document in documents]
        log.debug("Populated %s cache with %d entries", collection, len(bucket["all"]))
    return list(bucket["all"])


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    Args:
        config_path (Path | None): Optional override path for ``config.ini``.
            When omitted the data layer searches upward from the cwd.

    Returns:
        RuntimeContext: Settings, workbook and an empty cache store.

    Raises:
        FileNotFoundError: If the configuration file or workbook is missing.
        KeyError: When mandatory configuration options are missing.
    """

    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If ``config.ini`` declares another schema version.
        PersistenceError: If the workbook sheets do not match the layout.
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
    data_manager.validate_workbook_layout(context.workbook)
    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Save the in-memory workbook to the configured data file.

    Raises:
        PersistenceError: If the file cannot be written (locked by Excel,
            read-only folder...). The in-memory workbook is left as is so the
            caller can retry.
    """

    try:
        data_manager.save_workbook(context.workbook, destination=context.settings.data_file)
    except OSError as exc:
        log.error("Could not persist workbook '%s': %s", context.settings.data_file, exc)
        raise PersistenceError(f"Could not save workbook: {exc}") from exc
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook, dropping unsaved edits and cached reads."""

    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)


def to_money(value: Any) -> Decimal:
    """Coerce ``value`` into a two-place :class:`Decimal`.

    Raises:
        ValidationError: If the value is not numeric.
    """

    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).replace(",", "."))
        if not amount.is_finite():
            raise ValidationError(f"Invalid monetary value: {value!r}")
        return amount.quantize(MONEY_QUANTUM)
    except ArithmeticError as exc:
        raise ValidationError(f"Invalid monetary value: {value!r}") from exc


def require_positive_amount(amount: Decimal, *, label: str = "Amount") -> None:
    """Reject zero or negative amounts with :class:`ValidationError`."""

    if amount <= Decimal("0"):
        log.error("%s validation failed: %s", label, amount)
        raise ValidationError(f"{label} must be greater than zero")


def require_nonnegative_money(amount: Decimal, *, label: str = "Amount") -> None:
    """Reject negative monetary values with :class:`ValidationError`."""

    if amount < Decimal("0"):
        log.error("%s validation failed: %s", label, amount)
        raise ValidationError(f"{label} must be zero or positive")


def require_text(value: Optional[str], *, label: str) -> str:
    """Return ``value`` stripped, rejecting blank strings."""

    cleaned = (value or "").strip()
    if not cleaned:
        log.error("%s validation failed: blank value", label)
        raise ValidationError(f"{label} must not be empty")
    return cleaned
