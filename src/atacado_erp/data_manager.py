"""Data access layer for Atacado ERP.

This module owns every read and write against the master workbook. Business
rules live in the BLL modules; here we only translate between worksheet rows
and Python values.

The public API covers four responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. The document gateway: create / get / query / update / delete on a
   collection (one worksheet per collection) plus an all-or-nothing
   :func:`batch_write`.
4. Typed records: ``serialize_*`` / ``deserialize_*`` pairs that convert
   between raw documents and frozen dataclasses, rejecting malformed rows
   with :class:`~atacado_erp.errors.MalformedDocumentError`.
"""


from __future__ import annotations

import configparser
import json
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Type, TypeVar

import openpyxl
from openpyxl.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet

from . import log
from .constants import (
    DEFAULT_MAX_BATCH_OPERATIONS,
    DEFAULT_REAUTH_WINDOW_MINUTES,
    DEFAULT_SLA_GOOD_MINUTES,
    DEFAULT_SLA_WARNING_MINUTES,
    SHEET_COLUMNS,
    NotificationType,
    OrderStatus,
    RecurrenceFrequency,
    SheetName,
    TransactionKind,
    TransactionStatus,
    UserRole,
)
from .errors import (
    BatchLimitExceeded,
    ConcurrentModificationError,
    MalformedDocumentError,
    NotFoundError,
    PersistenceError,
)


CONFIG_FILE_NAME = "config.ini"
USERS_SHEET = SheetName.USERS.value
PRODUCTS_SHEET = SheetName.PRODUCTS.value
ORDERS_SHEET = SheetName.ORDERS.value
TRANSACTIONS_SHEET = SheetName.TRANSACTIONS.value
NOTIFICATIONS_SHEET = SheetName.NOTIFICATIONS.value

Document = Dict[str, Any]
_E = TypeVar("_E", bound=Enum)


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    company_name: str
    schema_version: str
    max_batch_operations: int = DEFAULT_MAX_BATCH_OPERATIONS
    reauth_window_minutes: int = DEFAULT_REAUTH_WINDOW_MINUTES
    sla_good_minutes: int = DEFAULT_SLA_GOOD_MINUTES
    sla_warning_minutes: int = DEFAULT_SLA_WARNING_MINUTES


@dataclass(frozen=True)
class UserRow:
    """In-memory view of a row from the ``Users`` sheet."""

    user_id: str
    name: str
    email: str
    role: UserRole
    is_active: bool
    password_hash: str
    cpf_cnpj: Optional[str]
    phone: Optional[str]
    address: Optional[str]
    created_at: datetime
    reset_token: Optional[str] = None


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    product_id: str
    code: str
    description: str
    group: str
    price: Decimal
    is_active: bool


@dataclass(frozen=True)
class OrderItem:
    """One line of an order. Stored as JSON inside the ``Items`` column."""

    product_id: str
    description: str
    quantity: int
    unit_price: Decimal
    subtotal: Decimal


@dataclass(frozen=True)
class OrderRow:
    """In-memory view of a row from the ``Orders`` sheet.

    ``client_name`` and ``seller_name`` are display snapshots taken when the
    ids were written; they are not refreshed when the user renames.
    """

    order_id: str
    client_id: str
    client_name: str
    seller_id: Optional[str]
    seller_name: Optional[str]
    items: Tuple[OrderItem, ...]
    total: Decimal
    status: OrderStatus
    created_at: datetime
    received_at: Optional[datetime] = None
    invoiced_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    version: int = 1


@dataclass(frozen=True)
class TransactionRow:
    """In-memory view of a row from the ``Transactions`` sheet."""

    transaction_id: str
    user_id: str
    description: str
    amount: Decimal
    kind: TransactionKind
    category: str
    due_date: date
    status: TransactionStatus
    payment_method: Optional[str]
    is_recurring: bool
    frequency: Optional[RecurrenceFrequency]
    recurrence_count: Optional[int]
    observation: str
    created_at: datetime


@dataclass(frozen=True)
class NotificationRow:
    """In-memory view of a row from the ``Notifications`` sheet."""

    notification_id: str
    recipient_id: str
    title: str
    message: str
    notification_type: NotificationType
    is_read: bool
    created_at: datetime
    order_id: Optional[str] = None


@dataclass(frozen=True)
class WriteOperation:
    """A single step of a :func:`batch_write` call."""

    action: str
    collection: str
    document_id: str
    fields: Mapping[str, Any] = field(default_factory=dict)
    expected: Optional[Mapping[str, Any]] = None

    @classmethod
    def create(cls, collection: str, document: Mapping[str, Any]) -> "WriteOperation":
        id_column = SHEET_COLUMNS.get(collection, [""])[0]
        return cls("create", collection, str(document.get(id_column) or ""), dict(document))

    @classmethod
    def update(
        cls,
        collection: str,
        document_id: str,
        fields: Mapping[str, Any],
        *,
        expected: Optional[Mapping[str, Any]] = None,
    ) -> "WriteOperation":
        return cls("update", collection, document_id, dict(fields), expected)

    @classmethod
    def delete(cls, collection: str, document_id: str) -> "WriteOperation":
        return cls("delete", collection, document_id)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    An explicit path wins without verification so callers can deliberately
    target a non-standard location. Otherwise the search walks up from the
    current working directory and returns the first ``config.ini`` found.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The caller's path or the discovered configuration file.

    Raises:
        FileNotFoundError: If no ``config.ini`` exists in the cwd or any parent.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for directory in (current, *current.parents):
        candidate = directory / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. ``~`` is expanded.

    Returns:
        configparser.ConfigParser: Parser holding the raw configuration data.
            Required entries are validated later by :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
    """

    config_path = Path(config_path).expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` entries are mandatory. ``[Limits]``, ``[Security]`` and
    ``[Orders]`` are optional and fall back to the package defaults. Relative
    ``DataFile`` entries are anchored to ``base_path`` (or the cwd).

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to resolve a relative
            ``DataFile``.

    Returns:
        ConfigSettings: Immutable settings with an absolute data file path.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If a numeric option cannot be parsed or is not positive.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        company_name = parser.get("System", "CompanyName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    max_batch = parser.getint("Limits", "MaxBatchOperations", fallback=DEFAULT_MAX_BATCH_OPERATIONS)
    reauth_window = parser.getint("Security", "ReauthWindowMinutes", fallback=DEFAULT_REAUTH_WINDOW_MINUTES)
    sla_good = parser.getint("Orders", "SlaGoodMinutes", fallback=DEFAULT_SLA_GOOD_MINUTES)
    sla_warning = parser.getint("Orders", "SlaWarningMinutes", fallback=DEFAULT_SLA_WARNING_MINUTES)
    for name, value in (
        ("MaxBatchOperations", max_batch),
        ("ReauthWindowMinutes", reauth_window),
        ("SlaGoodMinutes", sla_good),
        ("SlaWarningMinutes", sla_warning),
    ):
        if value <= 0:
            raise ValueError(f"Configuration value {name} must be positive (got {value})")
    if sla_warning < sla_good:
        raise ValueError("SlaWarningMinutes must not be lower than SlaGoodMinutes")

    data_file_path = Path(data_file_raw).expanduser()
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        company_name=company_name,
        schema_version=schema_version,
        max_batch_operations=max_batch,
        reauth_window_minutes=reauth_window,
        sla_good_minutes=sla_good,
        sla_warning_minutes=sla_warning,
    )


# ---------------------------------------------------------------------------
# Workbook lifecycle
# ---------------------------------------------------------------------------


def open_workbook(data_file: Path) -> Workbook:
    """Open the master workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook at ``destination``, creating parent folders."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding unsaved in-memory changes."""

    return open_workbook(data_file)


def validate_workbook_layout(workbook: Workbook) -> None:
    """Check that every collection sheet exists with the expected header.

    Raises:
        PersistenceError: If a sheet is missing or its header row differs from
            :data:`~atacado_erp.constants.SHEET_COLUMNS`.
    """

    for collection, columns in SHEET_COLUMNS.items():
        if collection not in workbook.sheetnames:
            raise PersistenceError(f"Workbook is missing the '{collection}' sheet")
        header = read_header(workbook[collection])
        if header[: len(columns)] != list(columns):
            raise PersistenceError(
                f"Unexpected header in '{collection}': {header!r} (expected {list(columns)!r})"
            )


# ---------------------------------------------------------------------------
# Document gateway
# ---------------------------------------------------------------------------


def _sheet(workbook: Workbook, collection: str) -> Worksheet:
    if collection not in SHEET_COLUMNS or collection not in workbook.sheetnames:
        raise PersistenceError(f"Unknown collection: {collection}")
    return workbook[collection]


def read_header(sheet: Worksheet) -> List[str]:
    """Return the column names stored on the first row of ``sheet``."""

    return [cell.value for cell in sheet[1] if cell.value is not None]


def _iter_documents(sheet: Worksheet) -> Iterator[Tuple[int, Document]]:
    header = read_header(sheet)
    for row_idx, raw in enumerate(sheet.iter_rows(min_row=2, max_col=len(header), values_only=True), start=2):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield row_idx, dict(zip(header, raw))


def locate_row(workbook: Workbook, collection: str, document_id: str) -> Optional[int]:
    """Find the 1-based worksheet row holding ``document_id``.

    The id always lives in the first column of a collection sheet. The header
    row is never matched.

    Returns:
        int | None: Row index when found, otherwise ``None``.
    """

    sheet = _sheet(workbook, collection)
    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, max_col=1, values_only=True), start=2):
        value = row[0]
        if value is not None and str(value) == str(document_id):
            return row_idx
    return None


def _check_columns(collection: str, names: Sequence[str]) -> None:
    unknown = [name for name in names if name not in SHEET_COLUMNS[collection]]
    if unknown:
        raise PersistenceError(f"Unknown field(s) for '{collection}': {', '.join(sorted(unknown))}")


def _row_document(sheet: Worksheet, row_idx: int) -> Document:
    header = read_header(sheet)
    values = next(sheet.iter_rows(min_row=row_idx, max_row=row_idx, max_col=len(header), values_only=True))
    return dict(zip(header, values))


def _check_expected(collection: str, document_id: str, current: Mapping[str, Any], expected: Mapping[str, Any]) -> None:
    for column, value in expected.items():
        if current.get(column) != value:
            log.warning(
                "Compare-and-swap rejected on %s '%s': %s is %r, expected %r",
                collection,
                document_id,
                column,
                current.get(column),
                value,
            )
            raise ConcurrentModificationError(
                f"{collection} '{document_id}' changed concurrently ({column} is no longer {value!r})"
            )


def create_document(workbook: Workbook, collection: str, document: Mapping[str, Any]) -> str:
    """Insert ``document`` as a new row and return its id.

    Args:
        workbook (Workbook): Target workbook.
        collection (str): Sheet name of the collection.
        document (Mapping[str, Any]): Column -> value mapping. Must contain the
            id column; absent columns are written as blank cells.

    Returns:
        str: The id of the inserted document.

    Raises:
        PersistenceError: For unknown columns, a missing id or a duplicate id.
    """

    sheet = _sheet(workbook, collection)
    columns = SHEET_COLUMNS[collection]
    _check_columns(collection, list(document))
    document_id = document.get(columns[0])
    if document_id in (None, ""):
        raise PersistenceError(f"Document for '{collection}' is missing its {columns[0]}")
    if locate_row(workbook, collection, str(document_id)) is not None:
        raise PersistenceError(f"Duplicate id '{document_id}' in '{collection}'")

    sheet.append([document.get(column) for column in columns])
    log.debug("Created %s document '%s'", collection, document_id)
    return str(document_id)


def get_document(workbook: Workbook, collection: str, document_id: str) -> Document:
    """Return the raw document stored under ``document_id``.

    Raises:
        NotFoundError: If no row carries the id.
    """

    row_idx = locate_row(workbook, collection, document_id)
    if row_idx is None:
        raise NotFoundError(f"{collection} document not found: {document_id}")
    return _row_document(_sheet(workbook, collection), row_idx)


def query_documents(
    workbook: Workbook,
    collection: str,
    *,
    filters: Optional[Mapping[str, Any]] = None,
    order_by: Optional[str] = None,
    descending: bool = False,
    limit: Optional[int] = None,
) -> List[Document]:
    """Return documents matching every equality filter.

    Documents whose ``order_by`` value is blank always sort last, regardless
    of direction.

    Raises:
        PersistenceError: If a filter or ordering column is unknown.
    """

    sheet = _sheet(workbook, collection)
    filters = dict(filters or {})
    _check_columns(collection, [*filters, *([order_by] if order_by else [])])

    documents = [
        document
        for _, document in _iter_documents(sheet)
        if all(document.get(column) == value for column, value in filters.items())
    ]

    if order_by:
        present = [document for document in documents if document.get(order_by) is not None]
        missing = [document for document in documents if document.get(order_by) is None]
        present.sort(key=lambda document: document[order_by], reverse=descending)
        documents = present + missing

    if limit is not None:
        documents = documents[:limit]
    return documents


def update_document(
    workbook: Workbook,
    collection: str,
    document_id: str,
    fields: Mapping[str, Any],
    *,
    expected: Optional[Mapping[str, Any]] = None,
) -> None:
    """Overwrite selected columns of an existing document.

    Args:
        workbook (Workbook): Target workbook.
        collection (str): Sheet name of the collection.
        document_id (str): Id of the row to modify.
        fields (Mapping[str, Any]): Column -> new value. The id column cannot
            be changed.
        expected (Mapping[str, Any] | None): Compare-and-swap guard. Each
            listed column must currently hold the given value, otherwise the
            update is refused and the row is left untouched.

    Raises:
        NotFoundError: If the document does not exist.
        ConcurrentModificationError: If ``expected`` no longer matches.
        PersistenceError: For unknown columns or an attempt to change the id.
    """

    sheet = _sheet(workbook, collection)
    columns = SHEET_COLUMNS[collection]
    _check_columns(collection, list(fields))
    if columns[0] in fields:
        raise PersistenceError(f"The {columns[0]} column of '{collection}' is immutable")

    row_idx = locate_row(workbook, collection, document_id)
    if row_idx is None:
        raise NotFoundError(f"{collection} document not found: {document_id}")

    if expected:
        _check_expected(collection, document_id, _row_document(sheet, row_idx), expected)

    for column, value in fields.items():
        sheet.cell(row=row_idx, column=columns.index(column) + 1, value=value)
    log.debug("Updated %s '%s' fields: %s", collection, document_id, ", ".join(fields))


def delete_document(workbook: Workbook, collection: str, document_id: str) -> None:
    """Remove the row holding ``document_id``.

    Raises:
        NotFoundError: If the document does not exist.
    """

    sheet = _sheet(workbook, collection)
    row_idx = locate_row(workbook, collection, document_id)
    if row_idx is None:
        raise NotFoundError(f"{collection} document not found: {document_id}")
    sheet.delete_rows(row_idx, 1)
    log.debug("Deleted %s document '%s'", collection, document_id)


def _validate_batch(workbook: Workbook, operations: Sequence[WriteOperation]) -> None:
    created: Dict[str, set] = {}
    deleted: Dict[str, set] = {}

    for operation in operations:
        collection = operation.collection
        sheet = _sheet(workbook, collection)
        columns = SHEET_COLUMNS[collection]
        created_here = created.setdefault(collection, set())
        deleted_here = deleted.setdefault(collection, set())
        document_id = operation.document_id

        if operation.action == "create":
            _check_columns(collection, list(operation.fields))
            if not document_id:
                raise PersistenceError(f"Document for '{collection}' is missing its {columns[0]}")
            exists = locate_row(workbook, collection, document_id) is not None
            if (exists and document_id not in deleted_here) or document_id in created_here:
                raise PersistenceError(f"Duplicate id '{document_id}' in '{collection}'")
            created_here.add(document_id)
            deleted_here.discard(document_id)
            continue

        if operation.action not in ("update", "delete"):
            raise PersistenceError(f"Unsupported batch action: {operation.action}")

        row_idx = locate_row(workbook, collection, document_id)
        alive = (row_idx is not None and document_id not in deleted_here) or document_id in created_here
        if not alive:
            raise NotFoundError(f"{collection} document not found: {document_id}")

        if operation.action == "update":
            _check_columns(collection, list(operation.fields))
            if columns[0] in operation.fields:
                raise PersistenceError(f"The {columns[0]} column of '{collection}' is immutable")
            if operation.expected and row_idx is not None and document_id not in created_here:
                _check_expected(collection, document_id, _row_document(sheet, row_idx), operation.expected)
        else:
            deleted_here.add(document_id)
            created_here.discard(document_id)


def batch_write(
    workbook: Workbook,
    operations: Sequence[WriteOperation],
    *,
    max_operations: int = DEFAULT_MAX_BATCH_OPERATIONS,
) -> None:
    """Apply several writes as one all-or-nothing unit.

    The whole batch is validated against the current workbook before the
    first row is touched, so a rejected batch leaves every collection as it
    was.

    Args:
        workbook (Workbook): Target workbook.
        operations (Sequence[WriteOperation]): Writes applied in order.
        max_operations (int): Ceiling on the batch size.

    Raises:
        BatchLimitExceeded: If ``operations`` is longer than ``max_operations``.
        NotFoundError: If an update or delete targets a missing document.
        ConcurrentModificationError: If an update's guard does not match.
        PersistenceError: For duplicate ids, unknown columns or actions.
    """

    operations = list(operations)
    if len(operations) > max_operations:
        log.error("Batch of %d operations exceeds the limit of %d", len(operations), max_operations)
        raise BatchLimitExceeded(
            f"Batch of {len(operations)} operations exceeds the limit of {max_operations}"
        )
    if not operations:
        return

    _validate_batch(workbook, operations)

    for operation in operations:
        if operation.action == "create":
            create_document(workbook, operation.collection, operation.fields)
        elif operation.action == "update":
            update_document(workbook, operation.collection, operation.document_id, operation.fields)
        else:
            delete_document(workbook, operation.collection, operation.document_id)
    log.debug("Committed batch of %d operations", len(operations))


# ---------------------------------------------------------------------------
# Field converters
# ---------------------------------------------------------------------------


def _malformed(collection: str, document: Mapping[str, Any], column: str, reason: str) -> MalformedDocumentError:
    document_id = document.get(SHEET_COLUMNS[collection][0])
    return MalformedDocumentError(f"{collection} '{document_id}': column {column} {reason}")


def _text(collection: str, document: Mapping[str, Any], column: str) -> str:
    value = document.get(column)
    if value is None or str(value).strip() == "":
        raise _malformed(collection, document, column, "is required")
    return str(value)


def _optional_text(document: Mapping[str, Any], column: str) -> Optional[str]:
    value = document.get(column)
    if value is None or str(value) == "":
        return None
    return str(value)


def _decimal(collection: str, document: Mapping[str, Any], column: str) -> Decimal:
    value = document.get(column)
    if value is None or isinstance(value, bool):
        raise _malformed(collection, document, column, "must be a number")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise _malformed(collection, document, column, f"is not a number: {value!r}") from exc


def _integer(collection: str, document: Mapping[str, Any], column: str) -> int:
    value = document.get(column)
    if isinstance(value, bool):
        raise _malformed(collection, document, column, "must be an integer")
    try:
        number = Decimal(str(value))
    except InvalidOperation as exc:
        raise _malformed(collection, document, column, f"is not an integer: {value!r}") from exc
    if number != number.to_integral_value():
        raise _malformed(collection, document, column, f"is not an integer: {value!r}")
    return int(number)


def _optional_integer(collection: str, document: Mapping[str, Any], column: str) -> Optional[int]:
    if document.get(column) in (None, ""):
        return None
    return _integer(collection, document, column)


def _boolean(collection: str, document: Mapping[str, Any], column: str) -> bool:
    value = document.get(column)
    if isinstance(value, bool):
        return value
    if value in (0, 1):
        return bool(value)
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise _malformed(collection, document, column, f"must be a boolean (got {value!r})")


def _datetime(collection: str, document: Mapping[str, Any], column: str) -> datetime:
    value = document.get(column)
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except (TypeError, ValueError) as exc:
        raise _malformed(collection, document, column, f"is not a timestamp: {value!r}") from exc


def _optional_datetime(collection: str, document: Mapping[str, Any], column: str) -> Optional[datetime]:
    if document.get(column) in (None, ""):
        return None
    return _datetime(collection, document, column)


def _date(collection: str, document: Mapping[str, Any], column: str) -> date:
    value = document.get(column)
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (TypeError, ValueError) as exc:
        raise _malformed(collection, document, column, f"is not a calendar date: {value!r}") from exc


def _enum(enum_cls: Type[_E], collection: str, document: Mapping[str, Any], column: str) -> _E:
    value = document.get(column)
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise _malformed(collection, document, column, f"has unsupported value {value!r}") from exc


def _iso(moment: Optional[datetime]) -> Optional[str]:
    return moment.isoformat() if moment is not None else None


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def serialize_user(record: UserRow) -> Document:
    """Convert a user dataclass into a ``Users`` document."""

    return {
        "UserID": record.user_id,
        "Name": record.name,
        "Email": record.email,
        "Role": record.role.value,
        "IsActive": record.is_active,
        "PasswordHash": record.password_hash,
        "CpfCnpj": record.cpf_cnpj,
        "Phone": record.phone,
        "Address": record.address,
        "CreatedAt": _iso(record.created_at),
        "ResetToken": record.reset_token,
    }


def deserialize_user(document: Mapping[str, Any]) -> UserRow:
    """Validate a ``Users`` document and build a :class:`UserRow`."""

    sheet = USERS_SHEET
    return UserRow(
        user_id=_text(sheet, document, "UserID"),
        name=_text(sheet, document, "Name"),
        email=_text(sheet, document, "Email"),
        role=_enum(UserRole, sheet, document, "Role"),
        is_active=_boolean(sheet, document, "IsActive"),
        password_hash=_text(sheet, document, "PasswordHash"),
        cpf_cnpj=_optional_text(document, "CpfCnpj"),
        phone=_optional_text(document, "Phone"),
        address=_optional_text(document, "Address"),
        created_at=_datetime(sheet, document, "CreatedAt"),
        reset_token=_optional_text(document, "ResetToken"),
    )


def serialize_product(record: ProductRow) -> Document:
    """Convert a product dataclass into a ``Products`` document."""

    return {
        "ProductID": record.product_id,
        "Code": record.code,
        "Description": record.description,
        "Group": record.group,
        "Price": record.price,
        "IsActive": record.is_active,
    }


def deserialize_product(document: Mapping[str, Any]) -> ProductRow:
    """Validate a ``Products`` document and build a :class:`ProductRow`."""

    sheet = PRODUCTS_SHEET
    price = _decimal(sheet, document, "Price")
    if price < 0:
        raise _malformed(sheet, document, "Price", "must not be negative")
    return ProductRow(
        product_id=_text(sheet, document, "ProductID"),
        code=_text(sheet, document, "Code"),
        description=_text(sheet, document, "Description"),
        group=_optional_text(document, "Group") or "",
        price=price,
        is_active=_boolean(sheet, document, "IsActive"),
    )


def serialize_order_items(items: Sequence[OrderItem]) -> str:
    """Encode order lines as JSON, keeping decimals as strings."""

    return json.dumps(
        [
            {
                "productId": item.product_id,
                "description": item.description,
                "quantity": item.quantity,
                "unitPrice": str(item.unit_price),
                "subtotal": str(item.subtotal),
            }
            for item in items
        ],
        ensure_ascii=False,
    )


def deserialize_order_items(document: Mapping[str, Any]) -> Tuple[OrderItem, ...]:
    """Decode and validate the JSON ``Items`` column of an order."""

    sheet = ORDERS_SHEET
    raw = document.get("Items")
    try:
        payload = json.loads(raw) if isinstance(raw, str) else None
    except json.JSONDecodeError as exc:
        raise _malformed(sheet, document, "Items", "is not valid JSON") from exc
    if not isinstance(payload, list) or not payload:
        raise _malformed(sheet, document, "Items", "must be a non-empty list")

    items: List[OrderItem] = []
    for entry in payload:
        if not isinstance(entry, dict):
            raise _malformed(sheet, document, "Items", "contains a non-object entry")
        try:
            quantity = entry["quantity"]
            unit_price = Decimal(str(entry["unitPrice"]))
            subtotal = Decimal(str(entry["subtotal"]))
            product_id = str(entry["productId"])
            description = str(entry.get("description") or "")
        except (KeyError, InvalidOperation) as exc:
            raise _malformed(sheet, document, "Items", f"has an invalid line: {entry!r}") from exc
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise _malformed(sheet, document, "Items", f"has a non-positive quantity: {entry!r}")
        if unit_price < 0:
            raise _malformed(sheet, document, "Items", f"has a negative unit price: {entry!r}")
        items.append(OrderItem(product_id, description, quantity, unit_price, subtotal))
    return tuple(items)


def serialize_order(record: OrderRow) -> Document:
    """Convert an order dataclass into an ``Orders`` document."""

    return {
        "OrderID": record.order_id,
        "ClientID": record.client_id,
        "ClientName": record.client_name,
        "SellerID": record.seller_id,
        "SellerName": record.seller_name,
        "Items": serialize_order_items(record.items),
        "Total": record.total,
        "Status": record.status.value,
        "CreatedAt": _iso(record.created_at),
        "ReceivedAt": _iso(record.received_at),
        "InvoicedAt": _iso(record.invoiced_at),
        "CancelReason": record.cancel_reason,
        "Version": record.version,
    }


def deserialize_order(document: Mapping[str, Any]) -> OrderRow:
    """Validate an ``Orders`` document and build an :class:`OrderRow`."""

    sheet = ORDERS_SHEET
    status = _enum(OrderStatus, sheet, document, "Status")
    cancel_reason = _optional_text(document, "CancelReason")
    if status is OrderStatus.CANCELLED and not (cancel_reason or "").strip():
        raise _malformed(sheet, document, "CancelReason", "is required for cancelled orders")
    return OrderRow(
        order_id=_text(sheet, document, "OrderID"),
        client_id=_text(sheet, document, "ClientID"),
        client_name=_text(sheet, document, "ClientName"),
        seller_id=_optional_text(document, "SellerID"),
        seller_name=_optional_text(document, "SellerName"),
        items=deserialize_order_items(document),
        total=_decimal(sheet, document, "Total"),
        status=status,
        created_at=_datetime(sheet, document, "CreatedAt"),
        received_at=_optional_datetime(sheet, document, "ReceivedAt"),
        invoiced_at=_optional_datetime(sheet, document, "InvoicedAt"),
        cancel_reason=cancel_reason,
        version=_integer(sheet, document, "Version"),
    )


def serialize_transaction(record: TransactionRow) -> Document:
    """Convert a transaction dataclass into a ``Transactions`` document."""

    return {
        "TransactionID": record.transaction_id,
        "UserID": record.user_id,
        "Description": record.description,
        "Amount": record.amount,
        "Type": record.kind.value,
        "Category": record.category,
        "DueDate": record.due_date.isoformat(),
        "Status": record.status.value,
        "PaymentMethod": record.payment_method,
        "IsRecurring": record.is_recurring,
        "Frequency": record.frequency.value if record.frequency is not None else None,
        "RecurrenceCount": record.recurrence_count,
        "Observation": record.observation,
        "CreatedAt": _iso(record.created_at),
    }


def deserialize_transaction(document: Mapping[str, Any]) -> TransactionRow:
    """Validate a ``Transactions`` document and build a :class:`TransactionRow`.

    Recurrence columns must be blank on non-recurring rows.
    """

    sheet = TRANSACTIONS_SHEET
    amount = _decimal(sheet, document, "Amount")
    if amount <= 0:
        raise _malformed(sheet, document, "Amount", "must be positive")
    is_recurring = _boolean(sheet, document, "IsRecurring")
    frequency = (
        _enum(RecurrenceFrequency, sheet, document, "Frequency")
        if document.get("Frequency") not in (None, "")
        else None
    )
    count = _optional_integer(sheet, document, "RecurrenceCount")
    if not is_recurring and (frequency is not None or count is not None):
        raise _malformed(sheet, document, "Frequency", "must be blank on non-recurring rows")
    if is_recurring and frequency is None:
        raise _malformed(sheet, document, "Frequency", "is required on recurring rows")
    return TransactionRow(
        transaction_id=_text(sheet, document, "TransactionID"),
        user_id=_text(sheet, document, "UserID"),
        description=_text(sheet, document, "Description"),
        amount=amount,
        kind=_enum(TransactionKind, sheet, document, "Type"),
        category=_optional_text(document, "Category") or "",
        due_date=_date(sheet, document, "DueDate"),
        status=_enum(TransactionStatus, sheet, document, "Status"),
        payment_method=_optional_text(document, "PaymentMethod"),
        is_recurring=is_recurring,
        frequency=frequency,
        recurrence_count=count,
        observation=_optional_text(document, "Observation") or "",
        created_at=_datetime(sheet, document, "CreatedAt"),
    )


def serialize_notification(record: NotificationRow) -> Document:
    """Convert a notification dataclass into a ``Notifications`` document."""

    return {
        "NotificationID": record.notification_id,
        "RecipientID": record.recipient_id,
        "Title": record.title,
        "Message": record.message,
        "Type": record.notification_type.value,
        "IsRead": record.is_read,
        "CreatedAt": _iso(record.created_at),
        "OrderID": record.order_id,
    }


def deserialize_notification(document: Mapping[str, Any]) -> NotificationRow:
    """Validate a ``Notifications`` document and build a :class:`NotificationRow`."""

    sheet = NOTIFICATIONS_SHEET
    return NotificationRow(
        notification_id=_text(sheet, document, "NotificationID"),
        recipient_id=_text(sheet, document, "RecipientID"),
        title=_text(sheet, document, "Title"),
        message=_optional_text(document, "Message") or "",
        notification_type=_enum(NotificationType, sheet, document, "Type"),
        is_read=_boolean(sheet, document, "IsRead"),
        created_at=_datetime(sheet, document, "CreatedAt"),
        order_id=_optional_text(document, "OrderID"),
    )
