"""Personal-finance transactions, installment expansion and dashboard math.

A transaction with ``recurrence_count = N`` (N >= 2) is stored as N sibling
rows written in one atomic batch. Due dates step from the base date by
``frequency * index``. Monthly and yearly steps are always computed from the
base date, never chained from the previous installment, and clamp to the
last valid day of the target month::

    2024-01-31  ->  2024-02-29  ->  2024-03-31

Recurring transactions without a count are kept as a single row; they only
feed :func:`project_next_month` and are never materialized into future rows.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Type, TypeVar

from . import data_manager, log
from .constants import RecurrenceFrequency, TransactionKind, TransactionStatus
from .core_logic import (
    RuntimeContext,
    Session,
    _resolve_timestamp,
    cached_rows,
    generate_document_id,
    invalidate_cache,
    require_positive_amount,
    require_text,
    to_money,
)
from .errors import BatchLimitExceeded, PermissionDeniedError, ValidationError
from .permissions import Capability, require_capability

TRANSACTIONS = data_manager.TRANSACTIONS_SHEET
DEFAULT_CATEGORY = "Outros"
ZERO = Decimal("0.00")
_E = TypeVar("_E", bound=Enum)


@dataclass(frozen=True)
class TransactionCommand:
    """User intent for registering an income or expense."""

    description: str
    amount: Any
    kind: TransactionKind
    due_date: date
    category: str = DEFAULT_CATEGORY
    status: TransactionStatus = TransactionStatus.PENDING
    payment_method: Optional[str] = None
    is_recurring: bool = False
    frequency: Optional[RecurrenceFrequency] = None
    recurrence_count: Optional[int] = None
    observation: str = ""


@dataclass(frozen=True)
class MonthlySummary:
    """Dashboard figures for one calendar month."""

    year: int
    month: int
    income: Decimal
    expenses: Decimal
    balance: Decimal
    pending_expenses: Decimal


@dataclass(frozen=True)
class Projection:
    """Expected income and expenses for the month after ``today``."""

    year: int
    month: int
    income: Decimal
    expenses: Decimal
    balance: Decimal


# ---------------------------------------------------------------------------
# Recurrence expansion
# ---------------------------------------------------------------------------


def _clamped(year: int, month: int, day: int) -> date:
    return date(year, month, min(day, calendar.monthrange(year, month)[1]))


def advance_due_date(base: date, frequency: RecurrenceFrequency, steps: int) -> date:
    """Return ``base`` moved forward by ``steps`` recurrence periods.

    Args:
        base (date): Due date of the first installment.
        frequency (RecurrenceFrequency): Size of one step.
        steps (int): Number of steps (the installment index).

    Returns:
        date: The stepped date. Month and year steps keep the base day of
            month when it exists and otherwise fall back to the last day of
            the target month.

    Raises:
        ValidationError: For an unknown frequency or a result past the
            last representable date.
    """

    try:
        if frequency is RecurrenceFrequency.WEEKLY:
            return base + timedelta(weeks=steps)
        if frequency is RecurrenceFrequency.MONTHLY:
            months = base.month - 1 + steps
            return _clamped(base.year + months // 12, months % 12 + 1, base.day)
        if frequency is RecurrenceFrequency.YEARLY:
            return _clamped(base.year + steps, base.month, base.day)
    except (OverflowError, ValueError) as exc:
        log.error("Due date %s plus %d %s step(s) is out of range", base, steps, frequency.value)
        raise ValidationError(f"Installment {steps + 1} falls past the last supported date") from exc
    raise ValidationError(f"Unsupported recurrence frequency: {frequency!r}")


def expand_recurrence(
    template: data_manager.TransactionRow,
    *,
    id_factory: Optional[Callable[[int], str]] = None,
) -> List[data_manager.TransactionRow]:
    """Turn a transaction template into its installments.

    Args:
        template (data_manager.TransactionRow): First installment as the user
            entered it.
        id_factory (Callable[[int], str] | None): Produces the id of the
            installment at a given index. Defaults to fresh ``T`` ids.

    Returns:
        list[data_manager.TransactionRow]: ``[template]`` unchanged when the
            template is not recurring or its count is missing or ``<= 1``.
            Otherwise exactly ``count`` rows where only the first keeps the
            requested status, the rest are ``pending``, and each observation
            ends with ``(i/count)``.
    """

    count = template.recurrence_count
    if not template.is_recurring or template.frequency is None or count is None or count <= 1:
        return [template]

    make_id = id_factory or (lambda index: generate_document_id(prefix="T", when=template.created_at))
    installments: List[data_manager.TransactionRow] = []
    for index in range(count):
        installments.append(
            replace(
                template,
                transaction_id=template.transaction_id if index == 0 else make_id(index),
                due_date=advance_due_date(template.due_date, template.frequency, index),
                status=template.status if index == 0 else TransactionStatus.PENDING,
                observation=f"{template.observation} ({index + 1}/{count})".strip(),
            )
        )
    return installments


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _coerce(enum_cls: Type[_E], value: Any, label: str) -> _E:
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise ValidationError(f"Unsupported {label}: {value!r}") from exc


def _validate_recurrence(command: TransactionCommand) -> Optional[RecurrenceFrequency]:
    if not command.is_recurring:
        if command.frequency is not None or command.recurrence_count is not None:
            raise ValidationError("Recurrence data is only allowed on recurring transactions")
        return None
    if command.frequency is None:
        raise ValidationError("Recurring transactions need a frequency")
    frequency = _coerce(RecurrenceFrequency, command.frequency, "recurrence frequency")
    count = command.recurrence_count
    if count is None:
        return frequency
    if isinstance(count, bool) or not isinstance(count, int) or count < 2:
        log.error("Recurrence count rejected: %r", count)
        raise ValidationError(f"Recurrence count must be an integer of at least 2 (got {count!r})")
    return frequency


def add_transaction(
    context: RuntimeContext,
    session: Session,
    command: TransactionCommand,
    *,
    now: Optional[datetime] = None,
) -> List[data_manager.TransactionRow]:
    """Validate and store a transaction, expanding installments.

    Income is always stored as ``paid`` and never carries a payment method.
    Every installment is written by a single :func:`data_manager.batch_write`
    so either all of them are stored or none is.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        session (Session): Owner of the transaction.
        command (TransactionCommand): Transaction data.
        now (datetime | None): Creation timestamp override.

    Returns:
        list[data_manager.TransactionRow]: Stored rows in installment order.

    Raises:
        ValidationError: For a blank description, a non-positive amount,
            recurrence data on a one-off transaction, a missing frequency or
            a count below 2.
        BatchLimitExceeded: If the installment count exceeds the batch
            ceiling. The count is checked before any installment is built.
    """

    require_capability(session, Capability.MANAGE_OWN_FINANCES)
    description = require_text(command.description, label="Description")
    amount = to_money(command.amount)
    require_positive_amount(amount)
    kind = _coerce(TransactionKind, command.kind, "transaction type")
    frequency = _validate_recurrence(command)
    if frequency is not None and (command.recurrence_count or 0) > context.settings.max_batch_operations:
        log.error(
            "Recurrence count %d exceeds the batch limit of %d",
            command.recurrence_count,
            context.settings.max_batch_operations,
        )
        raise BatchLimitExceeded(
            f"{command.recurrence_count} installments exceed the limit of {context.settings.max_batch_operations}"
        )

    status = _coerce(TransactionStatus, command.status, "transaction status")
    payment_method = (command.payment_method or "").strip() or None
    if kind is TransactionKind.INCOME:
        status = TransactionStatus.PAID
        payment_method = None

    timestamp = _resolve_timestamp(now)
    template = data_manager.TransactionRow(
        transaction_id=generate_document_id(prefix="T", when=timestamp),
        user_id=session.user_id,
        description=description,
        amount=amount,
        kind=kind,
        category=(command.category or "").strip() or DEFAULT_CATEGORY,
        due_date=command.due_date,
        status=status,
        payment_method=payment_method,
        is_recurring=bool(command.is_recurring),
        frequency=frequency,
        recurrence_count=command.recurrence_count if command.is_recurring else None,
        observation=(command.observation or "").strip(),
        created_at=timestamp,
    )
    installments = expand_recurrence(template)
    data_manager.batch_write(
        context.workbook,
        [
            data_manager.WriteOperation.create(TRANSACTIONS, data_manager.serialize_transaction(row))
            for row in installments
        ],
        max_operations=context.settings.max_batch_operations,
    )
    invalidate_cache(context, TRANSACTIONS)
    log.info(
        "Recorded %s '%s' for user '%s' (%d installment(s) of %s)",
        kind.value,
        description,
        session.user_id,
        len(installments),
        amount,
    )
    return installments


def list_transactions(
    context: RuntimeContext,
    session: Session,
    *,
    year: Optional[int] = None,
    month: Optional[int] = None,
    kind: Optional[TransactionKind] = None,
) -> List[data_manager.TransactionRow]:
    """Return the caller's transactions by due date, latest first."""

    rows = [
        row
        for row in cached_rows(context, TRANSACTIONS, data_manager.deserialize_transaction)
        if row.user_id == session.user_id
        and (year is None or row.due_date.year == year)
        and (month is None or row.due_date.month == month)
        and (kind is None or row.kind is kind)
    ]
    rows.sort(key=lambda row: (row.due_date, row.created_at), reverse=True)
    return rows


def get_transaction(context: RuntimeContext, session: Session, transaction_id: str) -> data_manager.TransactionRow:
    """Read one of the caller's transactions.

    Raises:
        NotFoundError: If the id is unknown.
        PermissionDeniedError: If the row belongs to another user.
    """

    document = data_manager.get_document(context.workbook, TRANSACTIONS, transaction_id)
    row = data_manager.deserialize_transaction(document)
    if row.user_id != session.user_id:
        log.warning("User '%s' tried to access transaction '%s'", session.user_id, transaction_id)
        raise PermissionDeniedError("Transaction belongs to another user")
    return row


def update_transaction(
    context: RuntimeContext,
    session: Session,
    transaction_id: str,
    *,
    description: Optional[str] = None,
    amount: Any = None,
    category: Optional[str] = None,
    due_date: Optional[date] = None,
    payment_method: Optional[str] = None,
    observation: Optional[str] = None,
) -> data_manager.TransactionRow:
    """Edit a single row. Sibling installments are left alone."""

    row = get_transaction(context, session, transaction_id)
    if description is not None:
        row = replace(row, description=require_text(description, label="Description"))
    if amount is not None:
        value = to_money(amount)
        require_positive_amount(value)
        row = replace(row, amount=value)
    if category is not None:
        row = replace(row, category=category.strip() or DEFAULT_CATEGORY)
    if due_date is not None:
        row = replace(row, due_date=due_date)
    if payment_method is not None and row.kind is TransactionKind.EXPENSE:
        row = replace(row, payment_method=payment_method.strip() or None)
    if observation is not None:
        row = replace(row, observation=observation.strip())

    document = data_manager.serialize_transaction(row)
    fields = {column: value for column, value in document.items() if column != "TransactionID"}
    data_manager.update_document(context.workbook, TRANSACTIONS, transaction_id, fields)
    invalidate_cache(context, TRANSACTIONS)
    log.info("Updated transaction '%s'", transaction_id)
    return row


def toggle_transaction_status(
    context: RuntimeContext,
    session: Session,
    transaction_id: str,
) -> data_manager.TransactionRow:
    """Flip a transaction between ``pending`` and ``paid``."""

    row = get_transaction(context, session, transaction_id)
    status = TransactionStatus.PENDING if row.status is TransactionStatus.PAID else TransactionStatus.PAID
    data_manager.update_document(
        context.workbook,
        TRANSACTIONS,
        transaction_id,
        {"Status": status.value},
        expected={"Status": row.status.value},
    )
    invalidate_cache(context, TRANSACTIONS)
    log.info("Transaction '%s' status %s -> %s", transaction_id, row.status.value, status.value)
    return replace(row, status=status)


def delete_transaction(context: RuntimeContext, session: Session, transaction_id: str) -> None:
    """Delete one of the caller's transactions.

    Only the given row is removed. Sibling installments are left in place.

    Raises:
        NotFoundError: If the transaction does not exist.
        PermissionDeniedError: If it belongs to another user.
    """

    get_transaction(context, session, transaction_id)
    data_manager.delete_document(context.workbook, TRANSACTIONS, transaction_id)
    invalidate_cache(context, TRANSACTIONS)
    log.info("Deleted transaction '%s'", transaction_id)


def delete_all_transactions(context: RuntimeContext, session: Session) -> int:
    """Remove every transaction owned by the caller.

    Returns:
        int: Number of deleted rows.
    """

    rows = list_transactions(context, session)
    size = context.settings.max_batch_operations
    for start in range(0, len(rows), size):
        data_manager.batch_write(
            context.workbook,
            [data_manager.WriteOperation.delete(TRANSACTIONS, row.transaction_id) for row in rows[start:start + size]],
            max_operations=size,
        )
    invalidate_cache(context, TRANSACTIONS)
    log.warning("User '%s' deleted all %d transactions", session.user_id, len(rows))
    return len(rows)


# ---------------------------------------------------------------------------
# Dashboard math (pure functions)
# ---------------------------------------------------------------------------


def _total(rows: Iterable[data_manager.TransactionRow]) -> Decimal:
    return sum((row.amount for row in rows), ZERO)


def _in_month(row: data_manager.TransactionRow, year: int, month: int) -> bool:
    return row.due_date.year == year and row.due_date.month == month


def monthly_summary(
    transactions: Iterable[data_manager.TransactionRow],
    year: int,
    month: int,
) -> MonthlySummary:
    """Totals for transactions due in ``year``/``month``."""

    rows = [row for row in transactions if _in_month(row, year, month)]
    income = _total(row for row in rows if row.kind is TransactionKind.INCOME)
    expenses = _total(row for row in rows if row.kind is TransactionKind.EXPENSE)
    pending = _total(
        row for row in rows if row.kind is TransactionKind.EXPENSE and row.status is TransactionStatus.PENDING
    )
    return MonthlySummary(year, month, income, expenses, income - expenses, pending)


def project_next_month(transactions: Iterable[data_manager.TransactionRow], today: date) -> Projection:
    """Estimate the month after ``today``.

    The projection adds the rows already due next month to every open-ended
    monthly recurring transaction (no count) that started before next
    month. Nothing is written.
    """

    year, month = (today.year + 1, 1) if today.month == 12 else (today.year, today.month + 1)
    first_day = date(year, month, 1)
    rows = list(transactions)
    explicit = [row for row in rows if _in_month(row, year, month)]
    open_ended = [
        row
        for row in rows
        if row.is_recurring
        and row.recurrence_count is None
        and row.frequency is RecurrenceFrequency.MONTHLY
        and row.due_date < first_day
    ]
    considered = explicit + open_ended
    income = _total(row for row in considered if row.kind is TransactionKind.INCOME)
    expenses = _total(row for row in considered if row.kind is TransactionKind.EXPENSE)
    return Projection(year, month, income, expenses, income - expenses)


def expenses_by_category(
    transactions: Iterable[data_manager.TransactionRow],
    *,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> Dict[str, Decimal]:
    """Sum expenses per category, largest first.

    ``start`` and ``end`` are inclusive bounds on the due date.
    """

    totals: Dict[str, Decimal] = {}
    for row in transactions:
        if row.kind is not TransactionKind.EXPENSE:
            continue
        if (start is not None and row.due_date < start) or (end is not None and row.due_date > end):
            continue
        totals[row.category] = totals.get(row.category, ZERO) + row.amount
    return dict(sorted(totals.items(), key=lambda item: item[1], reverse=True))
