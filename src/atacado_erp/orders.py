"""Order creation and the order lifecycle state machine.

Lifecycle::

    generated -> in_progress -> invoiced -> sent -> finished
         |             |            |
         +-------------+------------+--> cancelled

``invoiced`` may also be reached straight from ``generated`` and ``sent``
straight from ``in_progress``. ``finished`` and ``cancelled`` are terminal.

Every transition is one compare-and-swap write on the order row, guarded by
the status and version read immediately before it. A transition that loses
the race fails with :class:`~atacado_erp.errors.ConcurrentModificationError`
and leaves the row untouched. The client notification that follows a
transition is best effort and never undoes it.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, FrozenSet, List, Optional, Sequence

from . import data_manager, log
from .auth import get_user, require_fresh_session
from .catalog import get_product
from .constants import (
    DEFAULT_SLA_GOOD_MINUTES,
    DEFAULT_SLA_WARNING_MINUTES,
    MONEY_QUANTUM,
    ORDER_STATUS_LABELS,
    NotificationType,
    OrderStatus,
    SlaBucket,
    UserRole,
)
from .core_logic import (
    RuntimeContext,
    Session,
    _resolve_timestamp,
    cached_rows,
    generate_document_id,
    invalidate_cache,
    require_text,
)
from .errors import InvalidTransition, PermissionDeniedError, ValidationError
from .notifications import emit_notification
from .permissions import Capability, can, require_capability

ORDERS = data_manager.ORDERS_SHEET


@dataclass(frozen=True)
class OrderLineCommand:
    """One cart line: a catalog product and how many units."""

    product_id: str
    quantity: int


@dataclass(frozen=True)
class CreateOrderCommand:
    """Cart checkout request.

    ``client_id`` is only honoured for managers placing an order on behalf
    of a client; clients always order for themselves.
    """

    lines: Sequence[OrderLineCommand]
    seller_id: Optional[str] = None
    client_id: Optional[str] = None


@dataclass(frozen=True)
class _Transition:
    verb: str
    sources: FrozenSet[OrderStatus]
    target: OrderStatus
    capability: Capability
    title: str
    notification_type: NotificationType = NotificationType.ORDER_STATUS


START = _Transition(
    verb="start processing",
    sources=frozenset({OrderStatus.GENERATED}),
    target=OrderStatus.IN_PROGRESS,
    capability=Capability.ORDER_STATUS_IN_PROGRESS,
    title="Pedido Recebido",
)
INVOICE = _Transition(
    verb="invoice",
    sources=frozenset({OrderStatus.GENERATED, OrderStatus.IN_PROGRESS}),
    target=OrderStatus.INVOICED,
    capability=Capability.ORDER_STATUS_INVOICED,
    title="Pedido Faturado",
)
SEND = _Transition(
    verb="send",
    sources=frozenset({OrderStatus.IN_PROGRESS, OrderStatus.INVOICED}),
    target=OrderStatus.SENT,
    capability=Capability.ORDER_STATUS_SENT,
    title="Rota de Entrega",
)
CANCEL = _Transition(
    verb="cancel",
    sources=frozenset({OrderStatus.GENERATED, OrderStatus.IN_PROGRESS, OrderStatus.INVOICED}),
    target=OrderStatus.CANCELLED,
    capability=Capability.ORDER_STATUS_CANCELLED,
    title="Pedido Cancelado",
    notification_type=NotificationType.ORDER_CANCELLED,
)
FINISH = _Transition(
    verb="finish",
    sources=frozenset({OrderStatus.SENT}),
    target=OrderStatus.FINISHED,
    capability=Capability.ORDER_STATUS_FINISHED,
    title="Pedido Finalizado",
)

ALLOWED_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    status: frozenset(
        transition.target
        for transition in (START, INVOICE, SEND, CANCEL, FINISH)
        if status in transition.sources
    )
    for status in OrderStatus
}


def status_label(status: Any) -> str:
    """Return the pt-BR display label for an order status."""

    return ORDER_STATUS_LABELS[OrderStatus(status)]


def order_code(order: data_manager.OrderRow) -> str:
    """Short code shown to customers (last six characters of the id)."""

    return order.order_id[-6:].upper()


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def get_order(context: RuntimeContext, order_id: str) -> data_manager.OrderRow:
    """Read an order straight from the workbook.

    The cache is bypassed so transitions always validate against the current
    row.

    Raises:
        NotFoundError: If ``order_id`` is unknown.
        MalformedDocumentError: If the stored row is invalid.
    """

    document = data_manager.get_document(context.workbook, ORDERS, order_id)
    return data_manager.deserialize_order(document)


def _visible_to(session: Session, order: data_manager.OrderRow) -> bool:
    if can(session.role, Capability.MANAGE_ALL_ORDERS):
        return True
    if session.role is UserRole.SELLER:
        return order.seller_id == session.user_id
    return order.client_id == session.user_id


def list_orders(
    context: RuntimeContext,
    session: Session,
    *,
    search: Optional[str] = None,
    status: Optional[OrderStatus] = None,
) -> List[data_manager.OrderRow]:
    """List the orders the caller may see, newest first.

    Managers see every order, sellers the orders assigned to them and clients
    their own purchases.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        session (Session): Caller.
        search (str | None): Case-insensitive fragment matched against the
            client name or the order id.
        status (OrderStatus | None): Restrict to one status.

    Returns:
        list[data_manager.OrderRow]: Matching orders sorted by ``created_at``
            descending.
    """

    needle = (search or "").strip().lower()
    rows = [
        order
        for order in cached_rows(context, ORDERS, data_manager.deserialize_order)
        if _visible_to(session, order)
        and (status is None or order.status is status)
        and (not needle or needle in order.client_name.lower() or needle in order.order_id.lower())
    ]
    rows.sort(key=lambda order: order.created_at, reverse=True)
    return rows


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


def _resolve_seller(context: RuntimeContext, seller_id: Optional[str]) -> Optional[data_manager.UserRow]:
    if not seller_id:
        return None
    seller = get_user(context, seller_id)
    if seller.role is not UserRole.SELLER or not seller.is_active:
        log.warning("Rejected seller assignment to '%s' (%s, active=%s)", seller_id, seller.role.value, seller.is_active)
        raise ValidationError(f"User '{seller_id}' is not an active seller")
    return seller


def build_order_items(context: RuntimeContext, lines: Sequence[OrderLineCommand]) -> List[data_manager.OrderItem]:
    """Price cart lines from the catalog.

    Raises:
        ValidationError: For an empty cart, a non-positive or non-integer
            quantity, or an inactive product.
        NotFoundError: If a product id is unknown.
    """

    if not lines:
        raise ValidationError("An order needs at least one item")
    items: List[data_manager.OrderItem] = []
    for line in lines:
        quantity = line.quantity
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            log.error("Order line rejected: quantity %r for product '%s'", quantity, line.product_id)
            raise ValidationError(f"Quantity must be a positive integer (got {quantity!r})")
        product = get_product(context, line.product_id)
        if not product.is_active:
            log.warning("Order line rejected: product '%s' is inactive", product.product_id)
            raise ValidationError(f"Product '{product.code}' is no longer available")
        unit_price = product.price.quantize(MONEY_QUANTUM)
        items.append(
            data_manager.OrderItem(
                product_id=product.product_id,
                description=product.description,
                quantity=quantity,
                unit_price=unit_price,
                subtotal=(unit_price * quantity).quantize(MONEY_QUANTUM),
            )
        )
    return items


def create_order(
    context: RuntimeContext,
    session: Session,
    command: CreateOrderCommand,
    *,
    now: Optional[datetime] = None,
) -> data_manager.OrderRow:
    """Check out a cart as a new ``generated`` order.

    Unit prices are taken from the catalog at checkout time; each subtotal is
    ``quantity * unit_price`` and the total is the sum of the subtotals. The
    total is never recomputed afterwards.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        session (Session): Ordering client (or a manager acting for one).
        command (CreateOrderCommand): Cart lines and optional seller.
        now (datetime | None): Creation timestamp override.

    Returns:
        data_manager.OrderRow: The stored order at version 1.

    Raises:
        PermissionDeniedError: If the session cannot place orders, or a
            client tries to order on someone else's behalf.
        ValidationError: For an empty cart, bad quantities, inactive
            products or an invalid seller.
        NotFoundError: For unknown products, clients or sellers.
    """

    require_capability(session, Capability.CREATE_ORDER)
    client_id = command.client_id or session.user_id
    if client_id != session.user_id and session.role is not UserRole.MANAGER:
        log.warning("User '%s' tried to order for client '%s'", session.user_id, client_id)
        raise PermissionDeniedError("Clients can only place orders for themselves")
    client = get_user(context, client_id)
    if client.role is not UserRole.CLIENT:
        raise ValidationError(f"User '{client_id}' is not a client")
    seller = _resolve_seller(context, command.seller_id)
    items = build_order_items(context, command.lines)

    timestamp = _resolve_timestamp(now)
    order = data_manager.OrderRow(
        order_id=generate_document_id(prefix="O", when=timestamp),
        client_id=client.user_id,
        client_name=client.name,
        seller_id=seller.user_id if seller else None,
        seller_name=seller.name if seller else None,
        items=tuple(items),
        total=sum((item.subtotal for item in items), Decimal("0.00")),
        status=OrderStatus.GENERATED,
        created_at=timestamp,
    )
    data_manager.create_document(context.workbook, ORDERS, data_manager.serialize_order(order))
    invalidate_cache(context, ORDERS)
    log.info(
        "Created order '%s' for client '%s' (%d items, total=%s)",
        order.order_id,
        order.client_id,
        len(order.items),
        order.total,
    )
    return order


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


def _authorize(session: Session, order: data_manager.OrderRow, capability: Capability) -> None:
    require_capability(session, capability)
    if not can(session.role, Capability.MANAGE_ALL_ORDERS) and order.seller_id != session.user_id:
        log.warning("User '%s' tried to act on order '%s' assigned to '%s'", session.user_id, order.order_id, order.seller_id)
        raise PermissionDeniedError(f"Order '{order.order_id}' is not assigned to you")


def _cas_guard(order: data_manager.OrderRow) -> Dict[str, Any]:
    return {"Status": order.status.value, "Version": order.version}


def _notify(
    context: RuntimeContext,
    order: data_manager.OrderRow,
    transition: _Transition,
    message: str,
    now: datetime,
) -> None:
    emit_notification(
        context,
        recipient_id=order.client_id,
        title=transition.title,
        message=message,
        notification_type=transition.notification_type,
        order_id=order.order_id,
        now=now,
    )


def _transition(
    context: RuntimeContext,
    session: Session,
    order_id: str,
    transition: _Transition,
    *,
    now: Optional[datetime],
    changes: Optional[Dict[str, Any]] = None,
) -> data_manager.OrderRow:
    order = get_order(context, order_id)
    _authorize(session, order, transition.capability)
    if order.status not in transition.sources:
        log.warning(
            "Rejected transition '%s' on order '%s' in status '%s'",
            transition.verb,
            order_id,
            order.status.value,
        )
        raise InvalidTransition(
            f"Cannot {transition.verb} order '{order_id}': status is '{order.status.value}'"
        )

    timestamp = _resolve_timestamp(now)
    fields: Dict[str, Any] = {"Status": transition.target.value, "Version": order.version + 1}
    updated = replace(order, status=transition.target, version=order.version + 1)
    for column, value in (changes or {}).items():
        fields[column] = value

    if transition is START and order.received_at is None:
        fields["ReceivedAt"] = timestamp.isoformat()
        updated = replace(updated, received_at=timestamp)
    if transition is INVOICE and order.invoiced_at is None:
        fields["InvoicedAt"] = timestamp.isoformat()
        updated = replace(updated, invoiced_at=timestamp)
    if transition is CANCEL:
        updated = replace(updated, cancel_reason=fields["CancelReason"])

    data_manager.update_document(context.workbook, ORDERS, order_id, fields, expected=_cas_guard(order))
    invalidate_cache(context, ORDERS)
    log.info(
        "Order '%s' moved %s -> %s by '%s' (version %d)",
        order_id,
        order.status.value,
        transition.target.value,
        session.user_id,
        updated.version,
    )
    return updated


def start_processing(
    context: RuntimeContext,
    session: Session,
    order_id: str,
    *,
    now: Optional[datetime] = None,
) -> data_manager.OrderRow:
    """Accept a new order: ``generated`` -> ``in_progress``.

    ``received_at`` is stamped only when still unset.

    Raises:
        InvalidTransition: If the order is not ``generated``.
        PermissionDeniedError: If the caller may not handle the order.
        NotFoundError: If ``order_id`` is unknown.
        ConcurrentModificationError: If the order changed since it was read.
    """

    timestamp = _resolve_timestamp(now)
    order = _transition(context, session, order_id, START, now=timestamp)
    _notify(
        context,
        order,
        START,
        f"Seu pedido #{order_code(order)} foi recebido e já está em separação.",
        timestamp,
    )
    return order


def mark_invoiced(
    context: RuntimeContext,
    session: Session,
    order_id: str,
    *,
    now: Optional[datetime] = None,
) -> data_manager.OrderRow:
    """Invoice an order from ``generated`` or ``in_progress``.

    Invoicing straight from ``generated`` leaves ``received_at`` unset.
    """

    timestamp = _resolve_timestamp(now)
    order = _transition(context, session, order_id, INVOICE, now=timestamp)
    _notify(
        context,
        order,
        INVOICE,
        f"Seu pedido #{order_code(order)} foi faturado no valor de R$ {order.total:.2f}.",
        timestamp,
    )
    return order


def mark_sent(
    context: RuntimeContext,
    session: Session,
    order_id: str,
    *,
    now: Optional[datetime] = None,
) -> data_manager.OrderRow:
    """Dispatch an order from ``in_progress`` or ``invoiced``."""

    timestamp = _resolve_timestamp(now)
    order = _transition(context, session, order_id, SEND, now=timestamp)
    _notify(
        context,
        order,
        SEND,
        f"Seu pedido #{order_code(order)} saiu para entrega.",
        timestamp,
    )
    return order


def cancel_order(
    context: RuntimeContext,
    session: Session,
    order_id: str,
    reason: str,
    *,
    now: Optional[datetime] = None,
) -> data_manager.OrderRow:
    """Cancel an order that has not been dispatched yet.

    Args:
        context (RuntimeContext): Runtime context providing workbook access.
        session (Session): Seller assigned to the order, or a manager.
        order_id (str): Order to cancel.
        reason (str): Mandatory explanation, stored and sent to the client.
        now (datetime | None): Timestamp override for the notification.

    Returns:
        data_manager.OrderRow: The cancelled order.

    Raises:
        ValidationError: If ``reason`` is blank. Nothing is written.
        InvalidTransition: If the order is ``sent``, ``finished`` or already
            ``cancelled``.
    """

    cleaned = require_text(reason, label="Cancel reason")
    timestamp = _resolve_timestamp(now)
    order = _transition(
        context,
        session,
        order_id,
        CANCEL,
        now=timestamp,
        changes={"CancelReason": cleaned},
    )
    _notify(
        context,
        order,
        CANCEL,
        f"Seu pedido #{order_code(order)} foi cancelado. Motivo: {cleaned}",
        timestamp,
    )
    return order


def finish_order(
    context: RuntimeContext,
    session: Session,
    order_id: str,
    *,
    now: Optional[datetime] = None,
) -> data_manager.OrderRow:
    """Close a delivered order (``sent`` -> ``finished``). Managers only."""

    timestamp = _resolve_timestamp(now)
    order = _transition(context, session, order_id, FINISH, now=timestamp)
    _notify(
        context,
        order,
        FINISH,
        f"Seu pedido #{order_code(order)} foi concluído. Obrigado pela preferência!",
        timestamp,
    )
    return order


def reassign_seller(
    context: RuntimeContext,
    session: Session,
    order_id: str,
    new_seller_id: str,
) -> data_manager.OrderRow:
    """Hand a non-terminal order to another seller. Managers only.

    The seller name stored on the order is a snapshot taken here; no
    notification is emitted.

    Raises:
        InvalidTransition: If the order is ``finished`` or ``cancelled``.
        ValidationError: If the new seller is not an active seller.
    """

    require_capability(session, Capability.REASSIGN_SELLER)
    order = get_order(context, order_id)
    if order.status.is_terminal:
        log.warning("Rejected reassignment of terminal order '%s' (%s)", order_id, order.status.value)
        raise InvalidTransition(f"Cannot reassign order '{order_id}': status is '{order.status.value}'")
    seller = _resolve_seller(context, require_text(new_seller_id, label="Seller id"))

    data_manager.update_document(
        context.workbook,
        ORDERS,
        order_id,
        {"SellerID": seller.user_id, "SellerName": seller.name, "Version": order.version + 1},
        expected=_cas_guard(order),
    )
    invalidate_cache(context, ORDERS)
    log.info("Order '%s' reassigned from '%s' to '%s'", order_id, order.seller_id, seller.user_id)
    return replace(order, seller_id=seller.user_id, seller_name=seller.name, version=order.version + 1)


def purge_orders(context: RuntimeContext, session: Session, *, now: Optional[datetime] = None) -> int:
    """Delete every order. Irreversible.

    Requires a manager session authenticated within the re-authentication
    window. Rows are removed in batches of at most ``max_batch_operations``;
    each batch is all or nothing.

    Returns:
        int: Number of deleted orders.

    Raises:
        PermissionDeniedError: If the caller is not a manager.
        ReauthenticationRequired: If the session is stale.
    """

    require_capability(session, Capability.PURGE_ORDERS)
    require_fresh_session(context, session, now=now)

    order_ids = [
        str(document["OrderID"])
        for document in data_manager.query_documents(context.workbook, ORDERS)
    ]
    size = context.settings.max_batch_operations
    for start in range(0, len(order_ids), size):
        chunk = [data_manager.WriteOperation.delete(ORDERS, order_id) for order_id in order_ids[start:start + size]]
        data_manager.batch_write(context.workbook, chunk, max_operations=size)
    invalidate_cache(context, ORDERS)
    log.warning("User '%s' purged %d orders", session.user_id, len(order_ids))
    return len(order_ids)


# ---------------------------------------------------------------------------
# SLA
# ---------------------------------------------------------------------------


def order_sla(order: data_manager.OrderRow, *, now: Optional[datetime] = None) -> Optional[timedelta]:
    """Time spent handling the order: ``(invoiced_at or now) - received_at``.

    Returns ``None`` until the order has been received.
    """

    if order.received_at is None:
        return None
    end = order.invoiced_at if order.invoiced_at is not None else _resolve_timestamp(now)
    return end - order.received_at


def classify_sla(elapsed: timedelta, settings: Optional[data_manager.ConfigSettings] = None) -> SlaBucket:
    """Bucket an elapsed handling time for display."""

    good = settings.sla_good_minutes if settings else DEFAULT_SLA_GOOD_MINUTES
    warning = settings.sla_warning_minutes if settings else DEFAULT_SLA_WARNING_MINUTES
    if elapsed < timedelta(minutes=good):
        return SlaBucket.GOOD
    if elapsed < timedelta(minutes=warning):
        return SlaBucket.WARNING
    return SlaBucket.CRITICAL
