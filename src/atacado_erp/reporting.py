"""Read-only order rollups for the manager dashboard.

All functions here are pure: they take an in-memory list of orders and
return new values without touching the workbook.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, tzinfo
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from . import data_manager, log
from .constants import MONEY_QUANTUM, OrderStatus

Period = Tuple[int, int]
ZERO = Decimal("0.00")


@dataclass(frozen=True)
class PerformerTotal:
    """Revenue attributed to one seller or client in a period."""

    party_id: str
    name: str
    total: Decimal


@dataclass(frozen=True)
class PeriodReport:
    """Aggregated figures for one ``(year, month)`` period.

    ``total``, ``order_count``, ``average_ticket`` and the top performers
    ignore cancelled orders. ``status_counts`` covers every order in the
    period, cancelled ones included.
    """

    period: Optional[Period]
    total: Decimal
    order_count: int
    average_ticket: Decimal
    top_seller: Optional[PerformerTotal]
    top_client: Optional[PerformerTotal]
    status_counts: Dict[OrderStatus, int]


@dataclass(frozen=True)
class StatsOverview:
    """Headline counters shown above the order list."""

    total_sales: Decimal
    total_orders: int
    open_orders: int
    finished_orders: int
    cancelled_orders: int


def period_of(moment: datetime, tz: Optional[tzinfo] = None) -> Period:
    """Return the ``(year, month)`` of ``moment`` in ``tz`` (local time if ``None``)."""

    local = moment.astimezone(tz)
    return local.year, local.month


def _top(totals: Dict[str, PerformerTotal]) -> Optional[PerformerTotal]:
    # max() keeps the first maximal entry, so ties go to the first party seen
    if not totals:
        return None
    return max(totals.values(), key=lambda entry: entry.total)


def _accumulate(totals: Dict[str, PerformerTotal], party_id: Optional[str], name: Optional[str], amount: Decimal) -> None:
    if not party_id:
        return
    current = totals.get(party_id)
    if current is None:
        totals[party_id] = PerformerTotal(party_id, name or party_id, amount)
    else:
        totals[party_id] = PerformerTotal(party_id, current.name, current.total + amount)


def aggregate_period(
    orders: Iterable[data_manager.OrderRow],
    *,
    period: Optional[Period] = None,
    tz: Optional[tzinfo] = None,
) -> PeriodReport:
    """Summarize orders, optionally restricted to one ``(year, month)``.

    Args:
        orders (Iterable[data_manager.OrderRow]): Orders already loaded by the
            caller.
        period (tuple[int, int] | None): ``(year, month)`` to keep, derived
            from each order's ``created_at`` in ``tz``. ``None`` keeps all.
        tz (tzinfo | None): Calendar used to derive the period key. Defaults
            to the machine's local time zone.

    Returns:
        PeriodReport: Totals, average ticket (zero for an empty period), top
            seller and top client by revenue, and a histogram over every
            status. Ties between performers go to the first one encountered
            in ``orders``.
    """

    status_counts: Dict[OrderStatus, int] = {status: 0 for status in OrderStatus}
    sellers: Dict[str, PerformerTotal] = {}
    clients: Dict[str, PerformerTotal] = {}
    total = ZERO
    count = 0

    for order in orders:
        if period is not None and period_of(order.created_at, tz) != period:
            continue
        status_counts[order.status] += 1
        if order.status is OrderStatus.CANCELLED:
            continue
        total += order.total
        count += 1
        _accumulate(sellers, order.seller_id, order.seller_name, order.total)
        _accumulate(clients, order.client_id, order.client_name, order.total)

    average = (total / count).quantize(MONEY_QUANTUM) if count else ZERO
    return PeriodReport(
        period=period,
        total=total,
        order_count=count,
        average_ticket=average,
        top_seller=_top(sellers),
        top_client=_top(clients),
        status_counts=status_counts,
    )


def monthly_history(
    orders: Iterable[data_manager.OrderRow],
    *,
    tz: Optional[tzinfo] = None,
) -> List[PeriodReport]:
    """One :class:`PeriodReport` per month that has orders, newest first."""

    orders = list(orders)
    periods = sorted({period_of(order.created_at, tz) for order in orders}, reverse=True)
    reports = [aggregate_period(orders, period=period, tz=tz) for period in periods]
    log.debug("Built monthly history with %d periods from %d orders", len(reports), len(orders))
    return reports


def stats_overview(orders: Iterable[data_manager.OrderRow]) -> StatsOverview:
    """Headline counters. Sales exclude cancelled orders; open means non-terminal."""

    orders = list(orders)
    return StatsOverview(
        total_sales=sum(
            (order.total for order in orders if order.status is not OrderStatus.CANCELLED),
            ZERO,
        ),
        total_orders=len(orders),
        open_orders=sum(1 for order in orders if not order.status.is_terminal),
        finished_orders=sum(1 for order in orders if order.status is OrderStatus.FINISHED),
        cancelled_orders=sum(1 for order in orders if order.status is OrderStatus.CANCELLED),
    )
