from enum import Enum
from typing import Dict, FrozenSet

from chalicelib.utils import exceptions


class OrderStatus(str, Enum):
    PENDING = 'PENDING'
    CONFIRMED = 'CONFIRMED'
    PREPARING = 'PREPARING'
    READY = 'READY'
    OUT_FOR_DELIVERY = 'OUT_FOR_DELIVERY'
    DELIVERED = 'DELIVERED'
    CANCELLED = 'CANCELLED'


ORDER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY}),
    OrderStatus.READY: frozenset({OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED}),
    OrderStatus.OUT_FOR_DELIVERY: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset()
}

TERMINAL_STATUSES = frozenset(status for status, targets in ORDER_TRANSITIONS.items() if not targets)


def parse_status(value) -> OrderStatus:
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(str(value).upper())
    except ValueError:
        raise exceptions.InvalidTransitionError(f'Unknown order status {value}', target=value)


def is_terminal(status) -> bool:
    return parse_status(status) in TERMINAL_STATUSES


def validate_transition(current, target) -> OrderStatus:
    """
    Raises InvalidTransitionError when target is not reachable from current in one step
    :return:
    parsed target status
    """
    current, target = parse_status(current), parse_status(target)
    if target not in ORDER_TRANSITIONS[current]:
        raise exceptions.InvalidTransitionError(
            f'Order can not be moved from {current.value} to {target.value}',
            current=current.value, target=target.value
        )
    return target
