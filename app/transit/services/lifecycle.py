from app.transit.core.error_catalog import IllegalTransition


class OrderStatus:
    PENDING = "Pending"
    APPROVED = "Approved"
    PICKED = "Picked"
    PACKED = "Packed"
    SHIPPED = "Shipped"
    RECEIVED = "Received"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"

    ALL = (PENDING, APPROVED, PICKED, PACKED, SHIPPED, RECEIVED, COMPLETED, CANCELLED)
    TERMINAL = frozenset({COMPLETED, CANCELLED})


class DestinationMode:
    GENERAL_DELIVERY = "general_delivery"
    LOADOUT_RESTOCK = "loadout_restock"


class LineKind:
    BLUEPRINT = "blueprint"
    MANUAL = "manual"


class ScanStage:
    PICKING = "picking"
    PACKING = "packing"
    SHIPPING = "shipping"

    ALL = (PICKING, PACKING, SHIPPING)


ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.APPROVED, OrderStatus.CANCELLED}),
    OrderStatus.APPROVED: frozenset({OrderStatus.PICKED, OrderStatus.CANCELLED}),
    OrderStatus.PICKED: frozenset({OrderStatus.PACKED}),
    OrderStatus.PACKED: frozenset({OrderStatus.SHIPPED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.RECEIVED}),
    OrderStatus.RECEIVED: frozenset({OrderStatus.COMPLETED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# Scan stage that is worked while the order sits in a status, and the status
# its completion leads to.
STAGE_FOR_STATUS = {
    OrderStatus.APPROVED: ScanStage.PICKING,
    OrderStatus.PICKED: ScanStage.PACKING,
    OrderStatus.PACKED: ScanStage.SHIPPING,
}
STAGE_FOR_TARGET = {
    OrderStatus.PICKED: ScanStage.PICKING,
    OrderStatus.PACKED: ScanStage.PACKING,
    OrderStatus.SHIPPED: ScanStage.SHIPPING,
}

ASSIGNMENT_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.APPROVED})


def ensure_assignment_window(order, *, operation: str) -> None:
    if order.status not in ASSIGNMENT_STATUSES:
        raise IllegalTransition(order.status, {"operation": operation})


def ensure_stage_matches_status(order, stage: str) -> None:
    if STAGE_FOR_STATUS.get(order.status) != stage:
        raise IllegalTransition(
            order.status,
            {"stage": stage, "expected_stage": STAGE_FOR_STATUS.get(order.status)},
        )
