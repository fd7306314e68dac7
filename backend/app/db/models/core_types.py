import enum


class SyncType(str, enum.Enum):
    full = "full"
    inventory = "inventory"
    vendors = "vendors"
    # résolu en inventory ou full au lancement, jamais persisté
    smart = "smart"


class SyncStatus(str, enum.Enum):
    running = "running"
    completed = "completed"
    failed = "failed"


class POStatus(str, enum.Enum):
    draft = "draft"
    pending_approval = "pending_approval"
    approved = "approved"
    rejected = "rejected"
    sent = "sent"
    partial = "partial"
    received = "received"
    cancelled = "cancelled"


TERMINAL_PO_STATUSES = frozenset({POStatus.received, POStatus.cancelled, POStatus.rejected})


class POAction(str, enum.Enum):
    submit = "submit"
    approve = "approve"
    reject = "reject"
    send = "send"
    receive_partial = "receive_partial"
    receive = "receive"
    cancel = "cancel"


class StockStatus(str, enum.Enum):
    critical = "critical"
    low = "low"
    adequate = "adequate"
    overstocked = "overstocked"


class Urgency(str, enum.Enum):
    critical = "critical"
    high = "high"
    medium = "medium"
    low = "low"


# plus petit = plus urgent
URGENCY_RANK = {
    Urgency.critical: 0,
    Urgency.high: 1,
    Urgency.medium: 2,
    Urgency.low: 3,
}


class DemandTrend(str, enum.Enum):
    increasing = "increasing"
    decreasing = "decreasing"
    stable = "stable"


class AlertType(str, enum.Enum):
    failure = "failure"
    stuck = "stuck"
    out_of_stock = "out-of-stock"
    reorder_needed = "reorder-needed"
    warning = "warning"
    success = "success"
