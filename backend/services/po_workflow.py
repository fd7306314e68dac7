"""
Machine à états des bons de commande.

Table (statut courant, action) -> Transition. Tout ce qui n'est pas dans la
table est refusé (ValidationError), sans écriture ni entrée d'audit.

    draft            --submit-->          pending_approval
    pending_approval --approve-->         approved          (acteur requis)
    pending_approval --reject-->          rejected          (acteur + motif requis)
    approved         --send-->            sent              (remise fournisseur OK)
    sent|partial     --receive_partial--> partial
    sent|partial     --receive-->         received
    non terminal     --cancel-->          cancelled

L'approbation n'est possible QUE depuis pending_approval.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from backend.app.core.errors import ValidationError
from backend.app.db.models.core_types import POAction, POStatus, TERMINAL_PO_STATUSES


@dataclass(frozen=True)
class Transition:
    source: POStatus
    action: POAction
    target: POStatus
    audit_action: str
    requires_actor: bool = False
    requires_reason: bool = False
    timestamp_field: str | None = None
    actor_field: str | None = None
    reason_field: str | None = None

    def build_values(self, *, actor: str | None, reason: str | None, now: datetime) -> dict[str, Any]:
        """Colonnes à écrire avec le nouveau statut. Valide les champs requis."""
        actor = actor.strip() if actor else None
        reason = reason.strip() if reason else None

        if self.requires_actor and not actor:
            raise ValidationError(f"Action '{self.action.value}' requires an actor")
        if self.requires_reason and not reason:
            raise ValidationError(f"Action '{self.action.value}' requires a reason")

        values: dict[str, Any] = {"status": self.target}
        if self.timestamp_field:
            values[self.timestamp_field] = now
        if self.actor_field:
            values[self.actor_field] = actor
        if self.reason_field:
            values[self.reason_field] = reason
        return values


def _build_table() -> dict[tuple[POStatus, POAction], Transition]:
    transitions = [
        Transition(POStatus.draft, POAction.submit, POStatus.pending_approval, "submitted",
                   timestamp_field="submitted_at"),
        Transition(POStatus.pending_approval, POAction.approve, POStatus.approved, "approved",
                   requires_actor=True, timestamp_field="approved_at", actor_field="approved_by"),
        Transition(POStatus.pending_approval, POAction.reject, POStatus.rejected, "rejected",
                   requires_actor=True, requires_reason=True, timestamp_field="rejected_at",
                   actor_field="rejected_by", reason_field="rejection_reason"),
        Transition(POStatus.approved, POAction.send, POStatus.sent, "sent", timestamp_field="sent_at"),
    ]
    for source in (POStatus.sent, POStatus.partial):
        transitions.append(Transition(source, POAction.receive_partial, POStatus.partial, "partially_received"))
        transitions.append(Transition(source, POAction.receive, POStatus.received, "received",
                                      timestamp_field="received_at"))
    for source in POStatus:
        if source in TERMINAL_PO_STATUSES:
            continue
        transitions.append(Transition(source, POAction.cancel, POStatus.cancelled, "cancelled",
                                      requires_actor=True, timestamp_field="cancelled_at",
                                      actor_field="cancelled_by"))
    return {(t.source, t.action): t for t in transitions}


TRANSITIONS = _build_table()


def allowed_actions(status: POStatus) -> list[POAction]:
    return [action for (source, action) in TRANSITIONS if source == status]


def resolve_transition(status: POStatus, action: POAction) -> Transition:
    transition = TRANSITIONS.get((POStatus(status), POAction(action)))
    if transition is None:
        raise ValidationError(
            f"Cannot {POAction(action).value} a purchase order in status '{POStatus(status).value}'",
            {"status": POStatus(status).value, "allowed_actions": [a.value for a in allowed_actions(status)]},
        )
    return transition
