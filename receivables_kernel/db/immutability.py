"""
ORM-Level Immutability Enforcement for settlement history.

===============================================================================
WHY THIS EXISTS
===============================================================================

A receivable's history must be reconstructible: every baixa that ever moved
a balance stays on file, and undoing one is done by reversal (estorno),
never by editing or deleting rows.  Services already follow these rules;
these listeners catch any code path that does not.

    session.flush()
         |
         v
    [before_flush]   --> _check_deletions_before_flush()   --+
         |                                                    |
    [before_update]  --> _check_*_immutability()  -----------+--> ImmutabilityViolationError
         |                                                    |
    [before_delete]  --> _check_*_delete()  ------------------+
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity               | Rule
---------------------|--------------------------------------------------------
Settlement           | Financial fields never change; reversed only False->True;
                     | once reversed, nothing changes; never deleted
InstallmentPayment   | Same rules as Settlement
Check                | Everything but status frozen; never deleted
ReceivableNote       | Frozen once cancelled; never deleted with settlements

created_at/updated_at are audit metadata and may always change.

===============================================================================
USAGE
===============================================================================

Registered by db.engine.create_tables().  Tests that need to violate the
rules on purpose may call unregister_immutability_listeners() and must call
register_immutability_listeners() afterwards.
"""

from sqlalchemy import event, func, inspect, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import get_history

from receivables_kernel.exceptions import ImmutabilityViolationError
from receivables_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"created_at", "updated_at"})

_PAYMENT_FINANCIAL_FIELDS = (
    "paid_value",
    "interest",
    "penalty",
    "discount",
    "net_value",
    "payment_date",
    "payment_method",
)

SETTLEMENT_FROZEN_FIELDS = frozenset(
    _PAYMENT_FINANCIAL_FIELDS + ("note_id", "installment_credit")
)

PAYMENT_FROZEN_FIELDS = frozenset(
    _PAYMENT_FINANCIAL_FIELDS + ("installment_id", "installment_credit")
)

CHECK_MUTABLE_FIELDS = frozenset({"status", "note"})


def _block(entity_type: str, entity_id, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
    )


def _changed_columns(target) -> list[str]:
    insp = inspect(target)
    return [
        attr.key
        for attr in insp.mapper.column_attrs
        if attr.key not in _AUDIT_FIELDS
        and insp.attrs[attr.key].history.has_changes()
    ]


def _was_true_before(target, attr: str) -> bool:
    """Value of a boolean flag as it was loaded, before this unit of work."""
    hist = get_history(target, attr)
    if hist.deleted:
        return bool(hist.deleted[0])
    if hist.unchanged:
        return bool(hist.unchanged[0])
    return False


def _check_reversible_record(entity_type: str, frozen_fields: frozenset, target) -> None:
    """Shared rules for Settlement and InstallmentPayment updates."""
    changed = _changed_columns(target)
    if not changed:
        return

    if _was_true_before(target, "reversed"):
        _block(
            entity_type,
            target.id,
            "UPDATE",
            f"{entity_type} was reversed and cannot be modified",
            field=changed[0],
        )

    for key in changed:
        if key in frozen_fields:
            _block(
                entity_type,
                target.id,
                "UPDATE",
                f"Cannot modify field '{key}' on a recorded {entity_type.lower()}",
                field=key,
            )

    if not target.reversed and "reversed" in changed:
        _block(entity_type, target.id, "UPDATE", "Reversal cannot be undone", field="reversed")


def _check_settlement_immutability(mapper, connection, target):
    _check_reversible_record("Settlement", SETTLEMENT_FROZEN_FIELDS, target)


def _check_payment_immutability(mapper, connection, target):
    _check_reversible_record("InstallmentPayment", PAYMENT_FROZEN_FIELDS, target)


def _check_settlement_delete(mapper, connection, target):
    _block("Settlement", target.id, "DELETE", "Settlements cannot be deleted; reverse instead")


def _check_payment_delete(mapper, connection, target):
    _block(
        "InstallmentPayment",
        target.id,
        "DELETE",
        "Installment payments cannot be deleted; reverse instead",
    )


def _check_check_immutability(mapper, connection, target):
    for key in _changed_columns(target):
        if key not in CHECK_MUTABLE_FIELDS:
            _block(
                "Check",
                target.id,
                "UPDATE",
                f"Cannot modify field '{key}' on a recorded check",
                field=key,
            )


def _check_check_delete(mapper, connection, target):
    _block("Check", target.id, "DELETE", "Checks are part of the settlement audit trail")


def _check_note_immutability(mapper, connection, target):
    """A cancelled note is terminal: no field changes after cancellation."""
    if not _was_true_before(target, "cancelled"):
        return
    changed = [k for k in _changed_columns(target) if k != "version"]
    if changed:
        _block(
            "ReceivableNote",
            target.id,
            "UPDATE",
            "Cancelled notes cannot be modified",
            field=changed[0],
        )


def _check_deletions_before_flush(session, flush_context, instances):
    """
    Block deletion of notes that have settlement history.

    Runs before the flush plan is finalized, where a query is still safe.
    """
    from receivables_kernel.models.note import ReceivableNote
    from receivables_kernel.models.settlement import Settlement

    for obj in list(session.deleted):
        if not isinstance(obj, ReceivableNote):
            continue
        with session.no_autoflush:
            count = session.execute(
                select(func.count(Settlement.id)).where(Settlement.note_id == obj.id)
            ).scalar_one()
        if count:
            _block(
                "ReceivableNote",
                obj.id,
                "DELETE",
                "Notes with settlement history cannot be deleted",
            )


def _listeners():
    from receivables_kernel.models.note import ReceivableNote
    from receivables_kernel.models.settlement import Check, InstallmentPayment, Settlement

    return (
        (Settlement, "before_update", _check_settlement_immutability),
        (Settlement, "before_delete", _check_settlement_delete),
        (InstallmentPayment, "before_update", _check_payment_immutability),
        (InstallmentPayment, "before_delete", _check_payment_delete),
        (Check, "before_update", _check_check_immutability),
        (Check, "before_delete", _check_check_delete),
        (ReceivableNote, "before_update", _check_note_immutability),
    )


def register_immutability_listeners():
    """Register all immutability listeners (idempotent)."""
    if not event.contains(Session, "before_flush", _check_deletions_before_flush):
        event.listen(Session, "before_flush", _check_deletions_before_flush)
    for target, name, fn in _listeners():
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)


def _safe_remove_listener(target, event_name, listener_fn):
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability listeners.

    WARNING: Only use this in tests that must violate the rules on purpose.
    """
    _safe_remove_listener(Session, "before_flush", _check_deletions_before_flush)
    for target, name, fn in _listeners():
        _safe_remove_listener(target, name, fn)
