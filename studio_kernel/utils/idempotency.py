"""
Idempotency key generation utilities.

Idempotency keys ensure that the same side effect (a ledger expense, a
notification) is recorded at most once per logical cause, even when the
operation that enqueues it is retried.
"""

from uuid import UUID


def generate_idempotency_key(
    producer: str,
    event_type: str,
    *parts: UUID | str,
) -> str:
    """
    Generate an idempotency key for a side effect.

    Format: producer:event_type:part[:part...]

    Args:
        producer: Module or system that produced the event.
        event_type: Namespaced event type.
        parts: One or more identifiers scoping the event (cycle id, user id).

    Returns:
        Idempotency key string.

    Example:
        >>> generate_idempotency_key("payroll", "cycle.finalized.expense", cycle_id)
        "payroll:cycle.finalized.expense:550e8400-e29b-41d4-a716-446655440000"
    """
    if not parts:
        raise ValueError("At least one identifying part is required")
    return ":".join([producer, event_type, *(str(p) for p in parts)])


def parse_idempotency_key(key: str) -> tuple[str, str, tuple[str, ...]]:
    """
    Parse an idempotency key into its components.

    Returns:
        Tuple of (producer, event_type, parts).

    Raises:
        ValueError: If key format is invalid.
    """
    pieces = key.split(":")
    if len(pieces) < 3:
        raise ValueError(f"Invalid idempotency key format: {key}")
    return pieces[0], pieces[1], tuple(pieces[2:])
