"""Shared utilities for ORM models."""

import uuid

# Namespace for ids derived from ledger inputs (lots, disposals).
LEDGER_NAMESPACE = uuid.UUID("6f1c3a52-9b0e-4c1d-8e57-2a4d7f0b9c31")


def generate_uuid() -> str:
    """Generate a UUID string."""
    return str(uuid.uuid4())


def derive_uuid(*parts: object) -> str:
    """Derive a stable UUID string from the given parts.

    The same parts always produce the same id, so rows rebuilt from the
    transaction log keep their primary keys across replays.
    """
    return str(uuid.uuid5(LEDGER_NAMESPACE, ":".join(str(p) for p in parts)))
