"""
Three-way merge for editable fields.

Compares the base a client started from, the changes the client wants to make,
and the current server state. Fields only one side changed are merged
automatically; fields both sides changed to different values are reported as
conflicts and left for a human or an explicit policy to resolve.
"""

import json
from typing import Dict, List, Mapping, Optional

from .enums import EDITABLE_FIELDS, FIELD_LABELS
from .schema import ConflictField, MergeResult, ServerChange


def _serialized(value: object) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def _same(a: object, b: object) -> bool:
    return _serialized(a) == _serialized(b)


def merge(base: Mapping[str, str], client_changes: Mapping[str, str],
          server: Mapping[str, str]) -> MergeResult:
    """
    Merge client changes onto the server state.

    Only fields present in client_changes are considered. A field the server
    changed but the client did not touch is neither merged nor reported.

    Args:
        base: Field values when the client started editing
        client_changes: Fields the client wants to change
        server: Current field values on the server

    Returns:
        MergeResult with merged fields, unresolved conflicts and a success flag
    """
    merged: Dict[str, str] = {}
    conflicts: List[ConflictField] = []

    for field, client_value in client_changes.items():
        base_value = base.get(field)
        server_value = server.get(field)

        # Client did not actually change this field
        if _same(base_value, client_value):
            continue

        # Only the client changed it
        if _same(base_value, server_value):
            merged[field] = client_value
            continue

        # Both sides converged on the same value
        if _same(client_value, server_value):
            merged[field] = client_value
            continue

        conflicts.append(ConflictField(
            field_name=field,
            base_value=str(base_value),
            client_value=str(client_value),
            server_value=str(server_value),
            can_auto_merge=False
        ))

    return MergeResult(merged=merged, conflicts=conflicts, success=not conflicts)


def can_auto_merge(base: Mapping[str, str], client_changes: Mapping[str, str],
                   server: Mapping[str, str]) -> bool:
    """Check whether all client changes merge without human input."""
    return merge(base, client_changes, server).success


def get_server_changes(base: Mapping[str, str], server: Mapping[str, str]) -> List[ServerChange]:
    """List the editable fields the server changed relative to base."""
    changes = []
    for field in EDITABLE_FIELDS:
        server_value = server.get(field)
        if server_value is None:
            continue
        if not _same(base.get(field), server_value):
            changes.append(ServerChange(field=field, from_value=base.get(field), to_value=server_value))
    return changes


def apply_resolutions(result: MergeResult, resolutions: Mapping[str, str]) -> Dict[str, str]:
    """
    Combine auto-merged fields with the caller's conflict choices.

    Each resolution maps a conflicting field to 'client' or 'server'. A conflict
    without a resolution is left out of the payload, which keeps the server value.
    """
    payload = dict(result.merged)

    for conflict in result.conflicts:
        choice = resolutions.get(conflict.field_name)
        if choice == "client":
            payload[conflict.field_name] = conflict.client_value
        elif choice == "server":
            payload[conflict.field_name] = conflict.server_value
        elif choice is not None:
            raise ValueError(f"Unknown resolution for {conflict.field_name}: {choice}")

    return payload


def all_conflicts_resolved(conflicts: List[ConflictField], resolutions: Optional[Mapping[str, str]]) -> bool:
    """Check that every conflict has a resolution."""
    resolutions = resolutions or {}
    return all(conflict.field_name in resolutions for conflict in conflicts)


def describe_conflict(conflict: ConflictField) -> str:
    """Human-readable description of a conflict for prompts and logs."""
    label = FIELD_LABELS.get(conflict.field_name, conflict.field_name)
    return (
        f'{label}: You changed "{conflict.base_value}" to "{conflict.client_value}", '
        f'but someone else changed it to "{conflict.server_value}"'
    )
