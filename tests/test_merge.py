"""
Three-way merge tests - auto-merge, convergence and true conflicts.
"""

import pytest

from fieldguard.core.merge import (
    merge,
    can_auto_merge,
    get_server_changes,
    apply_resolutions,
    all_conflicts_resolved,
    describe_conflict
)
from fieldguard.core.schema import ConflictField


BASE = {"category": "WORK", "urgency": "MEDIUM", "action": "IGNORE"}


class TestMerge:
    """Test the merge decision for each field."""

    def test_client_only_change_is_merged(self):
        result = merge(BASE, {"urgency": "HIGH"}, BASE)

        assert result.success is True
        assert result.merged == {"urgency": "HIGH"}
        assert result.conflicts == []

    def test_disjoint_changes_auto_merge(self):
        """Server changed category, client changed urgency."""
        server = {**BASE, "category": "SHOPPING"}
        result = merge(BASE, {"urgency": "HIGH"}, server)

        assert result.success is True
        assert result.merged == {"urgency": "HIGH"}

    def test_untouched_server_change_is_not_merged(self):
        server = {**BASE, "category": "SHOPPING"}
        result = merge(BASE, {"urgency": "HIGH"}, server)

        assert "category" not in result.merged
        assert result.conflicts == []

    def test_convergent_change_is_not_a_conflict(self):
        server = {**BASE, "action": "NOTIFY"}
        result = merge(BASE, {"action": "NOTIFY"}, server)

        assert result.success is True
        assert result.merged == {"action": "NOTIFY"}

    def test_true_conflict_detected(self):
        server = {**BASE, "action": "JUNK"}
        result = merge(BASE, {"action": "NOTIFY"}, server)

        assert result.success is False
        assert result.merged == {}
        assert len(result.conflicts) == 1

        conflict = result.conflicts[0]
        assert conflict.field_name == "action"
        assert conflict.base_value == "IGNORE"
        assert conflict.client_value == "NOTIFY"
        assert conflict.server_value == "JUNK"
        assert conflict.can_auto_merge is False

    def test_unchanged_client_field_is_skipped(self):
        server = {**BASE, "category": "SHOPPING"}
        result = merge(BASE, {"category": "WORK"}, server)

        assert result.success is True
        assert result.merged == {}

    def test_mixed_merge_and_conflict(self):
        server = {**BASE, "category": "SHOPPING", "action": "JUNK"}
        result = merge(BASE, {"urgency": "HIGH", "action": "NOTIFY"}, server)

        assert result.success is False
        assert result.merged == {"urgency": "HIGH"}
        assert [c.field_name for c in result.conflicts] == ["action"]

    def test_can_auto_merge(self):
        assert can_auto_merge(BASE, {"urgency": "HIGH"}, {**BASE, "category": "SHOPPING"}) is True
        assert can_auto_merge(BASE, {"action": "NOTIFY"}, {**BASE, "action": "JUNK"}) is False


class TestServerChanges:
    """Test reporting of concurrent server changes."""

    def test_lists_changed_fields(self):
        changes = get_server_changes(BASE, {**BASE, "category": "SHOPPING"})

        assert len(changes) == 1
        assert changes[0].field == "category"
        assert changes[0].from_value == "WORK"
        assert changes[0].to_value == "SHOPPING"

    def test_no_changes(self):
        assert get_server_changes(BASE, dict(BASE)) == []

    def test_missing_server_field_ignored(self):
        assert get_server_changes(BASE, {"category": "WORK"}) == []


class TestResolutions:
    """Test applying conflict resolutions."""

    @pytest.fixture
    def conflicted(self):
        server = {**BASE, "category": "SHOPPING", "action": "JUNK"}
        return merge(BASE, {"urgency": "HIGH", "action": "NOTIFY"}, server)

    def test_client_resolution(self, conflicted):
        payload = apply_resolutions(conflicted, {"action": "client"})
        assert payload == {"urgency": "HIGH", "action": "NOTIFY"}

    def test_server_resolution(self, conflicted):
        payload = apply_resolutions(conflicted, {"action": "server"})
        assert payload == {"urgency": "HIGH", "action": "JUNK"}

    def test_unresolved_conflict_left_out(self, conflicted):
        assert apply_resolutions(conflicted, {}) == {"urgency": "HIGH"}

    def test_unknown_resolution_rejected(self, conflicted):
        with pytest.raises(ValueError):
            apply_resolutions(conflicted, {"action": "both"})

    def test_all_conflicts_resolved(self, conflicted):
        assert all_conflicts_resolved(conflicted.conflicts, {"action": "server"}) is True
        assert all_conflicts_resolved(conflicted.conflicts, {}) is False
        assert all_conflicts_resolved(conflicted.conflicts, None) is False

    def test_describe_conflict(self):
        conflict = ConflictField(field_name="action", base_value="IGNORE",
                                 client_value="NOTIFY", server_value="JUNK")
        assert describe_conflict(conflict) == (
            'Action Type: You changed "IGNORE" to "NOTIFY", but someone else changed it to "JUNK"'
        )
