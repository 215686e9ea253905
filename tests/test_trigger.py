"""Tests for trigger resolution."""

import pytest

from archpush.errors import TriggerError
from archpush.trigger import Trigger, resolve_trigger, short_ref_name
from archpush.types import TriggerKind


class TestShortRefName:
    """Tests for short_ref_name."""

    def test_strips_tag_prefix(self):
        assert short_ref_name("refs/tags/v2.3.0") == "v2.3.0"

    def test_strips_head_prefix(self):
        assert short_ref_name("refs/heads/main") == "main"

    def test_short_name_unchanged(self):
        assert short_ref_name("v1.0") == "v1.0"


class TestResolveTrigger:
    """Tests for resolve_trigger."""

    def test_tag_push(self):
        """A matching tag push should yield the tag name."""
        trigger = resolve_trigger("push", "refs/tags/v2.3.0")
        assert trigger == Trigger(kind=TriggerKind.TAG_PUSH, ref_name="v2.3.0")

    def test_manual_dispatch_on_branch(self):
        """Manual runs use the branch name as the tag."""
        trigger = resolve_trigger("workflow_dispatch", "refs/heads/main")
        assert trigger.kind is TriggerKind.MANUAL
        assert trigger.ref_name == "main"

    def test_manual_dispatch_ignores_pattern(self):
        """The tag pattern applies only to tag pushes."""
        trigger = resolve_trigger("workflow_dispatch", "refs/tags/nightly")
        assert trigger.ref_name == "nightly"

    def test_tag_not_matching_pattern(self):
        """Tag pushes outside the pattern should be rejected."""
        with pytest.raises(TriggerError, match="does not match"):
            resolve_trigger("push", "refs/tags/release-1")

    def test_custom_pattern(self):
        """A custom pattern should be honoured."""
        trigger = resolve_trigger("push", "refs/tags/release-1", pattern="release-*")
        assert trigger.ref_name == "release-1"

    def test_branch_push_rejected(self):
        """Branch pushes are not release triggers."""
        with pytest.raises(TriggerError, match="not a tag"):
            resolve_trigger("push", "refs/heads/main")

    def test_unknown_event(self):
        """Unknown events should be rejected."""
        with pytest.raises(TriggerError, match="Unsupported trigger event"):
            resolve_trigger("pull_request", "refs/heads/main")

    def test_empty_ref(self):
        """Empty references should be rejected."""
        with pytest.raises(TriggerError, match="empty"):
            resolve_trigger("workflow_dispatch", "  ")

    def test_branch_slashes_replaced(self):
        """'/' is not legal in a tag and becomes '-'."""
        trigger = resolve_trigger("workflow_dispatch", "refs/heads/feature/arm")
        assert trigger.ref_name == "feature-arm"

    def test_invalid_tag_characters(self):
        """References that cannot be tags should be rejected."""
        with pytest.raises(TriggerError, match="not a valid image tag"):
            resolve_trigger("workflow_dispatch", "bad tag!")

    def test_error_code(self):
        """TriggerError should carry its stable code."""
        with pytest.raises(TriggerError) as exc_info:
            resolve_trigger("push", "refs/heads/main")
        assert exc_info.value.code == "trigger_error"
