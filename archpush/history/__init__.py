"""Run history module.

This module handles:
- Persisting every release run and its per-platform results
- Looking up which digest a published tag resolved to
"""

from archpush.history.models import PublishRecord, RunRecord

__all__ = ["PublishRecord", "RunRecord"]
