"""Per-platform build orchestration.

This module handles:
- Tag composition
- Composing and running buildx invocations
- Sequential build-and-push with failure isolation
- Aggregating publish results into a run report
"""

from archpush.builds.models import BuildRequest, PublishResult, RunReport

__all__ = ["BuildRequest", "PublishResult", "RunReport"]

# Service and runner submodules are imported directly
# (archpush.builds.service, archpush.builds.runner).
