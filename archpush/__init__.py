"""archpush - multi-architecture container build-and-publish orchestrator.

This package sequences host provisioning, emulation setup, builder
acquisition, registry login and per-platform buildx builds for a single
source tree, publishing every platform under shared tags.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
