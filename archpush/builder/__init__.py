"""Builder instance management.

The builder is acquired once per run and shared by every platform build.
"""

from archpush.builder.service import BuilderHandle, acquire_builder

__all__ = ["BuilderHandle", "acquire_builder"]
