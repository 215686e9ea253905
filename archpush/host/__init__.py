"""Host preparation module.

This module handles:
- Swap allocation and image-store remounting
- Registration of cross-architecture emulation handlers
"""

from archpush.host.emulation import register_emulation
from archpush.host.provision import provision

__all__ = ["provision", "register_emulation"]
