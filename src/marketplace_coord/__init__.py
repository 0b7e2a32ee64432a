"""Background coordination layer for the marketplace backend.

Job queues, cache and sessions on a shared Redis-compatible store.
"""

from __future__ import annotations

__version__ = "0.1.0"
