"""State/cache layer.

This package holds the client-side replica of the backend's sensors and
detections.  The backend is the source of truth; the cache only merges
change-feed events and full reloads into snapshots for presentation code.
"""

from icewatch.state.cache import DashboardStats, ViewCache, ViewSnapshot

__all__ = ["DashboardStats", "ViewCache", "ViewSnapshot"]
