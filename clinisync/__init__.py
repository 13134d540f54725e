"""clinisync: local-first clinical record store with per-destination sync."""

__version__ = "0.1.0"
