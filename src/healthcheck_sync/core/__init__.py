"""Session engine domain logic.

- store.py: authoritative local document, local mutations, remote snapshots
- roster.py: roster reconciliation and connected-user presence
- phase.py: phase lifecycle under a configurable policy
- ratings.py / actions.py / roti.py: per-feature mutations and aggregates
- anonymizer.py: anonymous display labels
- session.py: per-connection session handle wiring it all to the gateway
"""

__all__: list[str] = []
