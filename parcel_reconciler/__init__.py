"""
Parcel Reconciler — batch reconciliation of scanned tax cards against a parcel catalog.

Architecture: Scan → Extract (LLM) → Normalize APN → Match → Update/Create → File
Philosophy:  The in-process catalog is the truth for a run. Everything else follows.
"""

__version__ = "1.0.0"
