"""
Replenishment Kernel

Order lifecycle engine for branch stock-replenishment requests:
- Table-driven state machine with role and ownership checks
- Conditional (compare-and-swap) transitions
- Quantity reconciliation on approval and issue replies
- Working-hours auto-close deadlines and a scheduled closer
- Commit-bound, fire-and-forget notifications
"""

__version__ = "0.1.0"
