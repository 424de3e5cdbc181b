"""
Consistency Reconciliation Module

Out-of-band sweep over identities and relationship aggregates:
- Recomputes dashboard roll-up counters
- Reports duplicate emails, half-links, dangling references and orphans
- Lists partial failures still open in the integrity ledger

Irregularities are reported, never repaired.
"""

from .reconciler import (
    ConsistencyReport,
    Irregularity,
    IrregularityType,
    Reconciler,
)

__all__ = [
    'ConsistencyReport',
    'Irregularity',
    'IrregularityType',
    'Reconciler',
]
