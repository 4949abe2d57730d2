"""
Group Ledger - Source Package

Domain core of a multi-tenant finance manager where groups of users share
transactions, recurring payments and other records.

DESIGN PRINCIPLES:
1. Every group-scoped action passes through one role check
2. Schedules are computed from stored fields, never from an ambient clock
3. Shares must reconstruct the amount before anything is written
4. Every membership change is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Group Ledger Team"
