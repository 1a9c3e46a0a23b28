"""
SLA Module
==========

Bounded context for service level agreement tracking.

Responsibilities:
- Map priorities to response/resolution budgets
- Compute absolute deadlines and shift them across pauses
- Answer breach and risk queries for any instant
"""

__version__ = "1.0.0"
