"""
Workflow Module
===============

Bounded context for the unified ticket workflow.

Responsibilities:
- Per-category status sets and legal transitions
- Impact x urgency priority
- Ticket numbering per organisation and category
- Optimistic-concurrency-safe ticket mutation and domain events
"""

__version__ = "1.0.0"
