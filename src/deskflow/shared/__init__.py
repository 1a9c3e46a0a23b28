"""
Shared Kernel Module
====================

Generic infrastructure used across bounded contexts (workflow and SLA).

Architecture Pattern: Modular Monolith
- Each module (workflow, sla) is a bounded context
- Shared kernel contains only generic infrastructure

DO NOT add workflow or SLA business rules to the shared kernel.
"""

__version__ = "1.0.0"
