"""
Deskflow
========

Unified ticket workflow and SLA engine.
"""

__version__ = "1.0.0"
