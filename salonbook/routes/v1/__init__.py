# salonbook/routes/v1/__init__.py
"""
API v1 routes.

All versioned routes are mounted under /api/v1 in main.py.
"""

from . import appointments, payments

__all__ = ["appointments", "payments"]
