"""
M365 Admin Toolkit
==================
Administrative commands for Microsoft 365 tenants: expiration monitoring,
best-practices assessment, inventory exports, Conditional Access templates,
device rename, Autopilot import and app assignment cleanup.

Commands that change the tenant run as a DRY-RUN unless --apply is given.
"""

__version__ = "1.0.0"
__author__ = "M365 Admin Toolkit"
