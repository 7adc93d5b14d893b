"""
Courtcase Service - Case Management for Defense Attorneys
=========================================================

A small service for:
1. Authenticating attorneys (sign-up, sign-in, sign-out)
2. Managing their cases (create, update, soft delete, restore, purge)
3. Searching, filtering and sorting case lists

Cases are private to the attorney who created them.
"""

__version__ = "1.0.0"
