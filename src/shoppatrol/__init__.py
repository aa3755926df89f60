"""
ShopPatrol - Terminal-first compliance patrol for e-commerce shop listings.

Scans shop catalogs page by page, classifies every listing for legal and
prohibited-category risk through an external AI oracle, and keeps resumable
patrol runs in a local database.
"""

__version__ = "0.1.0"
__app_name__ = "shoppatrol"
