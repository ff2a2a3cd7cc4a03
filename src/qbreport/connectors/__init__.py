"""
Accounting platform connectors.
"""

from qbreport.connectors.quickbooks_connector import QuickBooksClient, QuickBooksClientFactory

__all__ = ["QuickBooksClient", "QuickBooksClientFactory"]
