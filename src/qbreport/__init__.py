"""
qbreport — consolidated QuickBooks Online report service.

Bank balances, recent purchases and deposits, and budget classes,
served as one JSON report.
"""

__version__ = "0.1.0"
__all__ = ["QBReportConfig", "ReportAssembler"]

from qbreport.assembler import ReportAssembler  # noqa: E402
from qbreport.config import QBReportConfig  # noqa: E402
