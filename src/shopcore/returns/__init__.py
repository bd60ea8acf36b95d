"""Return workflow for delivered orders."""

from shopcore.returns.models import ReturnInput, ReturnRequest, ReturnStats, ReturnStatus
from shopcore.returns.service import ReturnService

__all__ = ["ReturnInput", "ReturnRequest", "ReturnService", "ReturnStats", "ReturnStatus"]
