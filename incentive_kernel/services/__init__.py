"""Write-side infrastructure services."""

from incentive_kernel.services.base import BaseService
from incentive_kernel.services.sequence_service import SequenceCounter, SequenceService

__all__ = [
    "BaseService",
    "SequenceCounter",
    "SequenceService",
]
