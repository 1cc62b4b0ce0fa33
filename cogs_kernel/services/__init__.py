"""Kernel infrastructure services."""

from cogs_kernel.services.base import BaseService
from cogs_kernel.services.sequence_service import SequenceService

__all__ = ["BaseService", "SequenceService"]
