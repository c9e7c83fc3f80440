"""Database models."""

from entval.models.async_validation import AsyncValidationResult, ProcessingLog

__all__ = ["AsyncValidationResult", "ProcessingLog"]
