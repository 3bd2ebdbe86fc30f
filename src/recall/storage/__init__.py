"""Storage helpers: audit log and prompt templates."""

from .audit import AuditEntry, AuditLog
from .prompts import PromptLibrary

__all__ = ["AuditEntry", "AuditLog", "PromptLibrary"]
