"""
Propagation result shared by the CRM and CMS clients.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class PropagationResult:
    """Result of pushing a reconciliation to one external system."""
    success: bool
    collaborator: str
    details: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    status_code: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "collaborator": self.collaborator,
            "details": self.details,
            "error": self.error,
            "status_code": self.status_code,
        }
