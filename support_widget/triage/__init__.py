"""Message triage: classification, department routing and canonical replies."""

from .classifier import (
    CATEGORY_RULES,
    Category,
    CategoryRule,
    ClassificationResult,
    MessageClassifier,
    classify,
)
from .replies import CanonicalReplyStore, ReplyBranch
from .routing import DepartmentRouter

__all__ = [
    "CATEGORY_RULES",
    "CanonicalReplyStore",
    "Category",
    "CategoryRule",
    "ClassificationResult",
    "DepartmentRouter",
    "MessageClassifier",
    "ReplyBranch",
    "classify",
]
