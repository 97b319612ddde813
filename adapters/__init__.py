"""
HTTP adapters for the backend APIs.

Each adapter wraps ApiAdapter, which folds every response (or failure)
into an {"ok", "status", ...} dict instead of raising.
"""

from adapters.base import ApiAdapter
from adapters.auth_api import EmailCodeClient, TokenVerifier, VerifyResult
from adapters.scholarship_api import ScholarshipClient, load_local_scholarships

__all__ = ["ApiAdapter", "EmailCodeClient", "TokenVerifier", "VerifyResult", "ScholarshipClient", "load_local_scholarships"]
