import re
from typing import Optional, Dict, Any


class CostGuardException(Exception):
    """Base exception for all costguard errors."""
    def __init__(
        self,
        message: str,
        code: str = "internal_error",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}


class AdapterError(CostGuardException):
    """
    Raised when an external collaborator (EC2, DynamoDB, CloudWatch, Cost Explorer) fails.
    Error messages are sanitized so request IDs and credentials never reach the report.
    """
    def __init__(self, message: str, code: str = "adapter_error", details: Optional[Dict[str, Any]] = None):
        sanitized_message = self._sanitize(message)
        super().__init__(sanitized_message, code=code, details=details)

    def _sanitize(self, msg: str) -> str:
        """Remove sensitive tokens and request IDs from error messages."""
        # Remove UUIDs (likely Request IDs)
        msg = re.sub(r'[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}', '[REDACTED_ID]', msg, flags=re.IGNORECASE)
        msg = re.sub(r'(?i)(access_key|secret_key|token|password|signature)=[^&\s]+', r'\1=[REDACTED]', msg)
        if "AccessDenied" in msg or "Unauthorized" in msg:
            return "Permission denied: ensure the costguard role has the required read permissions."
        if "Throttling" in msg or "RequestLimitExceeded" in msg:
            return "Cloud provider rate limit exceeded after retries."
        return msg


class NotificationError(CostGuardException):
    """Raised when the chat notification transport cannot be reached."""
    def __init__(self, message: str, code: str = "notification_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, details=details)


class ConfigurationError(CostGuardException):
    """Raised when application configuration is invalid or missing."""
    def __init__(self, message: str, code: str = "config_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, details=details)


class ContractViolationError(ConfigurationError):
    """
    Raised on a programming or configuration error that would otherwise
    produce a silently wrong cost (negative/NaN prices, lookback < 1 day).
    Never recovered: the run aborts without a report.
    """
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="contract_violation", details=details)
