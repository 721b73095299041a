from typing import Optional, Dict, Any


class AccessSyncException(Exception):
    """Base exception for all access-sync errors."""
    def __init__(
        self,
        message: str,
        code: str = "internal_error",
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}


class ExternalAPIError(AccessSyncException):
    """Raised when a call to GitHub, Google or Atlassian fails."""
    def __init__(
        self,
        message: str,
        code: str = "external_api_error",
        upstream_status: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, code=code, status_code=502, details=details)
        self.upstream_status = upstream_status


class RetryableAPIError(ExternalAPIError):
    """Upstream answered with a status worth retrying (rate limit, timeout)."""
    def __init__(self, message: str, upstream_status: Optional[int] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="retryable_api_error", upstream_status=upstream_status, details=details)


class DirectoryResolutionError(ExternalAPIError):
    """Raised when the Atlassian organization directory id cannot be resolved."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="directory_resolution_error", details=details)


class ConfigurationError(AccessSyncException):
    """Raised when application configuration is invalid or missing."""
    def __init__(self, message: str, code: str = "config_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=500, details=details)


class SyncAlreadyRunningError(AccessSyncException):
    """Raised when a reconciler entry point is invoked while another run holds its guard."""
    def __init__(self, run_name: str, active_run: str):
        super().__init__(
            f"Cannot start {run_name}: {active_run} is still running",
            code="sync_already_running",
            status_code=409,
            details={"run": run_name, "active_run": active_run},
        )
        self.run_name = run_name
        self.active_run = active_run
