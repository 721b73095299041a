from .formatting import format_error, format_github_sync, format_lifecycle_result
from .slack import SlackService

__all__ = [
    "SlackService",
    "format_error",
    "format_github_sync",
    "format_lifecycle_result",
]
