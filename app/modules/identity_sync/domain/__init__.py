from .lifecycle import AtlassianLifecycleReconciler, get_most_recent_activity
from .membership import GitHubMembershipReconciler

__all__ = [
    "AtlassianLifecycleReconciler",
    "GitHubMembershipReconciler",
    "get_most_recent_activity",
]
