"""Key generators for the shared counter store."""


def quota_inflight_key(account_id: str, resource_type: str) -> str:
    """In-flight usage reserved by concurrent record_usage calls (hard mode)."""
    return f"quota:inflight:{account_id}:{resource_type}"
