"""
Utility functions for diagnostics and run bookkeeping.
"""

import re
import uuid
from datetime import datetime


_SECRET_QUERY_RE = re.compile(
    r'(?i)\b(token|key|api_key|apikey|secret|password|passwd|auth)=([^&\s]+)'
)
_USERINFO_RE = re.compile(r'(?i)\b([a-z][a-z0-9+.\-]*://)[^/\s@]+@')


def truncate_string(s: str, max_length: int = 100) -> str:
    """Truncate string for logging/display."""
    if len(s) <= max_length:
        return s
    return s[:max_length - 3] + "..."


def generate_run_id() -> str:
    """Generate unique parse run ID with timestamp."""
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    unique_suffix = str(uuid.uuid4())[:8]
    return f"run_{timestamp}_{unique_suffix}"


def redact_url(text: str) -> str:
    """
    Hide credentials embedded in feed URLs.

    Replaces ``user:password@`` userinfo and secret-looking query
    parameters with ``***``. Works on bare URLs and on free text
    containing them.
    """
    text = _USERINFO_RE.sub(r'\1***@', text)
    return _SECRET_QUERY_RE.sub(lambda m: f"{m.group(1)}=***", text)
