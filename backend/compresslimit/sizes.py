"""Byte / megabyte conversion and human-readable sizes."""

MB = 1024 * 1024


def format_size(num_bytes: int) -> str:
    if num_bytes < 1024:
        return f"{num_bytes} B"
    if num_bytes < MB:
        return f"{num_bytes / 1024:.1f} KB"
    return f"{num_bytes / MB:.2f} MB"


def bytes_to_mb(num_bytes: int) -> float:
    return num_bytes / MB


def mb_to_bytes(mb: float) -> int:
    """Budgets are whole bytes; fractional bytes are dropped."""
    return int(mb * MB)
