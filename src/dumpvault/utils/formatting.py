"""Human readable sizes for logs and events"""


def format_bytes(size: int) -> str:
    """Format bytes to human readable string"""
    if size < 1024:
        return f"{size} Bytes"
    if size < 1024 * 1024:
        return f"{size / 1024:.2f} KB"
    return f"{size / (1024 * 1024):.2f} MB"
