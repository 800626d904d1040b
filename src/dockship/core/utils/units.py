"""Human readable sizes for progress output."""

DECIMAL_UNITS = ["B", "kB", "MB", "GB", "TB", "PB", "EB", "ZB", "YB"]


def human_size(size: float, precision: int = 4) -> str:
    """
    Format a byte count with decimal units.

    Args:
        size: Number of bytes
        precision: Significant digits to keep

    Returns:
        Size such as "512B", "1.234kB" or "2.5MB"
    """
    i = 0
    while size >= 1000.0 and i < len(DECIMAL_UNITS) - 1:
        size /= 1000.0
        i += 1
    return f"{size:.{precision}g}{DECIMAL_UNITS[i]}"
