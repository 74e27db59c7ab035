# moda/utils/formatting.py
from datetime import datetime
from typing import Optional, Union

def format_file_size(size: Optional[int]) -> str:
    """Human-readable file size: 512 B, 1.5 KB, 2.0 MB, 1.2 GB"""
    if not size:
        return "Unknown"
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    if size < 1024 * 1024 * 1024:
        return f"{size / (1024 * 1024):.1f} MB"
    return f"{size / (1024 * 1024 * 1024):.1f} GB"

def format_date(value: Optional[Union[str, datetime]]) -> str:
    """Display date such as 'Jan 27, 2025, 02:30 PM'"""
    if not value:
        return "Unknown"
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return "Unknown"
    return value.strftime("%b %d, %Y, %I:%M %p")
