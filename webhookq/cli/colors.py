"""
Terminal status output for the webhookq CLI
"""

import sys

_COLORS = {
    "success": "\033[32m",
    "error": "\033[31m",
    "warning": "\033[33m",
    "info": "\033[36m",
}
_RESET = "\033[0m"
_ICONS = {"success": "✓", "error": "✗", "warning": "!", "info": "•"}


def print_status(message: str, status: str = "info") -> None:
    stream = sys.stderr if status == "error" else sys.stdout
    icon = _ICONS.get(status, "•")
    if stream.isatty():
        color = _COLORS.get(status, "")
        print(f"{color}{icon}{_RESET} {message}", file=stream)
    else:
        print(f"{icon} {message}", file=stream)
