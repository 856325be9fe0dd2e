"""xlagent — natural-language instructions applied to spreadsheets as validated operations."""

__version__ = "0.1.0"
