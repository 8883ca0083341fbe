"""Session lifecycle management with a buffered, categorized audit trail."""

__version__ = "0.1.0"
