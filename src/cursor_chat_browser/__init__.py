"""Read-only browser for Cursor IDE chat history."""

__version__ = "0.1.0"
