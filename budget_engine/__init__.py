"""Budget allocation and expense approval engine."""

__version__ = "0.1.0"
