"""Rule-based proxy configuration parsing and connection routing."""

__version__ = "0.1.0"