"""SmartQuote — furniture installation quoting engine."""

__version__ = "1.0.0"
