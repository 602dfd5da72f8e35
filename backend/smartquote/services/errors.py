"""Exception types raised by SmartQuote services."""


class SmartQuoteError(Exception):
    """Base class for all SmartQuote service errors."""


class ConfigurationError(SmartQuoteError):
    """Rate configuration could not be loaded or failed validation."""


class ExtractionError(SmartQuoteError):
    """An extractor call failed or returned an unusable response."""


class ParsingFailedError(SmartQuoteError):
    """Every parsing strategy failed for a document."""
