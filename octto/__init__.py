"""octto - browser-backed question/answer sessions for automated callers."""

__version__ = "0.1.0"
