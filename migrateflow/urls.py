"""Helpers for inspecting source and database URLs."""

__all__ = ["EmptyURLError", "NoSchemeError", "scheme_from_url"]


class EmptyURLError(ValueError):
    """Raised when a URL string is empty."""

    def __init__(self) -> None:
        super().__init__("URL cannot be empty")


class NoSchemeError(ValueError):
    """Raised when a URL string carries no scheme."""

    def __init__(self) -> None:
        super().__init__("no scheme")


def scheme_from_url(url: str) -> str:
    """Return the scheme part of ``url``, everything before the first colon."""
    if not url:
        raise EmptyURLError()

    scheme, sep, _ = url.partition(":")
    # No colon at all, or the colon is the first character.
    if not sep or not scheme:
        raise NoSchemeError()
    return scheme