"""Domain errors raised by the coverage services."""


class CoverageError(Exception):
    """Base class for coverage service errors."""


class ValidationError(CoverageError, ValueError):
    """A record or request field failed validation before touching the store."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class ParseError(CoverageError):
    """An uploaded spreadsheet, KML or KMZ file could not be read."""


class NotFoundError(CoverageError):
    """A referenced coverage site does not exist."""

    def __init__(self, site_id: int):
        self.site_id = site_id
        super().__init__(f"Coverage site {site_id} not found")
