class BodyExtractionError(Exception):
    """Base class for failures converting one message into Markdown."""


class ParseError(BodyExtractionError):
    pass


class NoTextPartError(BodyExtractionError):
    pass


class RenderError(BodyExtractionError):
    pass
