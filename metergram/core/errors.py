"""Exception types raised by metergram."""


class MetergramError(Exception):
    """Base class for all metergram errors."""


class GrammarElementNotFound(MetergramError):
    """An element to be removed from a grammar was never added to it."""

    def __init__(self, element):
        super().__init__(f"Element not found in grammar: {element}")
        self.element = element


class MalformedTreeError(MetergramError):
    """A rhythm pattern cannot be split into the requested tree shape."""


class InputFormatError(MetergramError):
    """An input file cannot be decoded (bad format or unsupported meter)."""
