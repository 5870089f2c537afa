"""Exceptions raised while decoding SC3D containers."""


class SC3DError(ValueError):
    """Base class for all SC3D decoding failures."""


class InvalidMagicError(SC3DError):
    """Buffer does not start with the SC3D magic."""


class DecodeError(SC3DError):
    """A field could not be decoded (out of bounds read, bad enum, bad width)."""


class LibraryNotFoundError(SC3DError):
    """A referenced library could not be found under the search root."""

    def __init__(self, name: str, candidates):
        self.name = name
        self.candidates = list(candidates)
        tried = ", ".join(str(c) for c in self.candidates)
        super().__init__(f"Library not found: {name} (tried {tried})")
