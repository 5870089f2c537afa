"""Resolution of libraries referenced from SC3D headers.

A header may name another SC3D file (a library) holding shared geometry
and materials. Libraries are looked up under a search root, then under its
"sc3d" subdirectory, and cached by normalized name so every reference to
the same library shares one container.
"""
import logging
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

from sc3d_errors import LibraryNotFoundError
from sc3d_parser import SC3DFile

logger = logging.getLogger(__name__)

LIBRARY_EXTENSION = ".scw"
LIBRARY_SUBDIRECTORY = "sc3d"


def normalize_library_name(name: str) -> str:
    """Normalize a library reference to the name used as cache key."""
    name = name.strip().replace("\\", "/")
    if not name.lower().endswith(LIBRARY_EXTENSION):
        name += LIBRARY_EXTENSION
    return name


class LibraryRegistry:
    """Cache of loaded libraries keyed by normalized name.

    Not thread-safe: hosts decoding from several threads must give each
    session its own registry or serialize resolution.
    """

    def __init__(self):
        self._libraries: Dict[str, SC3DFile] = {}

    def get(self, name: str) -> Optional[SC3DFile]:
        return self._libraries.get(normalize_library_name(name))

    def register(self, name: str, library: SC3DFile):
        self._libraries[normalize_library_name(name)] = library

    def discard(self, name: str):
        self._libraries.pop(normalize_library_name(name), None)

    def clear(self):
        self._libraries.clear()

    def __contains__(self, name: str) -> bool:
        return normalize_library_name(name) in self._libraries

    def __len__(self) -> int:
        return len(self._libraries)

    def __iter__(self) -> Iterator[str]:
        return iter(self._libraries)


# Shared by every resolver that is not given its own registry
default_registry = LibraryRegistry()


class LibraryResolver:
    """Loads referenced libraries from a search root."""

    def __init__(self, search_root: Union[str, Path] = ".", registry: Optional[LibraryRegistry] = None):
        """Initialize resolver.

        Args:
            search_root: Directory libraries are looked up in
            registry: Library cache; defaults to the process-wide registry
        """
        self.search_root = Path(search_root)
        self.registry = registry if registry is not None else default_registry

    def candidate_paths(self, name: str) -> List[Path]:
        name = normalize_library_name(name)
        return [
            self.search_root / name,
            self.search_root / LIBRARY_SUBDIRECTORY / name,
        ]

    def resolve(self, name: str) -> SC3DFile:
        """Return the loaded library for name, loading it on first use.

        The library's own header library is resolved in turn. There is no
        cycle detection; a library is registered before its dependencies
        are resolved, so a reference back to an already registered library
        is a cache hit. A library whose dependencies fail to load is dropped
        from the registry again.

        Raises:
            LibraryNotFoundError: If neither candidate path exists for this
                library or one it depends on
        """
        key = normalize_library_name(name)
        cached = self.registry.get(key)
        if cached is not None:
            return cached

        candidates = self.candidate_paths(key)
        path = next((p for p in candidates if p.is_file()), None)
        if path is None:
            raise LibraryNotFoundError(key, candidates)

        logger.info(f"Loading library {key} from {path}")
        library = SC3DFile(path.read_bytes(), name=key).load()
        self.registry.register(key, library)
        try:
            library.resolve_library(self)
        except (OSError, ValueError):
            self.registry.discard(key)
            raise
        return library
