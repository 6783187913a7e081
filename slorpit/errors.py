class SlorpitError(Exception):
    """Base class for slorpit-specific errors."""


class ArchiveIOError(SlorpitError, OSError):
    """Reading an input file or writing an extracted file failed."""


class DanglingReferenceError(SlorpitError):
    """An object references an id that was never allocated or never filled."""


# Stream compression
class CompressionError(SlorpitError):
    pass


class UnsupportedFilter(CompressionError):
    pass


# Container structure
class MalformedContainerError(SlorpitError):
    pass


class MalformedHeader(MalformedContainerError):
    pass


class MissingTrailer(MalformedContainerError):
    pass


class MissingRoot(MalformedContainerError):
    pass


class MissingCatalog(MalformedContainerError):
    pass


class BrokenXrefError(MalformedContainerError):
    pass


# Catalog vs. container consistency (per entry)
class CatalogInconsistencyError(SlorpitError):
    pass


class BrokenReference(CatalogInconsistencyError):
    pass


class FilterMismatch(CatalogInconsistencyError):
    pass


class ChecksumMismatch(CatalogInconsistencyError):
    pass
