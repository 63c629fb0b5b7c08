"""XHS API exception classes."""


class XHSError(Exception):
    """Base exception for XHS extraction errors."""

    pass


class XHSInvalidInputError(XHSError):
    """No recognizable share link was found in the input text."""

    pass


class XHSRedirectUnresolvedError(XHSError):
    """Short link could not be resolved to its destination URL."""

    pass


class XHSFetchFailedError(XHSError):
    """Note page was unreachable, returned a bad status or could not be decoded."""

    pass


class XHSExtractionEmptyError(XHSError):
    """Neither the embedded state nor the markup scan yielded any media."""

    pass


class XHSPermissionDeniedError(XHSError):
    """Storage collaborator lacks the rights to save media."""

    pass


class XHSRetrievalFailedError(XHSError):
    """A single media item could not be downloaded or written to disk."""

    pass


class XHSNoMediaFoundError(XHSError):
    """The whole run produced no downloadable media."""

    pass


class XHSLibraryUnsupportedError(XHSError):
    """Library refused the file as a duplicate or unsupported item."""

    pass
