"""Errors raised while provisioning compose sites."""


class ComposeSiteError(RuntimeError):
    """Base exception for compose site provisioning."""


class PortConflictError(ComposeSiteError):
    """A requested host port cannot be used."""


class PortReservedError(PortConflictError):
    """The port is already assigned to another site on the same server."""


class PortInUseError(PortConflictError):
    """Something on the server is already listening on the port."""


class PortVerificationError(ComposeSiteError):
    """The availability check gave neither FREE nor USED."""


class PortRangeExhaustedError(ComposeSiteError):
    """Every port in the auto-allocation range is reserved or busy."""


class DockerUnavailableError(ComposeSiteError):
    """Docker or the compose plugin is missing on the server."""


class ComposeResolutionError(ComposeSiteError):
    """The compose project declares no services."""


class UnsupportedWebserverError(ComposeSiteError):
    """No proxy renderer exists for the site's webserver."""


class SiteNotFoundError(ComposeSiteError):
    pass
