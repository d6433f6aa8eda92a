"""Domain errors for neonlocal."""


class ProxyError(RuntimeError):
    """Raised when the proxy container cannot be managed safely."""


class ConfigError(ProxyError):
    """Raised when configuration input is invalid."""


class AuthRequired(ProxyError):
    """No usable credential exists for the requested operation."""


class AuthExpired(ProxyError):
    """The session token could not be refreshed; the user was signed out."""


class TokenRefreshError(ProxyError):
    """The OAuth token endpoint rejected or failed a refresh request."""


class ContainerNotFound(ProxyError):
    """The proxy container (or required metadata on it) does not exist."""


class PullError(ProxyError):
    """The proxy image could not be pulled."""


class GenericContainerFailure(ProxyError):
    """The container reported an error while starting."""


class BranchLimitExceeded(GenericContainerFailure):
    """The project reached its branch quota while creating an ephemeral branch."""


class ReadinessTimeout(ProxyError):
    """The container did not report readiness in time."""


class HandoffTimeout(ProxyError):
    """The container did not report an ephemeral branch id in time."""


class StartCancelled(ProxyError):
    """A stop request interrupted an in-flight start."""
