"""
Error taxonomy for the usage gate.

None of these ever escape to the host: each component catches them at its
public boundary and degrades to "use whatever is known, or allow".
"""


class UsageGateError(Exception):
    """Base class for internal usage gate failures."""


class CacheUnavailable(UsageGateError):
    """Cache file is missing, unreadable, or malformed."""


class CredentialUnavailable(UsageGateError):
    """No access token could be resolved."""


class RemoteFetchFailed(UsageGateError):
    """Usage query failed: network, timeout, or invalid body."""


class ConfigInvalid(UsageGateError):
    """A configuration value could not be parsed."""
