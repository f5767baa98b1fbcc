"""
Error taxonomy for DevSrv.

Lower layers raise these; public operations catch them at their boundary
and hand back a structured result with a one-line message.
"""


class DevsrvError(Exception):
    """Base class for all DevSrv failures."""


class ConfigPersistError(DevsrvError):
    """The registry or generated config could not be written."""


class SchemaRecoveryError(DevsrvError):
    """The registry file exists but cannot be parsed, even leniently."""


class ProcessLaunchError(DevsrvError):
    """The unprivileged proxy process failed to start."""


class PrivilegeEscalationError(DevsrvError):
    """Consent was declined or a step of an escalated command failed."""

    def __init__(self, message: str, code: int = 1, out: str = "", err: str = ""):
        super().__init__(message)
        self.code = code
        self.out = out
        self.err = err


class ProbeFailure(DevsrvError):
    """A health probe timed out or got a non-success answer."""
