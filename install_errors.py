"""
Error kinds raised by the RmSkin installer.

Every error is fatal to the current run: the installer stops at the failing
stage, removes its staging directory and reports the message. Nothing that
was already copied into the host directories is rolled back.
"""


class InstallError(Exception):
    """Base class for all installer failures."""


class ManifestMissing(InstallError):
    """The archive has no RMSKIN.ini at its root."""


class ConfigNotFound(InstallError):
    """A configuration file does not exist."""


class ConfigParseError(InstallError):
    """A configuration file could not be parsed in any supported encoding."""


class SourceNotDirectory(InstallError):
    """A merge-copy source is missing or is not a directory."""


class DestinationIsFile(InstallError):
    """A merge-copy destination exists as a regular file."""


class IOFailure(InstallError):
    """Creating, copying or removing a file or directory failed."""


class HostBusy(InstallError):
    """The host process could not be stopped."""
