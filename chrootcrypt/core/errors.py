# core/errors.py - SINGLE SOURCE OF TRUTH for exception types
"""
Every failure that is specific to one target derives from ChrootCryptError.
The batch loop catches ChrootCryptError, reports it, and moves on to the
next target. Anything else propagates.
"""

from typing import Optional


class ChrootCryptError(Exception):
    """Processing a target failed."""

    pass


class ConfigError(ChrootCryptError):
    """Configuration file is unreadable or invalid. Fatal for the whole run."""

    pass


class InvalidTargetError(ChrootCryptError):
    """Target name is unusable or resolves to more than one storage path."""

    pass


class TargetNotFoundError(ChrootCryptError):
    """Neither a plain nor an encrypted storage directory exists."""

    pass


class NotATerminalError(ChrootCryptError):
    """A passphrase is needed but stdin is not an interactive terminal."""

    pass


class PasswordSetupError(ChrootCryptError):
    """The system password setup command failed."""

    pass


class EcryptfsError(ChrootCryptError):
    """eCryptfs driver operation failed."""

    pass


class PassphraseRegistrationError(EcryptfsError):
    """ecryptfs-add-passphrase did not return a signature."""

    pass


class SignatureCommitError(EcryptfsError):
    """Renaming the storage path to embed the signature failed."""

    pass


class MountVerificationError(EcryptfsError):
    """The storage path is not in the mount table after the mount attempt."""

    def __init__(self, message: str, driver_output: str = ""):
        super().__init__(message)
        self.driver_output = driver_output


class MigrationError(ChrootCryptError):
    """Moving unencrypted content into the encrypted mount failed."""

    def __init__(self, message: str, entry: Optional[str] = None):
        super().__init__(message)
        self.entry = entry


class PassphraseEntryError(ChrootCryptError):
    """Passphrase entry ended (EOF) before a passphrase was confirmed."""

    pass
