# core/constants.py - SINGLE SOURCE OF TRUTH for all shared string literals
"""
All shared string constants MUST be defined here.
No other module may define these values.

Categories:
- ConsoleStyle: Unicode vs ASCII-safe output mode
- ConfigKeys: JSON config keys
- EcryptfsParams: Driver option names and output markers
- Commands: External executables
- Prompts: User-facing prompts and messages
- Defaults: Default configuration values
"""

import os

# =============================================================================
# Console Style - Unicode vs ASCII-safe output
# =============================================================================


class ConsoleStyle:
    """
    Console output style selection for unicode vs ASCII-safe rendering.

    A serial console or a minimal initramfs shell often cannot render
    unicode, so every symbol has an ASCII fallback.

    Usage:
        style = ConsoleStyle.detect()
        print(style.SUCCESS + " Mounted")
    """

    UNICODE = "unicode"
    ASCII = "ascii"

    _SYMBOLS = {
        UNICODE: {
            "SUCCESS": "✓",
            "FAILURE": "✗",
            "WARNING": "⚠",
            "PROGRESS": ".",
        },
        ASCII: {
            "SUCCESS": "[OK]",
            "FAILURE": "[X]",
            "WARNING": "[!]",
            "PROGRESS": ".",
        },
    }

    def __init__(self, mode: str = None):
        self._mode = mode or self.detect_mode()

    @classmethod
    def detect_mode(cls) -> str:
        """
        Auto-detect console style based on environment.

        Returns ASCII mode if:
        - CHROOTCRYPT_ASCII or NO_COLOR is set
        - TERM is 'dumb', 'linux' (kernel VT) or unset
        """
        if os.environ.get("CHROOTCRYPT_ASCII", "").lower() in ("1", "true", "yes"):
            return cls.ASCII
        if os.environ.get("NO_COLOR"):
            return cls.ASCII

        term = os.environ.get("TERM", "").lower()
        if term in ("dumb", "linux", ""):
            return cls.ASCII

        return cls.UNICODE

    @classmethod
    def detect(cls) -> "ConsoleStyle":
        """Factory method to create ConsoleStyle with auto-detection."""
        return cls(cls.detect_mode())

    def symbol(self, name: str) -> str:
        """Get symbol by name for current mode."""
        return self._SYMBOLS.get(self._mode, self._SYMBOLS[self.ASCII]).get(name, "")

    @property
    def SUCCESS(self) -> str:
        return self.symbol("SUCCESS")

    @property
    def FAILURE(self) -> str:
        return self.symbol("FAILURE")

    @property
    def WARNING(self) -> str:
        return self.symbol("WARNING")


# =============================================================================
# Configuration Keys
# =============================================================================


class ConfigKeys:
    """All configuration file keys. Use these instead of string literals."""

    SCHEMA_VERSION = "schema_version"

    # Layout
    CHROOTS_DIR = "chroots_dir"
    SECURE_ROOT = "secure_root"

    # OS collaborators
    MOUNT_TABLE = "mount_table"
    SHADOW_FILE = "shadow_file"
    PASSWORD_USER = "password_user"
    PASSWORD_SETUP_COMMAND = "password_setup_command"

    # eCryptfs section
    ECRYPTFS = "ecryptfs"
    CIPHER = "cipher"
    KEY_BYTES = "key_bytes"
    PIPE_PASSPHRASE_MIN_VERSION = "pipe_passphrase_min_version"
    VERSION_COMMAND = "version_command"

    # Logging
    LOG_FILE = "log_file"


# =============================================================================
# eCryptfs Driver Parameters
# =============================================================================


class EcryptfsParams:
    """eCryptfs mount option names and driver output markers."""

    FILESYSTEM_TYPE = "ecryptfs"

    # Storage directory naming: <name>.ecryptfs-<SIG>
    STORAGE_MARKER = ".ecryptfs-"

    OPT_CIPHER = "ecryptfs_cipher"
    OPT_KEY_BYTES = "ecryptfs_key_bytes"
    OPT_PASSTHROUGH = "ecryptfs_passthrough"
    OPT_FILENAME_CRYPTO = "ecryptfs_enable_filename_crypto"
    OPT_SIG = "ecryptfs_sig"
    OPT_FNEK_SIG = "ecryptfs_fnek_sig"
    OPT_KEY = "key"
    OPT_NO_SIG_CACHE = "no_sig_cache"
    OPT_PASSWD_FD = "passphrase_passwd_fd"

    KEY_TYPE_PASSPHRASE = "passphrase"

    # Written to the driver's stdin when OPT_PASSWD_FD=0
    PASSWD_STDIN_PREFIX = "passphrase_passwd="

    # mount.ecryptfs echoes the options it is about to use before anything useful
    MOUNT_OUTPUT_NOISE_PREFIX = "Attempting to mount with the following options:"


# =============================================================================
# External Commands
# =============================================================================


class Commands:
    """External executables invoked via subprocess."""

    MOUNT = "mount"
    ADD_PASSPHRASE = "ecryptfs-add-passphrase"
    # Called by mount(8) for -t ecryptfs; parses the passphrase options
    MOUNT_HELPER = "mount.ecryptfs"

    # Read the passphrase from stdin instead of prompting
    ADD_PASSPHRASE_STDIN_ARG = "-"


# =============================================================================
# Prompts and Messages
# =============================================================================


class Prompts:
    """User-facing prompts and standardized messages."""

    CHOOSE_PASSPHRASE = "Choose an encryption passphrase for {name}: "
    EMPTY_PASSPHRASE = "You must specify a passphrase: "
    CONFIRM_PASSPHRASE = "Please confirm your passphrase: "
    MISMATCH_PASSPHRASE = "Passphrases do not match; try again: "

    NOT_ENCRYPTED = "{path} is not encrypted; use -e to encrypt it."
    NOT_FOUND = "{path} not found; use -n to create it."
    ALREADY_MOUNTED = "{name} is already mounted at {mount_point}"
    MOUNTED = "{name} mounted at {mount_point}"
    ENCRYPTING = "Encrypting {name}; please wait"
    ENCRYPTED = "{name} is now encrypted"
    NOT_A_TERMINAL = "Cannot prompt for the {name} passphrase: stdin is not a terminal"
    NEED_ROOT = "{prog} must be run as root."
    SETTING_PASSWORD = "A password for '{user}' is required before encrypting; setting it now."


# =============================================================================
# Default Values
# =============================================================================


class Defaults:
    """Default configuration values."""

    CHROOTS_DIR = "/usr/local/chroots"
    SECURE_ROOT = "/var/run/chrootcrypt"
    CONFIG_FILE = "/etc/chrootcrypt/config.json"
    CONFIG_ENV_VAR = "CHROOTCRYPT_CONFIG"
    LOG_FILE = "/var/log/chrootcrypt/chrootcrypt.log"

    MOUNT_TABLE = "/proc/mounts"
    SHADOW_FILE = "/etc/shadow"
    PASSWORD_USER = "root"
    PASSWORD_SETUP_COMMAND = ["passwd", "root"]

    CIPHER = "aes"
    KEY_BYTES = 16
    VERSION_COMMAND = ["ecryptfsd", "-V"]

    SCHEMA_VERSION = 1
