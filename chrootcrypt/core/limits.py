# core/limits.py - SINGLE SOURCE OF TRUTH for timeouts and thresholds
"""
All numeric limits, timeouts, and thresholds MUST be defined here.
No other module may define these values.
"""


class Limits:
    """Operational limits and thresholds."""

    # ==========================================================================
    # Timeouts (seconds)
    # ==========================================================================

    # ecryptfs-add-passphrase (non-interactive, passphrase on stdin)
    ADD_PASSPHRASE_TIMEOUT = 30

    # Driver version query
    VERSION_QUERY_TIMEOUT = 10

    # mount -t ecryptfs when the passphrase is piped in.
    # When the driver prompts on the terminal there is no timeout.
    MOUNT_PIPED_TIMEOUT = 60

    # ==========================================================================
    # Permissions
    # ==========================================================================

    # Secure root, mount points and fresh storage directories
    SECURE_DIR_MODE = 0o700

    # ==========================================================================
    # Logging
    # ==========================================================================

    MAX_LOG_FILE_SIZE = 5 * 1024 * 1024  # 5 MB
    LOG_BACKUP_COUNT = 3

    # ==========================================================================
    # eCryptfs
    # ==========================================================================

    # Key sizes accepted by the aes cipher
    VALID_KEY_BYTES = (16, 24, 32)

    # First ecryptfs-utils release that reads passphrase_passwd from a pipe
    # reliably for a signature inserted in the same session.
    DEFAULT_PIPE_PASSPHRASE_MIN_VERSION = 104

    # ==========================================================================
    # Exit codes
    # ==========================================================================

    EXIT_OK = 0
    EXIT_FAILURE = 1
    EXIT_SIGHUP = 128 + 1
    EXIT_SIGINT = 128 + 2
