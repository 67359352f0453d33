"""Mount encrypted chroot directories backed by eCryptfs."""

from chrootcrypt.core.version import VERSION

__version__ = VERSION
