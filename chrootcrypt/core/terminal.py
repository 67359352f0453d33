# core/terminal.py - Terminal echo safety and passphrase prompting
"""
Guarantees the terminal is never left with echo disabled.

Three layers, all restoring the same saved termios attributes:
- terminal_guard(): scope guard around any prompt (finally block)
- SIGINT/SIGHUP handlers installed by install_signal_handlers()
- an atexit hook, also installed by install_signal_handlers()

The handlers restore and then raise SystemExit, so finally blocks further
up the stack still run.
"""

import atexit
import logging
import signal
import sys
import termios
from contextlib import contextmanager
from getpass import getpass
from typing import Callable, List, Optional, Tuple

from chrootcrypt.core.constants import Prompts
from chrootcrypt.core.errors import PassphraseEntryError
from chrootcrypt.core.limits import Limits

_terminal_logger = logging.getLogger("chrootcrypt.terminal")

# (fd, attrs) snapshots to restore, oldest first. Index 0 is the startup state.
_saved_states: List[Tuple[int, list]] = []
_handlers_installed = False


def _snapshot(stream) -> Optional[Tuple[int, list]]:
    """Current termios attributes of a tty stream, or None if not a tty."""
    try:
        fd = stream.fileno()
        return fd, termios.tcgetattr(fd)
    except (AttributeError, ValueError, OSError, termios.error):
        return None


def restore_terminal() -> None:
    """Restore every saved terminal state, newest first. Never raises."""
    for fd, attrs in reversed(_saved_states):
        try:
            termios.tcsetattr(fd, termios.TCSANOW, attrs)
        except (OSError, termios.error) as e:
            _terminal_logger.debug(f"terminal.restore: fd={fd}, error={e}")


@contextmanager
def terminal_guard(stream=None):
    """
    Restore the terminal attributes of `stream` (default stdin) on exit.

    Holds even if the body raises or a signal handler fires inside it.
    A non-tty stream makes this a no-op.
    """
    stream = stream if stream is not None else sys.stdin
    state = _snapshot(stream)
    if state is None:
        yield
        return

    _saved_states.append(state)
    try:
        yield
    finally:
        fd, attrs = state
        try:
            termios.tcsetattr(fd, termios.TCSANOW, attrs)
        finally:
            if state in _saved_states:
                _saved_states.remove(state)


def _handle_signal(signum, frame):
    restore_terminal()
    exit_code = Limits.EXIT_SIGINT if signum == signal.SIGINT else Limits.EXIT_SIGHUP
    _terminal_logger.warning(f"terminal.signal: signum={signum}, exit={exit_code}")
    try:
        sys.stderr.write("\n")
        sys.stderr.flush()
    except (OSError, ValueError):
        pass
    raise SystemExit(exit_code)


def install_signal_handlers(stream=None) -> None:
    """
    Snapshot the startup terminal state and restore it on INT, HUP and exit.

    Safe to call more than once; only the first call installs anything.
    """
    global _handlers_installed
    if _handlers_installed:
        return

    state = _snapshot(stream if stream is not None else sys.stdin)
    if state is not None:
        _saved_states.insert(0, state)

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGHUP, _handle_signal)
    atexit.register(restore_terminal)
    _handlers_installed = True


def prompt_new_passphrase(
    name: str,
    reader: Optional[Callable[[str], str]] = None,
) -> str:
    """
    Prompt until a non-empty passphrase is entered identically twice.

    Args:
        name: Target name shown in the prompt
        reader: Reads one line with echo disabled (default: getpass on stderr)

    Returns:
        The confirmed passphrase

    Raises:
        PassphraseEntryError: on EOF
    """
    if reader is None:
        def reader(prompt: str) -> str:
            return getpass(prompt, stream=sys.stderr)

    prompt = Prompts.CHOOSE_PASSPHRASE.format(name=name)
    with terminal_guard():
        while True:
            try:
                passphrase = reader(prompt)
                if not passphrase:
                    prompt = Prompts.EMPTY_PASSPHRASE
                    continue
                confirmation = reader(Prompts.CONFIRM_PASSPHRASE)
            except EOFError:
                raise PassphraseEntryError(f"Passphrase entry for {name} aborted")

            if confirmation != passphrase:
                _terminal_logger.info(f"terminal.prompt: name={name}, result=mismatch")
                prompt = Prompts.MISMATCH_PASSPHRASE
                continue

            _terminal_logger.info(f"terminal.prompt: name={name}, result=confirmed")
            return passphrase
