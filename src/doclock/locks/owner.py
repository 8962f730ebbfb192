"""Owner token helpers.

Any string that uniquely identifies the caller for the duration of an
attempt works as an owner token. The default embeds host and pid so the
orphan sweep can tell whether a local owner is still alive.
"""

from __future__ import annotations

import errno
import os
import socket
import uuid
from dataclasses import dataclass


@dataclass(frozen=True)
class OwnerIdentity:
    host: str | None
    pid: int | None


def make_owner_token(host: str | None = None, pid: int | None = None) -> str:
    """Return ``"<host>:<pid>:<nonce>"`` for the current process."""
    host = host or socket.gethostname()
    pid = os.getpid() if pid is None else pid
    return f"{host}:{pid}:{uuid.uuid4().hex[:12]}"


def parse_owner_token(token: str) -> OwnerIdentity:
    """Extract host and pid from a token built by ``make_owner_token``.

    Tokens in any other shape yield an identity with unknown fields.
    """
    parts = token.rsplit(":", 2)
    if len(parts) != 3:
        return OwnerIdentity(host=None, pid=None)
    host, pid_text, _nonce = parts
    try:
        pid = int(pid_text)
    except ValueError:
        return OwnerIdentity(host=None, pid=None)
    return OwnerIdentity(host=host or None, pid=pid)


def is_process_running(pid: int) -> bool:
    try:
        os.kill(pid, 0)
        return True
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError as e:
        return e.errno == errno.EPERM
