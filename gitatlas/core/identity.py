"""Machine identity persistence."""

import json
import os
import socket
import uuid
import logging
from typing import Any, Dict, Optional

from .types import MachineIdentity

logger = logging.getLogger('gitatlas')

IDENTITY_FILE = "machine-id.json"


def _identity_path(home: str) -> str:
    return os.path.join(home, IDENTITY_FILE)


def _read(home: str) -> Dict[str, Any]:
    try:
        with open(_identity_path(home), 'r') as f:
            return json.load(f)
    except FileNotFoundError:
        return {}


def _write(home: str, data: Dict[str, Any]) -> None:
    os.makedirs(home, exist_ok=True)
    path = _identity_path(home)
    tmp_path = f"{path}.tmp"
    with open(tmp_path, 'w') as f:
        json.dump(data, f, indent=2)
    os.replace(tmp_path, path)


def _new_token(revoked: set) -> str:
    while True:
        token = uuid.uuid4().hex
        if token not in revoked:
            return token


def load_machine_identity(home: str, hostname: Optional[str] = None) -> MachineIdentity:
    """Load the local machine identity, creating it on first use.

    Args:
        home: gitatlas configuration directory
        hostname: Override for the detected hostname

    Returns:
        MachineIdentity with the current hostname and the durable token
    """
    data = _read(home)
    host = hostname or socket.gethostname()
    if not data.get('token'):
        data = {'token': _new_token(set(data.get('revoked', []))), 'revoked': data.get('revoked', [])}
        _write(home, data)
        logger.info(f"Created machine identity in {_identity_path(home)}")
    return MachineIdentity(hostname=host, token=data['token'])


def rotate_machine_identity(home: str, hostname: Optional[str] = None) -> MachineIdentity:
    """Revoke the current machine token and issue a new one.

    Revoked tokens are remembered so they are never issued again.

    Args:
        home: gitatlas configuration directory
        hostname: Override for the detected hostname

    Returns:
        The new MachineIdentity
    """
    data = _read(home)
    revoked = list(data.get('revoked', []))
    if data.get('token'):
        revoked.append(data['token'])
    token = _new_token(set(revoked))
    _write(home, {'token': token, 'revoked': revoked})
    logger.info("Rotated machine identity")
    return MachineIdentity(hostname=hostname or socket.gethostname(), token=token)
