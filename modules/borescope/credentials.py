"""Admin password file and the capability it unlocks.

The data store itself never checks a password.  Destructive and exporting
operations take an :class:`AdminCapability`, which only this module hands
out after a successful :meth:`CredentialStore.verify`.
"""
from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from utils.filesystem import ensure_parent
from utils.timefmt import now_utc_iso

from .exceptions import PermissionDenied, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_PASSWORD = "1234"
MIN_PASSWORD_LENGTH = 3

_ISSUER = object()


@dataclass(frozen=True, slots=True)
class AdminCapability:
    """Proof that the operator entered the admin password."""

    issued_at: str
    _token: object = field(default=None, repr=False, compare=False)

    @property
    def genuine(self) -> bool:
        return self._token is _ISSUER


def require_capability(capability: Optional[AdminCapability]) -> None:
    if not isinstance(capability, AdminCapability) or not capability.genuine:
        raise PermissionDenied("Incorrect Password")


class CredentialStore:
    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def current_password(self) -> str:
        if not self.path.exists():
            ensure_parent(self.path)
            self.path.write_text(DEFAULT_PASSWORD, encoding="utf-8")
            return DEFAULT_PASSWORD
        return self.path.read_text(encoding="utf-8").strip() or DEFAULT_PASSWORD

    def verify(self, password: object) -> Optional[AdminCapability]:
        """Return a capability when ``password`` matches, else ``None``."""
        candidate = str(password or "")
        if not hmac.compare_digest(candidate.encode("utf-8"), self.current_password().encode("utf-8")):
            logger.warning("Admin password verification failed")
            return None
        return AdminCapability(issued_at=now_utc_iso(), _token=_ISSUER)

    def change_password(self, current: object, new: object) -> bool:
        if self.verify(current) is None:
            return False
        new_text = str(new or "")
        if len(new_text) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"New password must be at least {MIN_PASSWORD_LENGTH} characters."
            )
        ensure_parent(self.path)
        self.path.write_text(new_text, encoding="utf-8")
        logger.info("Admin password changed")
        return True


__all__ = [
    "AdminCapability",
    "CredentialStore",
    "DEFAULT_PASSWORD",
    "MIN_PASSWORD_LENGTH",
    "require_capability",
]
