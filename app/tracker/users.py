"""The two fixed household identities."""

from __future__ import annotations

from enum import Enum


class UserIdentity(str, Enum):
    jiiji = "jiiji"
    baaba = "baaba"

    @property
    def label(self) -> str:
        """Display label, also the value stored in the ``"user"`` column."""
        return _LABELS[self]

    @classmethod
    def parse(cls, value: str) -> UserIdentity | None:
        """Accept the internal key or the stored label. None if neither."""
        try:
            return cls(value)
        except ValueError:
            pass
        for user, label in _LABELS.items():
            if label == value:
                return user
        return None


_LABELS: dict[UserIdentity, str] = {
    UserIdentity.jiiji: "じぃじ",
    UserIdentity.baaba: "ばぁば",
}

USERS: tuple[UserIdentity, ...] = (UserIdentity.jiiji, UserIdentity.baaba)
