"""Identity resolution for cbtaro-stats.

Every counter is partitioned by an identity key derived from a Farcaster ID,
a wallet address, or the anonymous sentinel, in that order of priority.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

ANONYMOUS_KEY = "anonymous"


@dataclass(frozen=True)
class Identity:
    fid: int | None = None
    wallet: str | None = None

    @property
    def key(self) -> str:
        return identity_key(self.fid, self.wallet)

    @property
    def normalized_wallet(self) -> str | None:
        return self.wallet.strip().lower() if self.wallet and self.wallet.strip() else None


ANONYMOUS = Identity()


def identity_key(fid: int | None, wallet: str | None = None) -> str:
    """Return 'fid:<n>', 'wallet:<address>' or 'anonymous'."""
    if fid:
        return f"fid:{int(fid)}"
    if wallet and wallet.strip():
        return f"wallet:{wallet.strip().lower()}"
    return ANONYMOUS_KEY


class IdentityProvider(Protocol):
    def resolve(self) -> Identity:
        """Return the identity of the current user (ANONYMOUS if unknown)."""
        ...


class StaticIdentityProvider:
    """Identity fixed at construction, e.g. from config or CLI flags."""

    def __init__(self, fid: int | None = None, wallet: str | None = None) -> None:
        self.identity = Identity(fid=fid, wallet=wallet)

    def resolve(self) -> Identity:
        return self.identity


class MutableIdentityProvider:
    """Identity that can change mid-session (anonymous -> Farcaster ID)."""

    def __init__(self, identity: Identity = ANONYMOUS) -> None:
        self._identity = identity

    def set(self, identity: Identity) -> None:
        self._identity = identity

    def resolve(self) -> Identity:
        return self._identity
