"""Quota rationing across a pool of character-billed credentials.

WHY: Character-billed translation providers give every credential a
small quota (e.g. 10,000 characters per day on a free Papago app). A
live session burns through one credential quickly, so the relay keeps
a fixed pool and moves on to the next credential when the current one
is spent.

HOW: CredentialRotator keeps a current index into an ordered list of
CredentialSlot objects. next() prefers the current slot while it is
under its limit, otherwise scans round-robin from the slot after it.
When every populated slot is spent, all counters are reset to zero;
the local counters are an estimate of the remote quota, not the source
of truth, so starting over is the best available guess.

RULES:
- A slot is usable only when identity and secret are both non-empty
  and characters_used < limit
- next() never raises for a non-empty pool; with no populated slot it
  returns slot 0 and the caller handles the missing credential
- next() on an empty pool raises MissingCredentialError
- record_usage() is the only way counters go up; negative counts are
  rejected so a counter can never go down outside a full reset
- The rotator is owned by one process-wide context and passed by
  reference; it is not a module global
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

from caption_relay.config import MissingCredentialError

logger = logging.getLogger(__name__)


@dataclass
class CredentialSlot:
    """One quota-limited credential.

    RULES:
    - identity: public half of the credential (client id)
    - secret: private half (client secret)
    - characters_used: characters billed since the last pool reset
    - limit: characters allowed before the slot is considered spent
    """

    identity: str
    secret: str
    characters_used: int = 0
    limit: int = 10_000

    @property
    def populated(self) -> bool:
        return bool(self.identity) and bool(self.secret)

    @property
    def exhausted(self) -> bool:
        return self.characters_used >= self.limit

    @property
    def usable(self) -> bool:
        return self.populated and not self.exhausted

    def __repr__(self) -> str:
        # Never print the secret
        return "CredentialSlot(identity={!r}, characters_used={}, limit={})".format(
            self.identity, self.characters_used, self.limit
        )


class CredentialRotator:
    """Round-robin selector over a fixed credential pool.

    WHY: Keeps character-billed traffic under per-credential limits
    without any remote quota API.

    HOW: See module docstring. The pool list is shared by reference, so
    counters recorded through the rotator are visible to whoever built
    the pool.

    RULES:
    - current_index always points at the last slot handed out
    - Full-pool reset zeroes every slot, populated or not
    """

    def __init__(self, slots: List[CredentialSlot]) -> None:
        self._slots = slots
        self._current = 0

    @property
    def slots(self) -> List[CredentialSlot]:
        return self._slots

    @property
    def current_index(self) -> int:
        return self._current

    def next(self) -> CredentialSlot:
        """Return the slot to use for the next character-billed call.

        RULES:
        - Current slot wins while usable
        - Otherwise first usable slot after the current one (wrapping)
          becomes current
        - All populated slots spent → reset all counters, return the
          first populated slot
        - No populated slot at all → return slot 0
        """
        if not self._slots:
            raise MissingCredentialError(
                "Credential pool is empty. Add PAPAGO_CREDENTIALS to the .env file."
            )

        count = len(self._slots)
        if self._slots[self._current].usable:
            return self._slots[self._current]

        for step in range(1, count):
            index = (self._current + step) % count
            if self._slots[index].usable:
                logger.info(
                    "Rotating credential %d -> %d", self._current, index
                )
                self._current = index
                return self._slots[index]

        first_populated = next(
            (i for i, slot in enumerate(self._slots) if slot.populated), None
        )
        if first_populated is None:
            logger.warning("No credential in the pool has both identity and secret")
            self._current = 0
            return self._slots[0]

        logger.warning(
            "All %d credentials reached their limit; resetting usage counters",
            count,
        )
        self.reset()
        self._current = first_populated
        return self._slots[first_populated]

    def record_usage(self, slot: CredentialSlot, characters: int) -> None:
        """Add billed characters to a slot after a successful call."""
        if characters < 0:
            raise ValueError("characters must be >= 0, got {}".format(characters))
        slot.characters_used += characters

    def reset(self) -> None:
        for slot in self._slots:
            slot.characters_used = 0
