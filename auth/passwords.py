"""
auth/passwords.py -- Password hashing (bcrypt, used directly).

Bcrypt is the right choice for low-entropy secrets because its cost factor
makes brute force expensive. The work factor is a constructor argument so
production runs at 12 rounds while the test suite runs at the bcrypt minimum.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

Hashing is CPU-bound and synchronous. Callers are plain `def` route handlers
and dependencies, which FastAPI runs on its worker thread pool, so a slow hash
never stalls the event loop.

Layer rule: no imports from api/, mail/ or core/.
"""

from __future__ import annotations

import bcrypt

_DEFAULT_ROUNDS = 12


class PasswordHasher:
    def __init__(self, rounds: int = _DEFAULT_ROUNDS) -> None:
        self.rounds = rounds
        # Timing equalization dummy hash [C1]. Computed once so the first
        # failed login is not measurably slower than later ones.
        self._dummy_hash = self.hash("tourbook_timing_dummy")

    def hash(self, plain: str) -> str:
        """Return a salted bcrypt hash of the given plaintext password.

        Recent bcrypt releases reject inputs longer than 72 bytes;
        validate_new_password() enforces that limit before we get here.
        """
        salt = bcrypt.gensalt(rounds=self.rounds)
        return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if the plaintext password matches the bcrypt hash.

        A malformed stored hash, or a plaintext bcrypt refuses to process,
        counts as a mismatch.
        """
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            return False

    def dummy_verify(self, plain: str) -> None:
        """Spend one verification's worth of CPU without a real record [C1].

        Call this when the looked-up user does not exist, so the response time
        does not reveal whether an email is registered.
        """
        self.verify(plain, self._dummy_hash)
