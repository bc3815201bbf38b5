"""
Instance Identity Sources

Entropy used for deployment salts and test account keys. Components take an
identity source instead of reaching for process-wide randomness, so a test
can pin every salt and key with a seed.
"""

import random
import secrets


SALT_SIZE = 32


class IdentitySource:
    """Source of collision-resistant identifiers"""

    def random_bytes(self, size: int) -> bytes:
        raise NotImplementedError

    def salt(self) -> bytes:
        """Fresh deployment salt"""
        return self.random_bytes(SALT_SIZE)

    def private_key(self) -> bytes:
        """Fresh secp256k1 private key"""
        # zero is not a valid key; the curve order bound is practically never hit
        while True:
            key = self.random_bytes(32)
            if any(key):
                return key


class SystemIdentitySource(IdentitySource):
    """OS entropy, the default"""

    def random_bytes(self, size: int) -> bytes:
        return secrets.token_bytes(size)


class SeededIdentitySource(IdentitySource):
    """
    Deterministic source for reproducible scenarios

    Two sources built with the same seed yield the same sequence of salts
    and keys, which makes address collisions reproducible on purpose.
    """

    def __init__(self, seed: int):
        self.seed = seed
        self._rng = random.Random(seed)

    def random_bytes(self, size: int) -> bytes:
        return self._rng.randbytes(size)


def default_identity_source() -> IdentitySource:
    return SystemIdentitySource()
