"""
Seeded random streams for the stochastic parts of the pipeline.

Every algorithm that draws random numbers owns exactly one RngStream,
constructed from the profile seed plus a per-context salt.  Streams are never
shared, so the sequence seen by one scatter profile does not depend on what
any other profile drew.

The generator is the Mersenne Twister from the standard library, which is
specified bit-for-bit and therefore reproducible across platforms.
"""

import random

# Seeds are folded into an unsigned 64-bit key: random.Random seeds by
# absolute value, which would otherwise collide seed and -seed.
_SEED_MASK = 0xFFFFFFFFFFFFFFFF


class RngStream:
    """
    Order-dependent pseudo-random sequence keyed by ``seed + salt``.

    The same seed, salt and draw order always yield the same values.
    ``draws`` counts every value handed out.
    """

    def __init__(self, seed, salt=0):
        """
        Args:
            seed: Profile seed (int).
            salt: Per-context offset added to the seed (int).
        """
        self.seed = int(seed)
        self.salt = int(salt)
        self._rng = random.Random((self.seed + self.salt) & _SEED_MASK)
        self.draws = 0

    def __repr__(self):
        return "RngStream(seed={}, salt={}, draws={})".format(
            self.seed, self.salt, self.draws)

    def next_float(self):
        """Uniform float in [0, 1)."""
        self.draws += 1
        return self._rng.random()

    def uniform(self, low, high):
        """Uniform float between *low* and *high* (one draw)."""
        return low + (high - low) * self.next_float()

    def next_int(self, upper):
        """
        Uniform integer in [0, *upper*) using exactly one draw.

        Returns 0 when *upper* is not positive.
        """
        value = self.next_float()
        if upper <= 0:
            return 0
        return min(int(value * upper), upper - 1)
