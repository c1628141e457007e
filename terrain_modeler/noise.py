"""
Noise Engine - gradient noise and fractal summation for terrain synthesis.

Provides a 2D Perlin noise primitive remapped to [0, 1], the per-layer
octave transforms (plain, ridged, billow) and the fractal sum used by the
heightfield synthesizer, the weight blender and the detail scatter.

All functions accept either Python floats or numpy arrays.  Array inputs are
evaluated element-wise with the exact same arithmetic as scalar inputs, so a
grid evaluated in one call matches the same grid evaluated cell by cell.

Usage:
    from terrain_modeler.noise import perlin, fractal_noise, NoiseType

    value = perlin(12.5, 3.25)                 # float in [0, 1]
    grid = fractal_noise(xs, zs, noise_layer)  # array in [0, 1]
"""

import math
from enum import Enum

import numpy as np


# ---------------------------------------------------------------------------
# Permutation table
# ---------------------------------------------------------------------------

# Reference permutation from Ken Perlin's improved noise.  The default
# primitive is unseeded; callers decorrelate by offsetting coordinates.
_REFERENCE_PERMUTATION = (
    151, 160, 137, 91, 90, 15, 131, 13, 201, 95, 96, 53, 194, 233, 7, 225,
    140, 36, 103, 30, 69, 142, 8, 99, 37, 240, 21, 10, 23, 190, 6, 148,
    247, 120, 234, 75, 0, 26, 197, 62, 94, 252, 219, 203, 117, 35, 11, 32,
    57, 177, 33, 88, 237, 149, 56, 87, 174, 20, 125, 136, 171, 168, 68, 175,
    74, 165, 71, 134, 139, 48, 27, 166, 77, 146, 158, 231, 83, 111, 229, 122,
    60, 211, 133, 230, 220, 105, 92, 41, 55, 46, 245, 40, 244, 102, 143, 54,
    65, 25, 63, 161, 1, 216, 80, 73, 209, 76, 132, 187, 208, 89, 18, 169,
    200, 196, 135, 130, 116, 188, 159, 86, 164, 100, 109, 198, 173, 186, 3, 64,
    52, 217, 226, 250, 124, 123, 5, 202, 38, 147, 118, 126, 255, 82, 85, 212,
    207, 206, 59, 227, 47, 16, 58, 17, 182, 189, 28, 42, 223, 183, 170, 213,
    119, 248, 152, 2, 44, 154, 163, 70, 221, 153, 101, 155, 167, 43, 172, 9,
    129, 22, 39, 253, 19, 98, 108, 110, 79, 113, 224, 232, 178, 185, 112, 104,
    218, 246, 97, 228, 251, 34, 242, 193, 238, 210, 144, 12, 191, 179, 162, 241,
    81, 51, 145, 235, 249, 14, 239, 107, 49, 192, 214, 31, 181, 199, 106, 157,
    184, 84, 204, 176, 115, 121, 50, 45, 127, 4, 150, 254, 138, 236, 205, 93,
    222, 114, 67, 29, 24, 72, 243, 141, 128, 195, 78, 66, 215, 61, 156, 180,
)

# Gradient vectors for 2D, indexed by the low three bits of the hash
_GRAD2_X = np.array([1, -1, 1, -1, 1, -1, 0, 0], dtype=np.float64)
_GRAD2_Y = np.array([1, 1, -1, -1, 0, 0, 1, -1], dtype=np.float64)


def _fade(t):
    "6t^5 - 15t^4 + 10t^3"
    return t * t * t * (t * (t * 6.0 - 15.0) + 10.0)


def _lerp(a, b, t):
    "Linear interpolation."
    return a + t * (b - a)


def _as_result(value, scalar):
    """Return a Python float for scalar inputs, the array otherwise."""
    if scalar:
        return float(value)
    return value


# ===================================================================
# Perlin Noise
# ===================================================================

class PerlinNoise:
    """
    2D Perlin gradient noise over the reference permutation table.

    The primitive is a fixed function of its coordinates; callers
    decorrelate fields by offsetting the coordinates they sample.
    """

    def __init__(self):
        self._perm = self._generate_permutation()

    @staticmethod
    def _generate_permutation():
        """Build the 512-entry permutation table (doubled for wrapping)."""
        p = list(_REFERENCE_PERMUTATION)
        return np.array(p + p, dtype=np.int64)

    def noise2d(self, x, y):
        """
        Evaluate raw 2D Perlin noise at (*x*, *y*).

        Returns a float (or array) in the approximate range [-1.0, 1.0].
        """
        scalar = np.ndim(x) == 0 and np.ndim(y) == 0
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        perm = self._perm

        x_floor = np.floor(x)
        y_floor = np.floor(y)
        xi = x_floor.astype(np.int64) & 255
        yi = y_floor.astype(np.int64) & 255
        xf = x - x_floor
        yf = y - y_floor

        u = _fade(xf)
        v = _fade(yf)

        a = perm[xi] + yi
        b = perm[xi + 1] + yi
        h00 = perm[a] & 7
        h01 = perm[a + 1] & 7
        h10 = perm[b] & 7
        h11 = perm[b + 1] & 7

        g00 = _GRAD2_X[h00] * xf + _GRAD2_Y[h00] * yf
        g10 = _GRAD2_X[h10] * (xf - 1.0) + _GRAD2_Y[h10] * yf
        g01 = _GRAD2_X[h01] * xf + _GRAD2_Y[h01] * (yf - 1.0)
        g11 = _GRAD2_X[h11] * (xf - 1.0) + _GRAD2_Y[h11] * (yf - 1.0)

        x1 = _lerp(g00, g10, u)
        x2 = _lerp(g01, g11, u)
        return _as_result(_lerp(x1, x2, v), scalar)

    def sample(self, x, y):
        """
        Evaluate noise remapped to [0, 1].

        Values are clamped, so the result never leaves the unit interval.
        """
        scalar = np.ndim(x) == 0 and np.ndim(y) == 0
        raw = self.noise2d(x, y)
        value = np.clip((np.asarray(raw) + 1.0) * 0.5, 0.0, 1.0)
        return _as_result(value, scalar)


_DEFAULT_NOISE = PerlinNoise()


def perlin(x, y):
    """Unseeded 2D Perlin noise in [0, 1] at (*x*, *y*)."""
    return _DEFAULT_NOISE.sample(x, y)


# ===================================================================
# Noise Types
# ===================================================================

class NoiseType(Enum):
    """Per-octave transform applied to each raw [0, 1] sample."""
    PERLIN = "perlin"
    PLAIN = "perlin"      # alias: untransformed noise
    RIDGED = "ridged"
    BILLOW = "billow"

    def transform(self, sample):
        """Fold a [0, 1] sample according to this noise type."""
        if self is NoiseType.RIDGED:
            return 1.0 - np.abs(sample * 2.0 - 1.0)
        if self is NoiseType.BILLOW:
            return np.abs(sample * 2.0 - 1.0)
        return sample

    @classmethod
    def parse(cls, value):
        """Resolve an enum member from a member, name or value string."""
        if isinstance(value, cls):
            return value
        key = str(value).strip().upper()
        if key in cls.__members__:
            return cls.__members__[key]
        raise ValueError("Unknown noise type: {!r}".format(value))


# ===================================================================
# Fractal Noise
# ===================================================================

def fractal_noise(x, z, layer):
    """
    Octave-summed fractal noise for one noise layer.

    Each octave samples the primitive at (x * frequency, z * frequency),
    passes the sample through the layer's transform and weights it by the
    running amplitude.  Frequency is multiplied by ``layer.lacunarity`` and
    amplitude by ``layer.persistence`` after every octave.  The sum is
    divided by the total amplitude used (whatever its sign), so the result
    stays comparable regardless of octave count.

    Args:
        x, z:  Sample coordinates (floats or numpy arrays).
        layer: Object with noise_type, octaves, persistence, lacunarity.

    Returns:
        float or ndarray -- 0 when the total amplitude is zero.
    """
    scalar = np.ndim(x) == 0 and np.ndim(z) == 0
    noise_type = NoiseType.parse(layer.noise_type)

    value = 0.0
    amplitude = 1.0
    frequency = 1.0
    max_value = 0.0

    for _ in range(max(int(layer.octaves), 0)):
        sample = _DEFAULT_NOISE.sample(np.multiply(x, frequency),
                                       np.multiply(z, frequency))
        value = value + noise_type.transform(sample) * amplitude
        max_value += amplitude
        amplitude *= layer.persistence
        frequency *= layer.lacunarity

    if max_value != 0.0 and math.isfinite(max_value):
        return _as_result(np.divide(value, max_value), scalar)

    if scalar:
        return 0.0
    return np.zeros(np.broadcast(np.asarray(x), np.asarray(z)).shape,
                    dtype=np.float64)
