"""
Heightfield Synthesizer - builds the normalised height grid for a profile.

Pipeline per cell (order is fixed, reordering changes the output):
    1. base height + sum of every enabled noise layer
    2. island falloff (optional)
    3. geological modifier
    4. clamp to [0, 1]

The grid is evaluated with numpy in one pass over normalised (u, v)
coordinates; the result is a fresh (resolution, resolution) float64 array
indexed [z, x], never a view into host storage.

Usage:
    from terrain_modeler.heightfield import synthesize

    heights = synthesize(profile, 513)
"""

import logging
import math
from enum import Enum

import numpy as np

from .noise import fractal_noise, perlin
from .rng import RngStream

log = logging.getLogger(__name__)


# Range of the two global coordinate offsets drawn from the seed.
GLOBAL_OFFSET_RANGE = 10000.0

_SQRT2 = math.sqrt(2.0)


# ===================================================================
# Helpers
# ===================================================================

def clamp01(value):
    """Clamp a float or array to [0, 1]."""
    return np.clip(value, 0.0, 1.0)


def smooth_step(start, end, t):
    """
    Hermite interpolation from *start* to *end* by *t* (clamped to [0, 1]).

    Note the argument roles: this interpolates between two values, it does
    not map *t* through an edge pair.
    """
    t = clamp01(t)
    t = -2.0 * t * t * t + 3.0 * t * t
    return end * t + start * (1.0 - t)


def _norm_grid(resolution):
    """
    Return (u, v) broadcast-ready arrays in [0, 1].

    u varies along columns (x), v along rows (z).  A resolution of 1 maps
    the single sample to (0, 0).
    """
    denom = float(max(resolution - 1, 1))
    u = np.arange(resolution, dtype=np.float64).reshape(1, -1) / denom
    v = np.arange(resolution, dtype=np.float64).reshape(-1, 1) / denom
    return u, v


# ===================================================================
# Falloff Curve
# ===================================================================

class FalloffCurve:
    """
    Keyframed curve evaluated with cubic Hermite segments.

    Keys are (time, value, in_tangent, out_tangent).  Outside the key range
    the curve holds its first/last value; an empty curve evaluates to 1.
    """

    def __init__(self, keys=None):
        keys = keys or []
        cleaned = []
        for key in keys:
            key = tuple(float(k) for k in key)
            if len(key) == 2:
                key = key + (0.0, 0.0)
            cleaned.append(key[:4])
        self.keys = tuple(sorted(cleaned, key=lambda k: k[0]))

    @classmethod
    def ease_in_out(cls, time_start=0.0, value_start=1.0,
                    time_end=1.0, value_end=0.0):
        """Two keys with flat tangents (smooth S-shaped transition)."""
        return cls([(time_start, value_start, 0.0, 0.0),
                    (time_end, value_end, 0.0, 0.0)])

    @classmethod
    def linear(cls, time_start=0.0, value_start=1.0,
               time_end=1.0, value_end=0.0):
        """Two keys joined by a straight line."""
        dt = time_end - time_start
        slope = (value_end - value_start) / dt if dt != 0 else 0.0
        return cls([(time_start, value_start, slope, slope),
                    (time_end, value_end, slope, slope)])

    def __eq__(self, other):
        return isinstance(other, FalloffCurve) and self.keys == other.keys

    def __repr__(self):
        return "FalloffCurve({!r})".format(list(self.keys))

    def to_list(self):
        """Keys as JSON-friendly lists."""
        return [list(k) for k in self.keys]

    def evaluate(self, t):
        """Evaluate the curve at *t* (float or numpy array)."""
        scalar = np.ndim(t) == 0
        t = np.asarray(t, dtype=np.float64)

        if not self.keys:
            result = np.ones_like(t)
        elif len(self.keys) == 1:
            result = np.full_like(t, self.keys[0][1])
        else:
            keys = np.array(self.keys, dtype=np.float64)
            times = keys[:, 0]
            tc = np.clip(t, times[0], times[-1])
            idx = np.searchsorted(times, tc, side='right') - 1
            idx = np.clip(idx, 0, len(times) - 2)

            t0 = times[idx]
            t1 = times[idx + 1]
            dt = t1 - t0
            safe_dt = np.where(dt > 0.0, dt, 1.0)
            s = np.where(dt > 0.0, (tc - t0) / safe_dt, 0.0)

            v0 = keys[idx, 1]
            v1 = keys[idx + 1, 1]
            m0 = keys[idx, 3] * dt
            m1 = keys[idx + 1, 2] * dt

            s2 = s * s
            s3 = s2 * s
            result = ((2.0 * s3 - 3.0 * s2 + 1.0) * v0 +
                      (s3 - 2.0 * s2 + s) * m0 +
                      (-2.0 * s3 + 3.0 * s2) * v1 +
                      (s3 - s2) * m1)

        if scalar:
            return float(result)
        return result


def evaluate_falloff(curve, strength, u, v):
    """
    Island falloff factor for normalised coordinates (u, v).

    Maps (u, v) to [-1, 1] centred coordinates, takes the radial distance
    normalised by sqrt(2), evaluates *curve* there and raises the result to
    *strength*.  The factor is clamped to [0, 1].
    """
    nx = np.multiply(u, 2.0) - 1.0
    nz = np.multiply(v, 2.0) - 1.0
    distance = np.sqrt(nx * nx + nz * nz) / _SQRT2
    falloff = np.maximum(curve.evaluate(distance), 0.0)
    with np.errstate(divide='ignore', invalid='ignore'):
        shaped = np.power(falloff, float(strength))
    return clamp01(np.nan_to_num(shaped, nan=0.0, posinf=1.0))


# ===================================================================
# Geological Modifiers
# ===================================================================

class GeologicalType(Enum):
    """Geology-specific height post-processing, applied before clamping."""
    NONE = "none"
    VOLCANIC = "volcanic"
    SEDIMENTARY = "sedimentary"
    GRANITE = "granite"
    KARST = "karst"
    CANYON = "canyon"
    ARCHIPELAGO = "archipelago"

    def apply(self, height, u, v):
        """
        Modify *height* at normalised coordinates (u, v).

        Works on floats or broadcastable numpy arrays.
        """
        if self is GeologicalType.VOLCANIC:
            distance = np.sqrt((u - 0.5) ** 2 + (v - 0.5) ** 2)
            peak = clamp01(1.0 - distance * 1.8)
            crater = smooth_step(0.2, 0.8, distance * 2.2)
            return height + peak * 0.25 - crater * 0.15

        if self is GeologicalType.SEDIMENTARY:
            steps = 8.0
            return np.round(height * steps) / steps

        if self is GeologicalType.GRANITE:
            return np.power(np.maximum(height, 0.0), 0.85)

        if self is GeologicalType.KARST:
            sinkholes = perlin(np.multiply(u, 6.0), np.multiply(v, 6.0))
            return height - sinkholes * 0.15

        if self is GeologicalType.CANYON:
            canyon = perlin(np.multiply(u, 3.0), np.multiply(v, 3.0))
            return height + (height * canyon - height) * 0.6

        if self is GeologicalType.ARCHIPELAGO:
            islands = perlin(np.multiply(u, 4.0), np.multiply(v, 4.0))
            return height * (0.4 + (1.0 - 0.4) * islands)

        return height

    @classmethod
    def parse(cls, value):
        """Resolve a member from a member, name or value string (None -> NONE)."""
        if value is None:
            return cls.NONE
        if isinstance(value, cls):
            return value
        key = str(value).strip().upper()
        if key in cls.__members__:
            return cls.__members__[key]
        raise ValueError("Unknown geological type: {!r}".format(value))


# ===================================================================
# Synthesis
# ===================================================================

def draw_global_offsets(seed):
    """
    Draw the (offset_x, offset_z) coordinate shift for a seed.

    Both values come from a fresh stream, X first, before any per-cell noise.
    """
    rng = RngStream(seed)
    offset_x = rng.next_float() * GLOBAL_OFFSET_RANGE
    offset_z = rng.next_float() * GLOBAL_OFFSET_RANGE
    return offset_x, offset_z


def synthesize(profile, resolution=None):
    """
    Build the full height grid for *profile*.

    Args:
        profile:    GenerationProfile (read only).
        resolution: Grid side length.  Defaults to the profile's
                    heightmap_resolution.

    Returns:
        2D numpy float64 array (resolution x resolution), values in [0, 1],
        indexed [z, x].
    """
    if resolution is None:
        resolution = profile.heightmap_resolution
    resolution = int(resolution)
    if resolution <= 0:
        log.warning("Heightmap resolution %d is empty, nothing to synthesize",
                    resolution)
        return np.zeros((0, 0), dtype=np.float64)

    size_x, _size_y, size_z = profile.terrain_size
    offset_x, offset_z = draw_global_offsets(profile.seed)
    u, v = _norm_grid(resolution)

    height = np.full((resolution, resolution), float(profile.base_height),
                     dtype=np.float64)

    for layer in profile.noise_layers:
        if not layer.enabled:
            continue
        layer_offset_x, layer_offset_y = layer.offset
        sample_x = (u + layer_offset_x) * size_x * layer.frequency + offset_x
        sample_z = (v + layer_offset_y) * size_z * layer.frequency + offset_z
        height = height + fractal_noise(sample_x, sample_z, layer) * layer.amplitude

    if profile.use_falloff:
        height = height * evaluate_falloff(profile.island_falloff,
                                           profile.falloff_strength, u, v)

    geology = GeologicalType.parse(profile.geological_type)
    height = geology.apply(height, u, v)
    height = np.broadcast_to(height, (resolution, resolution))

    log.debug("Synthesized %dx%d heightmap (geology=%s, falloff=%s)",
              resolution, resolution, geology.value, profile.use_falloff)

    return np.array(clamp01(np.nan_to_num(height, nan=0.0)), dtype=np.float64)
