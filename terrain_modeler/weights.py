"""
Weight Blender - per-cell texture blend weights (alphamaps).

For every alphamap cell each valid TerrainLayerProfile contributes

    clamp01(height_factor) * clamp01(slope_factor) * noise_factor * weight

where the height factor ramps up across [min_height, max_height], the slope
factor ramps *down* across [min_slope, max_slope] (steep terrain fades the
layer out) and the noise factor breaks up uniform bands.  Each cell's
weights are then divided by their total, so they either sum to exactly one
or, when no layer matched, all stay zero and the host picks a fallback.

Profiles without a texture handle are dropped before blending; they take
no channel in the output.
"""

import logging

import numpy as np

from .heightfield import _norm_grid, clamp01
from .noise import perlin

log = logging.getLogger(__name__)


def inverse_lerp(a, b, value):
    """
    Position of *value* between *a* and *b*, clamped to [0, 1].

    Equal bounds have no defined ratio and resolve to 0.
    """
    if a == b:
        return np.zeros_like(np.asarray(value, dtype=np.float64))
    return clamp01((np.asarray(value, dtype=np.float64) - a) / (b - a))


def lerp(a, b, t):
    """Linear interpolation with *t* clamped to [0, 1]."""
    return a + (b - a) * clamp01(t)


def valid_layer_profiles(layer_profiles):
    """Profiles that reference a texture layer, in their original order."""
    valid = []
    for profile in layer_profiles or ():
        if profile.terrain_layer is None:
            log.warning("Terrain layer profile '%s' has no texture, skipping",
                        profile.name)
            continue
        valid.append(profile)
    return valid


def layer_weight(profile, height, slope, u, v):
    """Un-normalised weight of one profile for arrays of samples."""
    height_factor = inverse_lerp(profile.min_height, profile.max_height, height)
    slope_factor = inverse_lerp(profile.max_slope, profile.min_slope, slope)
    noise = perlin(np.multiply(u, profile.noise_scale),
                   np.multiply(v, profile.noise_scale))
    noise_factor = lerp(1.0 - profile.noise_strength, 1.0, noise)
    weight = (clamp01(height_factor) * clamp01(slope_factor) *
              noise_factor * profile.weight)
    return np.maximum(weight, 0.0)


def blend_weights(height_sampler, slope_sampler, layer_profiles, resolution):
    """
    Compute the normalised weight grid for the alphamap.

    Args:
        height_sampler: Callable (u, v) -> normalised height; receives numpy
                        arrays and must return an array of the same shape.
        slope_sampler:  Callable (u, v) -> steepness in degrees.
        layer_profiles: Iterable of TerrainLayerProfile.
        resolution:     Alphamap side length.

    Returns:
        tuple (profiles, weights):
            profiles -- the profiles that took a channel, in channel order
            weights  -- float64 array (resolution, resolution, len(profiles))
                        indexed [y, x, layer]
    """
    profiles = valid_layer_profiles(layer_profiles)
    resolution = max(int(resolution), 0)
    weights = np.zeros((resolution, resolution, len(profiles)), dtype=np.float64)
    if not profiles or resolution == 0:
        return profiles, weights

    u, v = _norm_grid(resolution)
    u, v = np.broadcast_arrays(u, v)
    height = np.asarray(height_sampler(u, v), dtype=np.float64)
    slope = np.asarray(slope_sampler(u, v), dtype=np.float64)

    for layer_index, profile in enumerate(profiles):
        weights[:, :, layer_index] = layer_weight(profile, height, slope, u, v)

    total = weights.sum(axis=2, keepdims=True)
    np.divide(weights, total, out=weights, where=total > 0.0)

    painted = int(np.count_nonzero(total > 0.0))
    log.debug("Blended %d layers over %dx%d alphamap (%d/%d cells painted)",
              len(profiles), resolution, resolution, painted,
              resolution * resolution)
    return profiles, weights
