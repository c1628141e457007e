"""
Scatter Engine - deterministic placement of trees, detail cover and prefabs.

Three samplers share one rejection test (water level, height band, slope
band) and read heights, steepness and normals back from the terrain host, so
heights must already be committed before any of them run.

Tree and prefab scatter draw ``round(resolution^2 * density)`` candidate
points from a per-profile RngStream.  A rejected candidate is not retried;
the target count bounds the attempts, not the output.  Draw order per
accepted candidate is fixed:

    tree:    u, v, scale, yaw
    prefab:  u, v, prefab index, scale, yaw

Detail scatter is a deterministic pass over every cell of the detail grid
gated by Perlin noise.

Usage:
    from terrain_modeler.scatter import TreeScatterEngine

    engine = TreeScatterEngine(profile, terrain)
    records = engine.scatter_all()
"""

import logging
import math

import numpy as np

from .heightfield import _norm_grid
from .noise import perlin
from .rng import RngStream
from .weights import lerp

log = logging.getLogger(__name__)

# Salt multiplier separating the streams of successive tree scatter profiles.
TREE_SALT_STRIDE = 31

UP = (0.0, 1.0, 0.0)
IDENTITY = (0.0, 0.0, 0.0, 1.0)


# ===================================================================
# Rotation helpers (quaternions as (x, y, z, w))
# ===================================================================

def quaternion_multiply(a, b):
    """Hamilton product a * b (apply b first, then a)."""
    ax, ay, az, aw = a
    bx, by, bz, bw = b
    return (
        aw * bx + ax * bw + ay * bz - az * by,
        aw * by - ax * bz + ay * bw + az * bx,
        aw * bz + ax * by - ay * bx + az * bw,
        aw * bw - ax * bx - ay * by - az * bz,
    )


def angle_axis(degrees, axis=UP):
    """Rotation of *degrees* about a unit *axis*."""
    half = math.radians(degrees) * 0.5
    s = math.sin(half)
    return (axis[0] * s, axis[1] * s, axis[2] * s, math.cos(half))


def from_to_rotation(source, target):
    """Shortest-arc rotation taking direction *source* onto *target*."""
    sx, sy, sz = _normalize(source)
    tx, ty, tz = _normalize(target)
    dot = sx * tx + sy * ty + sz * tz

    if dot >= 1.0 - 1e-9:
        return IDENTITY
    if dot <= -1.0 + 1e-9:
        # Opposite directions: half turn about any perpendicular axis.
        axis = (1.0, 0.0, 0.0) if abs(sx) < 0.9 else (0.0, 0.0, 1.0)
        ax = sy * axis[2] - sz * axis[1]
        ay = sz * axis[0] - sx * axis[2]
        az = sx * axis[1] - sy * axis[0]
        ax, ay, az = _normalize((ax, ay, az))
        return (ax, ay, az, 0.0)

    cx = sy * tz - sz * ty
    cy = sz * tx - sx * tz
    cz = sx * ty - sy * tx
    x, y, z, w = cx, cy, cz, 1.0 + dot
    length = math.sqrt(x * x + y * y + z * z + w * w)
    return (x / length, y / length, z / length, w / length)


def _normalize(vector):
    x, y, z = (float(c) for c in vector)
    length = math.sqrt(x * x + y * y + z * z)
    if length == 0.0:
        return UP
    return (x / length, y / length, z / length)


# ===================================================================
# Placement records
# ===================================================================

class PlacementRecord:
    """
    One accepted scatter candidate.

    Attributes:
        u, v:      Normalised position on the terrain, in [0, 1).
        index:     Tree prototype index or prefab index within the profile.
        scale:     Uniform scale.
        yaw:       Yaw in radians.
        rotation:  Quaternion (x, y, z, w).
        height:    Normalised terrain height at (u, v).
        position:  World position (prefabs only).
        prefab:    Prefab handle (prefabs only).
    """

    def __init__(self, u, v, index, scale, yaw, rotation, height,
                 position=None, prefab=None, profile_index=0):
        self.u = u
        self.v = v
        self.index = index
        self.scale = scale
        self.yaw = yaw
        self.rotation = rotation
        self.height = height
        self.position = position
        self.prefab = prefab
        self.profile_index = profile_index

    def __repr__(self):
        return "PlacementRecord(index={}, u={:.4f}, v={:.4f}, scale={:.3f})".format(
            self.index, self.u, self.v, self.scale)

    def __eq__(self, other):
        if not isinstance(other, PlacementRecord):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    __hash__ = None

    def to_dict(self):
        data = {
            'u': self.u,
            'v': self.v,
            'index': self.index,
            'scale': self.scale,
            'yaw': self.yaw,
            'rotation': list(self.rotation),
            'height': self.height,
            'profile_index': self.profile_index,
        }
        if self.position is not None:
            data['position'] = list(self.position)
            data['prefab'] = self.prefab
        return data

    def to_tree_instance(self):
        """Tree instance dict in the layout the instance sink stores."""
        return {
            'position': (self.u, self.height, self.v),
            'prototype_index': self.index,
            'height_scale': self.scale,
            'width_scale': self.scale,
            'rotation': self.yaw,
        }


# ===================================================================
# Shared sampling
# ===================================================================

def target_count(resolution, density):
    """Number of candidate draws for a grid of *resolution* squared."""
    if not density > 0.0:
        return 0
    return max(int(round(resolution * resolution * density)), 0)


def placement_mask(height, slope, water_level, min_height, max_height,
                   min_slope, max_slope):
    """
    True where a sample survives the water, height and slope filters.

    Works on floats (returns a bool) or numpy arrays (returns a mask).
    """
    mask = ((np.asarray(height) >= water_level) &
            (np.asarray(height) >= min_height) &
            (np.asarray(height) <= max_height) &
            (np.asarray(slope) >= min_slope) &
            (np.asarray(slope) <= max_slope))
    if np.ndim(mask) == 0:
        return bool(mask)
    return mask


def sample_surface(terrain, u, v):
    """Return (normalised height, steepness in degrees) at (u, v)."""
    size_y = terrain.size[1]
    world = terrain.get_interpolated_height(u, v)
    if size_y:
        height = np.divide(world, size_y)
    else:
        height = np.zeros_like(np.asarray(world, dtype=np.float64))
    slope = terrain.get_steepness(u, v)
    if np.ndim(height) == 0:
        return float(height), float(slope)
    return height, slope


class _ScatterEngine:
    """Base for the samplers: holds the profile, the host and diagnostics."""

    def __init__(self, profile, terrain, resolution=None):
        """
        Args:
            profile:    GenerationProfile (read only).
            terrain:    Terrain host with heights already committed.
            resolution: Grid side used for the candidate count.  Defaults
                        to the host's heightmap resolution.
        """
        self.profile = profile
        self.terrain = terrain
        if resolution is None:
            resolution = getattr(terrain, 'heightmap_resolution',
                                 profile.heightmap_resolution)
        self.resolution = int(resolution)
        self.diagnostics = []
        # profile index -> random draws consumed by that profile's stream
        self.draws = {}

    def _skip(self, message, *args):
        text = message % args
        log.warning(text)
        self.diagnostics.append(text)

    def _accepts(self, height, slope, band):
        return placement_mask(height, slope, self.profile.water_level,
                              band.min_height, band.max_height,
                              band.min_slope, band.max_slope)


# ===================================================================
# Tree scatter
# ===================================================================

class TreeScatterEngine(_ScatterEngine):
    """Tree instances for every TreeScatterProfile, in profile order."""

    def scatter_all(self):
        """
        Returns:
            List of PlacementRecord, grouped by profile in profile order.
        """
        records = []
        for profile_index, scatter in enumerate(self.profile.tree_scatter_profiles):
            records.extend(self.scatter_profile(scatter, profile_index))
        log.debug("Scattered %d tree instances", len(records))
        return records

    def scatter_profile(self, scatter, profile_index):
        """Rejection-sample one tree scatter profile."""
        prototype_count = self.terrain.tree_prototype_count
        index = scatter.tree_prototype_index
        if not 0 <= index < prototype_count:
            self._skip("Tree scatter '%s' references prototype %d but only "
                       "%d are registered, skipping",
                       scatter.name, index, prototype_count)
            self.draws[profile_index] = 0
            return []

        rng = RngStream(self.profile.seed, profile_index * TREE_SALT_STRIDE)
        low, high = scatter.scale_range
        records = []

        for _ in range(target_count(self.resolution, scatter.density)):
            u = rng.next_float()
            v = rng.next_float()
            height, slope = sample_surface(self.terrain, u, v)
            if not self._accepts(height, slope, scatter):
                continue

            scale = lerp(low, high, rng.next_float())
            yaw_degrees = scatter.random_yaw * rng.next_float()
            records.append(PlacementRecord(
                u, v, index, float(scale), math.radians(yaw_degrees),
                angle_axis(yaw_degrees), height, profile_index=profile_index))

        self.draws[profile_index] = rng.draws
        log.debug("Tree scatter '%s': %d placed", scatter.name, len(records))
        return records


# ===================================================================
# Detail scatter
# ===================================================================

class DetailScatterEngine(_ScatterEngine):
    """Binary occupancy grids, one per detail prototype."""

    def __init__(self, profile, terrain, resolution=None):
        if resolution is None:
            resolution = getattr(terrain, 'detail_resolution',
                                 profile.detail_resolution)
        super().__init__(profile, terrain, resolution)

    def scatter_all(self):
        """
        Returns:
            List of np.int32 arrays (resolution x resolution) indexed [y, x],
            one per detail prototype in profile order.
        """
        prototypes = self.profile.detail_prototypes
        if not prototypes or self.resolution <= 0:
            return []

        u, v = _norm_grid(self.resolution)
        u, v = np.broadcast_arrays(u, v)
        height, slope = sample_surface(self.terrain, u, v)

        layers = []
        for detail in prototypes:
            layers.append(self.scatter_layer(detail, u, v, height, slope))
        return layers

    def scatter_layer(self, detail, u, v, height, slope):
        """Occupancy grid for one prototype from pre-sampled surface arrays."""
        mask = placement_mask(height, slope, self.profile.water_level,
                              detail.min_height_ratio, detail.max_height_ratio,
                              detail.min_slope, detail.max_slope)
        noise = perlin(u * detail.noise_spread, v * detail.noise_spread)
        layer = (mask & (noise < detail.density)).astype(np.int32)
        log.debug("Detail layer '%s': %d cells", detail.name,
                  int(layer.sum()))
        return layer


# ===================================================================
# Prefab scatter
# ===================================================================

class PrefabScatterEngine(_ScatterEngine):
    """Free-form prefab placement for every ScatterProfile."""

    def scatter_all(self):
        records = []
        for profile_index, scatter in enumerate(self.profile.scatter_profiles):
            records.extend(self.scatter_profile(scatter, profile_index))
        log.debug("Scattered %d prefabs", len(records))
        return records

    def scatter_profile(self, scatter, profile_index):
        """Rejection-sample one prefab scatter profile."""
        prefabs = scatter.prefabs or ()
        if not prefabs:
            self._skip("Scatter profile '%s' has no prefabs, skipping",
                       scatter.name)
            self.draws[profile_index] = 0
            return []

        rng = RngStream(self.profile.seed, scatter.seed_offset)
        low, high = scatter.scale_range
        origin = getattr(self.terrain, 'position', (0.0, 0.0, 0.0))
        size = self.terrain.size
        records = []
        missing = 0

        for _ in range(target_count(self.resolution, scatter.density)):
            u = rng.next_float()
            v = rng.next_float()
            height, slope = sample_surface(self.terrain, u, v)
            if not self._accepts(height, slope, scatter):
                continue

            prefab_index = rng.next_int(len(prefabs))
            prefab = prefabs[prefab_index]
            if prefab is None:
                missing += 1
                continue

            position = (u * size[0] + origin[0],
                        self.terrain.get_interpolated_height(u, v) + origin[1],
                        v * size[2] + origin[2])
            scale = lerp(low, high, rng.next_float())
            yaw_degrees = rng.next_float() * 360.0
            rotation = angle_axis(yaw_degrees)
            if scatter.align_to_normal:
                normal = self.terrain.get_interpolated_normal(u, v)
                rotation = quaternion_multiply(from_to_rotation(UP, normal),
                                               rotation)

            records.append(PlacementRecord(
                u, v, prefab_index, float(scale), math.radians(yaw_degrees),
                rotation, height, position=position, prefab=prefab,
                profile_index=profile_index))

        self.draws[profile_index] = rng.draws
        if missing:
            self._skip("Scatter profile '%s': %d candidates hit a missing "
                       "prefab", scatter.name, missing)
        log.debug("Prefab scatter '%s': %d placed", scatter.name, len(records))
        return records
