"""
In-memory terrain host - a headless implementation of every sink the
generation pipeline talks to.

The pipeline never owns terrain storage.  It writes heights, weights,
prototypes and instances through the methods below and reads interpolated
height, steepness and surface normals back.  Any object exposing the same
methods can stand in for InMemoryTerrain (an engine binding, a file writer,
a test double).

Sampling methods take normalised (u, v) coordinates in [0, 1] as floats or
numpy arrays and return matching floats or arrays.  Bilinear sampling goes
through scipy.ndimage.map_coordinates.

Usage:
    from terrain_modeler.terrain import InMemoryTerrain, InMemoryInstantiator

    terrain = InMemoryTerrain()
    instantiator = InMemoryInstantiator()
    result = generate_terrain(profile, terrain, instantiator)
    terrain.get_heights()         # (res, res) float64, normalised
"""

import logging

import numpy as np
from scipy.ndimage import map_coordinates

log = logging.getLogger(__name__)


# ===================================================================
# Terrain
# ===================================================================

class InMemoryTerrain:
    """
    Terrain data held in numpy arrays.

    Heights are stored normalised to [0, 1]; world height is
    ``normalised * size[1]``.  Normals and steepness are derived from the
    committed heights and cached until the next set_heights() call.
    """

    def __init__(self, heightmap_resolution=33, size=(2000.0, 600.0, 2000.0),
                 alphamap_resolution=32, detail_resolution=32,
                 detail_resolution_per_patch=16, position=(0.0, 0.0, 0.0)):
        """
        Args:
            heightmap_resolution: Height samples per side.
            size:                 World extents (x, y, z).
            alphamap_resolution:  Weight-map cells per side.
            detail_resolution:    Detail-layer cells per side.
            detail_resolution_per_patch: Detail patch size (stored only).
            position:             World origin of the terrain.
        """
        self.position = tuple(float(p) for p in position)
        self.flush_count = 0
        self.configure(heightmap_resolution, size, alphamap_resolution,
                       detail_resolution, detail_resolution_per_patch)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def configure(self, heightmap_resolution, size, alphamap_resolution,
                  detail_resolution, detail_resolution_per_patch=16):
        """
        Resize storage and drop everything a previous run registered.

        Heights, texture layers, alphamaps, tree and detail prototypes,
        detail layers and tree instances are all cleared.
        """
        self.heightmap_resolution = max(int(heightmap_resolution), 1)
        self.size = tuple(float(s) for s in size)
        self.alphamap_resolution = max(int(alphamap_resolution), 1)
        self.detail_resolution = max(int(detail_resolution), 1)
        self.detail_resolution_per_patch = int(detail_resolution_per_patch)
        self._heights = np.zeros((self.heightmap_resolution,
                                  self.heightmap_resolution), dtype=np.float64)
        self.terrain_layers = []
        self.alphamaps = None
        self.tree_prototypes = []
        self.detail_prototypes = []
        self.detail_layers = {}
        self.tree_instances = []
        self._normals = None

    def get_normalized_size(self):
        """World extents (x, y, z)."""
        return self.size

    # ------------------------------------------------------------------
    # Height sink
    # ------------------------------------------------------------------

    def set_heights(self, x_base, z_base, heights):
        """
        Write a block of normalised heights with its corner at (x_base, z_base).

        The block is clipped to the heightmap and its values to [0, 1].
        """
        heights = np.asarray(heights, dtype=np.float64)
        rows, cols = heights.shape
        res = self.heightmap_resolution
        rows = min(rows, res - z_base)
        cols = min(cols, res - x_base)
        if rows <= 0 or cols <= 0:
            log.warning("set_heights block at (%d, %d) lies outside the "
                        "%dx%d heightmap", x_base, z_base, res, res)
            return
        self._heights[z_base:z_base + rows, x_base:x_base + cols] = \
            np.clip(heights[:rows, :cols], 0.0, 1.0)
        self._normals = None

    def get_heights(self):
        """Copy of the normalised height grid, indexed [z, x]."""
        return self._heights.copy()

    def _grid_coords(self, u, v, resolution):
        scale = float(max(resolution - 1, 0))
        rows = np.clip(np.asarray(v, dtype=np.float64), 0.0, 1.0) * scale
        cols = np.clip(np.asarray(u, dtype=np.float64), 0.0, 1.0) * scale
        return rows, cols

    def _bilinear(self, grid, u, v):
        scalar = np.ndim(u) == 0 and np.ndim(v) == 0
        rows, cols = self._grid_coords(u, v, grid.shape[0])
        rows, cols = np.broadcast_arrays(rows, cols)
        coords = np.array([rows.ravel(), cols.ravel()])
        values = map_coordinates(grid, coords, order=1, mode='nearest')
        values = values.reshape(rows.shape)
        if scalar:
            return float(values)
        return values

    def get_interpolated_height(self, u, v):
        """Bilinear height in world units at normalised (u, v)."""
        return self._bilinear(self._heights, u, v) * self.size[1]

    def _vertex_normals(self):
        if self._normals is not None:
            return self._normals
        res = self.heightmap_resolution
        normals = np.zeros((res, res, 3), dtype=np.float64)
        normals[:, :, 1] = 1.0
        if res >= 2:
            world = self._heights * self.size[1]
            spacing_x = self.size[0] / (res - 1)
            spacing_z = self.size[2] / (res - 1)
            d_dz, d_dx = np.gradient(world, spacing_z, spacing_x)
            normals[:, :, 0] = -d_dx
            normals[:, :, 2] = -d_dz
            length = np.linalg.norm(normals, axis=2, keepdims=True)
            normals /= length
        self._normals = normals
        return normals

    def get_interpolated_normal(self, u, v):
        """
        Unit surface normal at (u, v).

        Returns an (x, y, z) tuple for scalar input, otherwise an array with
        a trailing axis of length 3.
        """
        scalar = np.ndim(u) == 0 and np.ndim(v) == 0
        normals = self._vertex_normals()
        components = [np.asarray(self._bilinear(normals[:, :, axis], u, v))
                      for axis in range(3)]
        stacked = np.stack(components, axis=-1)
        length = np.linalg.norm(stacked, axis=-1, keepdims=True)
        stacked = stacked / np.where(length > 0.0, length, 1.0)
        if scalar:
            return tuple(float(c) for c in stacked)
        return stacked

    def get_steepness(self, u, v):
        """Angle in degrees between the surface normal at (u, v) and up."""
        scalar = np.ndim(u) == 0 and np.ndim(v) == 0
        normal = np.asarray(self.get_interpolated_normal(u, v))
        angle = np.degrees(np.arccos(np.clip(normal[..., 1], -1.0, 1.0)))
        if scalar:
            return float(angle)
        return angle

    # ------------------------------------------------------------------
    # Weight sink
    # ------------------------------------------------------------------

    def set_terrain_layers(self, layers):
        self.terrain_layers = list(layers)

    def set_alphamaps(self, x_base, y_base, alphamaps):
        """Store the weight grid (layers must match set_terrain_layers)."""
        alphamaps = np.asarray(alphamaps, dtype=np.float64)
        if alphamaps.ndim != 3 or alphamaps.shape[2] != len(self.terrain_layers):
            raise ValueError(
                "Alphamap layer count {} does not match {} terrain layers".format(
                    alphamaps.shape[-1] if alphamaps.ndim else 0,
                    len(self.terrain_layers)))
        if self.alphamaps is None or self.alphamaps.shape[2] != alphamaps.shape[2]:
            res = self.alphamap_resolution
            self.alphamaps = np.zeros((res, res, alphamaps.shape[2]),
                                      dtype=np.float64)
        rows = min(alphamaps.shape[0], self.alphamaps.shape[0] - y_base)
        cols = min(alphamaps.shape[1], self.alphamaps.shape[1] - x_base)
        self.alphamaps[y_base:y_base + rows, x_base:x_base + cols, :] = \
            alphamaps[:rows, :cols, :]

    # ------------------------------------------------------------------
    # Prototype and instance sinks
    # ------------------------------------------------------------------

    def set_tree_prototypes(self, prototypes):
        self.tree_prototypes = list(prototypes)

    @property
    def tree_prototype_count(self):
        return len(self.tree_prototypes)

    def set_detail_prototypes(self, prototypes):
        self.detail_prototypes = list(prototypes)
        self.detail_layers = {}

    @property
    def detail_prototype_count(self):
        return len(self.detail_prototypes)

    def set_detail_layer(self, x_base, y_base, layer_index, grid):
        """Store one detail layer's occupancy grid."""
        if not 0 <= layer_index < len(self.detail_prototypes):
            raise IndexError("Detail layer {} out of range ({} prototypes)".format(
                layer_index, len(self.detail_prototypes)))
        res = self.detail_resolution
        layer = self.detail_layers.get(layer_index)
        if layer is None:
            layer = np.zeros((res, res), dtype=np.int32)
            self.detail_layers[layer_index] = layer
        grid = np.asarray(grid, dtype=np.int32)
        rows = min(grid.shape[0], res - y_base)
        cols = min(grid.shape[1], res - x_base)
        layer[y_base:y_base + rows, x_base:x_base + cols] = grid[:rows, :cols]

    def set_tree_instances(self, instances):
        self.tree_instances = list(instances)

    def flush(self):
        self.flush_count += 1


# ===================================================================
# Object instantiator
# ===================================================================

class PlacedObject:
    """Handle returned by InMemoryInstantiator.place()."""

    def __init__(self, prefab, position, rotation, scale, parent):
        self.prefab = prefab
        self.position = tuple(position)
        self.rotation = tuple(rotation)
        self.scale = scale
        self.parent = parent

    def __repr__(self):
        return "PlacedObject({!r}, position=({:.2f}, {:.2f}, {:.2f}))".format(
            self.prefab, *self.position)

    def to_dict(self):
        return {
            'prefab': self.prefab,
            'position': list(self.position),
            'rotation': list(self.rotation),
            'scale': self.scale,
            'parent': self.parent,
        }


class InMemoryInstantiator:
    """Scene stand-in: tracks placed objects per parent container."""

    def __init__(self):
        self.children = {}

    def place(self, prefab, position, rotation, scale, parent):
        """Instantiate *prefab* under *parent* and return its handle."""
        obj = PlacedObject(prefab, position, rotation, scale, parent)
        self.children.setdefault(parent, []).append(obj)
        return obj

    def clear_children(self, parent):
        """Remove every object previously placed under *parent*."""
        removed = len(self.children.get(parent, []))
        self.children[parent] = []
        if removed:
            log.debug("Cleared %d objects under %r", removed, parent)
        return removed

    def objects(self, parent):
        return list(self.children.get(parent, []))
