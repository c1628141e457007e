"""
Generation Orchestrator - runs the full terrain pipeline against a host.

Stage order is fixed because later stages query the host for data written
by earlier ones:

    configure -> heights -> texture weights -> tree/detail prototypes
    -> detail layers -> tree instances -> prefab instances -> flush

Weight blending and every scatter stage sample height, steepness and
normals from the host, so heights must be committed first.

Usage:
    from terrain_modeler import generate_terrain, load_profile
    from terrain_modeler.terrain import InMemoryTerrain, InMemoryInstantiator

    result = generate_terrain(load_profile('island.json'),
                              InMemoryTerrain(), InMemoryInstantiator())
    result.heights          # (res, res) float64
    result.tree_records     # [PlacementRecord, ...]
"""

import logging

import numpy as np

from .heightfield import synthesize
from .scatter import (DetailScatterEngine, PrefabScatterEngine,
                      TreeScatterEngine, sample_surface)
from .settings import apply_biome_defaults
from .weights import blend_weights

log = logging.getLogger(__name__)

# Default parent container for scattered prefabs.
SCATTER_CONTAINER = 'Terrain Modeler Scatter'


class GenerationResult:
    """
    Everything one run produced, in the order it was committed.

    Attributes:
        profile:        The effective profile (after biome defaults).
        heights:        Height grid (res x res), normalised.
        weights:        Weight grid (res x res x layers) or None when no
                        texture layer was applied.
        terrain_layers: Texture handles in weight-channel order.
        tree_records:   Tree PlacementRecords.
        detail_layers:  One np.int32 occupancy grid per detail prototype.
        prefab_records: Prefab PlacementRecords.
        diagnostics:    Messages for every skipped reference.
    """

    def __init__(self, profile, heights):
        self.profile = profile
        self.heights = heights
        self.weights = None
        self.terrain_layers = []
        self.tree_records = []
        self.detail_layers = []
        self.prefab_records = []
        self.diagnostics = []

    def __repr__(self):
        return ("GenerationResult(resolution={}, layers={}, trees={}, "
                "details={}, prefabs={})".format(
                    self.heights.shape[0], len(self.terrain_layers),
                    len(self.tree_records), len(self.detail_layers),
                    len(self.prefab_records)))

    def summary(self):
        """Counts suitable for logging or a JSON report."""
        return {
            'heightmap_resolution': int(self.heights.shape[0]),
            'height_min': float(self.heights.min()) if self.heights.size else 0.0,
            'height_max': float(self.heights.max()) if self.heights.size else 0.0,
            'terrain_layers': len(self.terrain_layers),
            'tree_instances': len(self.tree_records),
            'detail_cells': [int(layer.sum()) for layer in self.detail_layers],
            'prefab_instances': len(self.prefab_records),
            'diagnostics': list(self.diagnostics),
        }


class TerrainModeler:
    """
    Main facade for one generation run.

    Each stage is a public method so callers can re-run a single stage
    against a host that already holds the earlier stages' output.
    """

    def __init__(self, profile, terrain, instantiator=None, parent=None,
                 apply_biome=True):
        """
        Args:
            profile:      GenerationProfile.  Never mutated.
            terrain:      Terrain host implementing the sink methods.
            instantiator: Object instantiator for prefab scatter, or None
                          to skip prefab placement.
            parent:       Container handle prefabs are placed under.
            apply_biome:  Replace base height and falloff strength with the
                          biome preset before generating.
        """
        if apply_biome:
            profile = apply_biome_defaults(profile)
        self.profile = profile
        self.terrain = terrain
        self.instantiator = instantiator
        self.parent = SCATTER_CONTAINER if parent is None else parent
        self.diagnostics = []

    def _warn(self, message, *args):
        text = message % args
        log.warning(text)
        self.diagnostics.append(text)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def configure_terrain(self):
        p = self.profile
        self.terrain.configure(p.heightmap_resolution, p.terrain_size,
                               p.alphamap_resolution, p.detail_resolution,
                               p.detail_resolution_per_patch)

    def generate_heightmap(self):
        """Synthesize heights into a fresh grid and commit it in one write."""
        heights = synthesize(self.profile, self.profile.heightmap_resolution)
        self.terrain.set_heights(0, 0, heights)
        return heights

    def apply_terrain_layers(self):
        """
        Blend texture weights from committed heights and write them.

        Returns:
            tuple (texture handles, weight grid), or ([], None) when no
            profile references a texture.
        """
        layer_profiles = self.profile.terrain_layers
        if not layer_profiles:
            return [], None

        def height_sampler(u, v):
            return sample_surface(self.terrain, u, v)[0]

        profiles, weights = blend_weights(height_sampler,
                                          self.terrain.get_steepness,
                                          layer_profiles,
                                          self.profile.alphamap_resolution)
        for profile in layer_profiles:
            if profile.terrain_layer is None:
                self.diagnostics.append(
                    "Terrain layer profile '{}' has no texture".format(profile.name))
        if not profiles:
            return [], None

        textures = [profile.terrain_layer for profile in profiles]
        self.terrain.set_terrain_layers(textures)
        self.terrain.set_alphamaps(0, 0, weights)
        return textures, weights

    def apply_tree_prototypes(self):
        """Register tree prototypes that reference a prefab."""
        if not self.profile.tree_prototypes:
            return []
        prototypes = []
        for tree in self.profile.tree_prototypes:
            if tree.prefab is None:
                self._warn("Tree prototype '%s' has no prefab, skipping",
                           tree.name)
                continue
            prototypes.append({
                'prefab': tree.prefab,
                'bend_factor': tree.bend_factor,
            })
        self.terrain.set_tree_prototypes(prototypes)
        return prototypes

    def apply_detail_prototypes(self):
        """Register detail prototypes and write one occupancy layer each."""
        if not self.profile.detail_prototypes:
            return []
        prototypes = []
        for detail in self.profile.detail_prototypes:
            has_mesh = detail.prefab is not None
            prototypes.append({
                'name': detail.name,
                'prefab': detail.prefab,
                'texture': detail.texture,
                'min_width': detail.min_width,
                'max_width': detail.max_width,
                'min_height': detail.min_height,
                'max_height': detail.max_height,
                'healthy_color': detail.healthy_color,
                'dry_color': detail.dry_color,
                'noise_spread': detail.noise_spread,
                'use_prototype_mesh': has_mesh,
                'render_mode': 'vertex_lit' if has_mesh else 'grass',
            })
        self.terrain.set_detail_prototypes(prototypes)

        engine = DetailScatterEngine(self.profile, self.terrain,
                                     self.profile.detail_resolution)
        layers = engine.scatter_all()
        for layer_index, layer in enumerate(layers):
            self.terrain.set_detail_layer(0, 0, layer_index, layer)
        return layers

    def scatter_trees(self):
        engine = TreeScatterEngine(self.profile, self.terrain,
                                   self.profile.heightmap_resolution)
        records = engine.scatter_all()
        self.diagnostics.extend(engine.diagnostics)
        self.terrain.set_tree_instances([r.to_tree_instance() for r in records])
        return records

    def scatter_prefabs(self):
        """Place prefab records through the instantiator."""
        if not self.profile.scatter_profiles:
            return []
        if self.instantiator is None:
            log.info("No instantiator given, skipping prefab scatter")
            return []

        self.instantiator.clear_children(self.parent)
        engine = PrefabScatterEngine(self.profile, self.terrain,
                                     self.profile.heightmap_resolution)
        records = engine.scatter_all()
        self.diagnostics.extend(engine.diagnostics)
        for record in records:
            self.instantiator.place(record.prefab, record.position,
                                    record.rotation, record.scale, self.parent)
        return records

    # ------------------------------------------------------------------
    # Full run
    # ------------------------------------------------------------------

    def generate(self):
        """
        Run every stage in order and flush the host.

        Returns:
            GenerationResult
        """
        p = self.profile
        log.info("Generating %dx%d terrain (seed=%d, biome=%s)",
                 p.heightmap_resolution, p.heightmap_resolution, p.seed,
                 getattr(p.biome, 'value', p.biome))

        self.configure_terrain()
        heights = self.generate_heightmap()
        result = GenerationResult(p, heights)

        result.terrain_layers, result.weights = self.apply_terrain_layers()
        self.apply_tree_prototypes()
        result.detail_layers = self.apply_detail_prototypes()
        result.tree_records = self.scatter_trees()
        result.prefab_records = self.scatter_prefabs()

        self.terrain.flush()
        result.diagnostics = list(self.diagnostics)

        log.info("Generated terrain: height %.3f..%.3f, %d layers, %d trees, "
                 "%d detail layers, %d prefabs",
                 float(np.min(heights)) if heights.size else 0.0,
                 float(np.max(heights)) if heights.size else 0.0,
                 len(result.terrain_layers), len(result.tree_records),
                 len(result.detail_layers), len(result.prefab_records))
        return result


def generate_terrain(profile, terrain, instantiator=None, parent=None,
                     apply_biome=True):
    """
    Generate terrain for *profile* on *terrain*.

    A missing profile or terrain is logged and the run is skipped without
    touching any host.

    Args:
        profile:      GenerationProfile or None.
        terrain:      Terrain host or None.
        instantiator: Optional object instantiator for prefab scatter.
        parent:       Container for placed prefabs.
        apply_biome:  Apply the biome preset to a copy of the profile.

    Returns:
        GenerationResult, or None when the run was skipped.
    """
    if profile is None:
        log.warning("No generation profile given, nothing to generate")
        return None
    if terrain is None:
        log.warning("No terrain assigned, nothing to generate")
        return None

    modeler = TerrainModeler(profile, terrain, instantiator, parent,
                             apply_biome)
    return modeler.generate()
