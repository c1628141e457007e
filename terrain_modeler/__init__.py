"""
Terrain Modeler - Procedural terrain synthesis from declarative profiles

Builds a normalised heightmap from layered fractal noise, island falloff and
geology modifiers, blends texture weights from height and slope bands, and
scatters trees, detail cover and prefabs with seeded rejection sampling.

The pipeline writes into a terrain host through a small set of sink methods;
InMemoryTerrain implements them headless so runs can be exported to PNG and
JSON with build_terrain().
"""

import logging

from .noise import PerlinNoise, NoiseType, perlin, fractal_noise
from .rng import RngStream
from .heightfield import (FalloffCurve, GeologicalType, synthesize,
                          evaluate_falloff)
from .settings import (BiomeType, NoiseLayer, TerrainLayerProfile,
                       ScatterProfile, TreePrototypeProfile, TreeScatterProfile,
                       DetailPrototypeProfile, GenerationProfile,
                       apply_biome_defaults, validate_profile, load_profile,
                       save_profile, profile_from_dict, profile_to_dict)
from .weights import blend_weights
from .scatter import (PlacementRecord, TreeScatterEngine, DetailScatterEngine,
                      PrefabScatterEngine)
from .terrain import InMemoryTerrain, InMemoryInstantiator
from .generator import TerrainModeler, GenerationResult, generate_terrain

log = logging.getLogger(__name__)


def build_terrain(profile, output_dir, apply_biome=True):
    """
    High-level API: generate a profile on an in-memory host and export it.

    Args:
        profile:     GenerationProfile, or a path to a JSON profile.
        output_dir:  Directory for the PNG and JSON output.
        apply_biome: Apply the biome preset before generating.

    Returns:
        dict, or None when no profile was given: {
            'result': GenerationResult,
            'files': dict of filenames written,
            'output_dir': str,
        }
    """
    from .exporter import export_result

    if profile is None:
        log.warning("No generation profile given, nothing to generate")
        return None
    if isinstance(profile, str):
        profile = load_profile(profile)

    terrain = InMemoryTerrain()
    instantiator = InMemoryInstantiator()
    result = generate_terrain(profile, terrain, instantiator,
                              apply_biome=apply_biome)

    files = export_result(result, output_dir, profile_to_dict(result.profile))
    return {
        'result': result,
        'files': files,
        'output_dir': output_dir,
    }
