"""
Generation profile - the declarative settings consumed by the pipeline.

A GenerationProfile and its nested records are plain value objects: the
pipeline only reads them, and ``replace()`` returns modified copies instead
of mutating in place.  Profiles are usually authored as JSON and loaded via
``load_profile()``, which validates the document before building records.

JSON layout (all keys optional, defaults below)::

    {
        "heightmap_resolution": 1025,
        "alphamap_resolution": 512,
        "detail_resolution": 1024,
        "detail_resolution_per_patch": 16,
        "terrain_size": [2000, 600, 2000],
        "water_level": 0.32,
        "seed": 12345,
        "use_falloff": true,
        "island_falloff": [[0, 1, 0, 0], [1, 0, 0, 0]],
        "falloff_strength": 1.15,
        "base_height": 0.1,
        "biome": "temperate",
        "geological_type": "volcanic",
        "noise_layers": [NoiseLayer, ...],
        "terrain_layers": [TerrainLayerProfile, ...],
        "scatter_profiles": [ScatterProfile, ...],
        "tree_prototypes": [TreePrototypeProfile, ...],
        "tree_scatter_profiles": [TreeScatterProfile, ...],
        "detail_prototypes": [DetailPrototypeProfile, ...]
    }

Asset references (textures, prefabs) are opaque handles, usually strings;
a null handle marks a missing reference that the pipeline skips.
"""

import json
import logging
import math
import os
from enum import Enum

from .heightfield import FalloffCurve, GeologicalType
from .noise import NoiseType

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_HEIGHTMAP_RESOLUTION = 1025
DEFAULT_ALPHAMAP_RESOLUTION = 512
DEFAULT_DETAIL_RESOLUTION = 1024
DEFAULT_DETAIL_RESOLUTION_PER_PATCH = 16
DEFAULT_TERRAIN_SIZE = (2000.0, 600.0, 2000.0)
DEFAULT_WATER_LEVEL = 0.32
DEFAULT_SEED = 12345
DEFAULT_FALLOFF_STRENGTH = 1.15
DEFAULT_BASE_HEIGHT = 0.1


class BiomeType(Enum):
    """Climate preset that tunes base height and falloff strength."""
    TEMPERATE = "temperate"
    TUNDRA = "tundra"
    DESERT = "desert"
    TROPICAL = "tropical"
    ALPINE = "alpine"
    MEDITERRANEAN = "mediterranean"

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        key = str(value).strip().upper()
        if key in cls.__members__:
            return cls.__members__[key]
        raise ValueError("Unknown biome: {!r}".format(value))


# biome -> (base_height, falloff_strength)
BIOME_DEFAULTS = {
    BiomeType.TEMPERATE: (0.1, 1.15),
    BiomeType.TUNDRA: (0.08, 1.4),
    BiomeType.DESERT: (0.05, 1.25),
    BiomeType.TROPICAL: (0.15, 1.1),
    BiomeType.ALPINE: (0.18, 1.2),
    BiomeType.MEDITERRANEAN: (0.12, 1.15),
}


# ===================================================================
# Record base
# ===================================================================

class _Record:
    """
    Keyword-constructed value object.

    Subclasses list their fields in ``_FIELDS`` as (name, default) pairs.
    Lists are stored as tuples so a shared default is never aliased.
    """

    _FIELDS = ()

    def __init__(self, **kwargs):
        names = set()
        for name, default in self._FIELDS:
            names.add(name)
            value = kwargs.pop(name, default)
            if isinstance(value, list):
                value = tuple(value)
            object.__setattr__(self, name, value)
        if kwargs:
            raise TypeError("{} got unexpected field(s): {}".format(
                type(self).__name__, ", ".join(sorted(kwargs))))

    def __setattr__(self, name, value):
        raise AttributeError("{} is read-only; use replace()".format(
            type(self).__name__))

    __hash__ = None

    def replace(self, **changes):
        """Return a copy with *changes* applied."""
        values = dict((name, getattr(self, name)) for name, _ in self._FIELDS)
        values.update(changes)
        return type(self)(**values)

    def __eq__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return all(getattr(self, n) == getattr(other, n) for n, _ in self._FIELDS)

    def __ne__(self, other):
        result = self.__eq__(other)
        if result is NotImplemented:
            return result
        return not result

    def __repr__(self):
        name = getattr(self, 'name', None)
        if name is not None:
            return "{}({!r})".format(type(self).__name__, name)
        return "{}()".format(type(self).__name__)

    def to_dict(self):
        """Serialise to JSON-friendly primitives."""
        data = {}
        for name, _ in self._FIELDS:
            data[name] = _to_primitive(getattr(self, name))
        return data


def _to_primitive(value):
    if isinstance(value, Enum):
        return value.name.lower()
    if isinstance(value, FalloffCurve):
        return value.to_list()
    if isinstance(value, _Record):
        return value.to_dict()
    if isinstance(value, tuple):
        return [_to_primitive(v) for v in value]
    return value


# ===================================================================
# Profile records
# ===================================================================

class NoiseLayer(_Record):
    """One fractal noise contribution to the heightfield."""
    _FIELDS = (
        ('name', 'Layer'),
        ('enabled', True),
        ('noise_type', NoiseType.PERLIN),
        ('amplitude', 1.0),
        ('frequency', 0.0015),
        ('octaves', 4),
        ('persistence', 0.5),
        ('lacunarity', 2.0),
        ('offset', (0.0, 0.0)),
    )


class TerrainLayerProfile(_Record):
    """Height/slope band that paints one texture layer."""
    _FIELDS = (
        ('name', 'Layer'),
        ('terrain_layer', None),
        ('min_height', 0.0),
        ('max_height', 1.0),
        ('min_slope', 0.0),
        ('max_slope', 45.0),
        ('noise_scale', 0.1),
        ('noise_strength', 0.2),
        ('weight', 1.0),
    )


class ScatterProfile(_Record):
    """Free-form prefab scatter over the terrain surface."""
    _FIELDS = (
        ('name', 'Scatter'),
        ('prefabs', ()),
        ('seed_offset', 0),
        ('density', 0.001),
        ('min_height', 0.0),
        ('max_height', 1.0),
        ('min_slope', 0.0),
        ('max_slope', 35.0),
        ('scale_range', (0.8, 1.2)),
        ('align_to_normal', True),
        # Carried for parity with authored profiles; placement ignores it.
        ('max_normal_deviation', 15.0),
    )


class TreePrototypeProfile(_Record):
    _FIELDS = (
        ('name', 'Tree'),
        ('prefab', None),
        ('bend_factor', 0.2),
    )


class TreeScatterProfile(_Record):
    """Tree instance scatter for one registered tree prototype."""
    _FIELDS = (
        ('name', 'Tree Scatter'),
        ('tree_prototype_index', 0),
        ('density', 0.001),
        ('min_height', 0.0),
        ('max_height', 1.0),
        ('min_slope', 0.0),
        ('max_slope', 35.0),
        ('scale_range', (0.8, 1.4)),
        ('random_yaw', 360.0),
    )


class DetailPrototypeProfile(_Record):
    """
    Ground-cover detail layer.

    min/max width and height size the rendered prototype; min/max height
    ratio gates placement by normalised terrain height.
    """
    _FIELDS = (
        ('name', 'Detail'),
        ('prefab', None),
        ('texture', None),
        ('min_width', 0.5),
        ('max_width', 1.2),
        ('min_height', 0.5),
        ('max_height', 1.5),
        ('healthy_color', (1.0, 1.0, 1.0, 1.0)),
        ('dry_color', (0.8, 0.75, 0.65, 1.0)),
        ('noise_spread', 0.5),
        ('density', 0.35),
        ('min_height_ratio', 0.0),
        ('max_height_ratio', 1.0),
        ('min_slope', 0.0),
        ('max_slope', 35.0),
    )


def default_noise_layers():
    """The two-layer stack used when a profile does not define its own."""
    return (
        NoiseLayer(name='Primary', noise_type=NoiseType.PERLIN, amplitude=1.0,
                   frequency=0.0015, octaves=4, persistence=0.55,
                   lacunarity=2.0),
        NoiseLayer(name='Detail', noise_type=NoiseType.RIDGED, amplitude=0.25,
                   frequency=0.01, octaves=3, persistence=0.45,
                   lacunarity=2.2),
    )


class GenerationProfile(_Record):
    """Complete configuration for one generation run."""
    _FIELDS = (
        ('heightmap_resolution', DEFAULT_HEIGHTMAP_RESOLUTION),
        ('alphamap_resolution', DEFAULT_ALPHAMAP_RESOLUTION),
        ('detail_resolution', DEFAULT_DETAIL_RESOLUTION),
        ('detail_resolution_per_patch', DEFAULT_DETAIL_RESOLUTION_PER_PATCH),
        ('terrain_size', DEFAULT_TERRAIN_SIZE),
        ('water_level', DEFAULT_WATER_LEVEL),
        ('seed', DEFAULT_SEED),
        ('use_falloff', True),
        ('island_falloff', None),
        ('falloff_strength', DEFAULT_FALLOFF_STRENGTH),
        ('base_height', DEFAULT_BASE_HEIGHT),
        ('biome', BiomeType.TEMPERATE),
        ('geological_type', GeologicalType.VOLCANIC),
        ('noise_layers', None),
        ('terrain_layers', ()),
        ('scatter_profiles', ()),
        ('tree_prototypes', ()),
        ('tree_scatter_profiles', ()),
        ('detail_prototypes', ()),
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if self.island_falloff is None:
            object.__setattr__(self, 'island_falloff', FalloffCurve.ease_in_out())
        elif not isinstance(self.island_falloff, FalloffCurve):
            object.__setattr__(self, 'island_falloff',
                               FalloffCurve(self.island_falloff))
        if self.noise_layers is None:
            object.__setattr__(self, 'noise_layers', default_noise_layers())

    def __repr__(self):
        return "GenerationProfile(seed={}, resolution={}, geology={})".format(
            self.seed, self.heightmap_resolution,
            GeologicalType.parse(self.geological_type).name.lower())


def apply_biome_defaults(profile):
    """
    Return a copy of *profile* with the biome's base height and falloff.

    Unknown or missing biomes fall back to the temperate preset.
    """
    try:
        biome = BiomeType.parse(profile.biome)
    except ValueError:
        biome = BiomeType.TEMPERATE
    base_height, falloff_strength = BIOME_DEFAULTS[biome]
    return profile.replace(base_height=base_height,
                           falloff_strength=falloff_strength)


# ===================================================================
# Validation
# ===================================================================

_LIST_SECTIONS = (
    ('noise_layers', NoiseLayer),
    ('terrain_layers', TerrainLayerProfile),
    ('scatter_profiles', ScatterProfile),
    ('tree_prototypes', TreePrototypeProfile),
    ('tree_scatter_profiles', TreeScatterProfile),
    ('detail_prototypes', DetailPrototypeProfile),
)


def _is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_vector(errors, where, value, length):
    if (not isinstance(value, (list, tuple)) or len(value) != length
            or not all(_is_number(v) for v in value)):
        errors.append("{} must be a list of {} numbers".format(where, length))


def _check_enum(errors, where, value, enum_cls):
    try:
        enum_cls.parse(value)
    except ValueError:
        errors.append("{} has unknown value '{}'".format(where, value))


def validate_profile(data):
    """
    Validate a profile dict (as loaded from JSON).

    Returns a list of error strings.  An empty list means the profile is
    valid.

    Constraints:
        - resolutions are integers >= 1
        - terrain_size is three numbers
        - noise layer octaves are integers >= 0
        - noise layer frequency/lacunarity are finite and non-negative
        - enum fields name a known member
        - unknown keys are rejected
    """
    errors = []

    if not isinstance(data, dict):
        return ["profile must be a JSON object"]

    known = set(name for name, _ in GenerationProfile._FIELDS)
    for key in data:
        if key not in known:
            errors.append("Unknown profile field: {}".format(key))

    for key in ('heightmap_resolution', 'alphamap_resolution',
                'detail_resolution', 'detail_resolution_per_patch'):
        if key in data:
            value = data[key]
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                errors.append("{} must be an integer >= 1".format(key))

    if 'terrain_size' in data:
        _check_vector(errors, 'terrain_size', data['terrain_size'], 3)

    for key in ('water_level', 'falloff_strength', 'base_height'):
        if key in data and not _is_number(data[key]):
            errors.append("{} must be a number".format(key))

    if 'seed' in data and (not isinstance(data['seed'], int)
                           or isinstance(data['seed'], bool)):
        errors.append("seed must be an integer")

    if 'biome' in data:
        _check_enum(errors, 'biome', data['biome'], BiomeType)
    if 'geological_type' in data:
        _check_enum(errors, 'geological_type', data['geological_type'],
                    GeologicalType)

    if 'island_falloff' in data and data['island_falloff'] is not None:
        keys = data['island_falloff']
        if not isinstance(keys, list):
            errors.append("island_falloff must be a list of keys")
        else:
            for i, key in enumerate(keys):
                if (not isinstance(key, (list, tuple)) or len(key) not in (2, 4)
                        or not all(_is_number(k) for k in key)):
                    errors.append(
                        "island_falloff[{}] must be [time, value] or "
                        "[time, value, in_tangent, out_tangent]".format(i))

    for section, record_cls in _LIST_SECTIONS:
        if section not in data or data[section] is None:
            continue
        entries = data[section]
        if not isinstance(entries, list):
            errors.append("{} must be a list".format(section))
            continue
        fields = set(name for name, _ in record_cls._FIELDS)
        for i, entry in enumerate(entries):
            where = "{}[{}]".format(section, i)
            if not isinstance(entry, dict):
                errors.append("{} must be a dict".format(where))
                continue
            for key in entry:
                if key not in fields:
                    errors.append("{} has unknown field '{}'".format(where, key))
            _validate_entry(errors, where, section, entry)

    return errors


def _validate_entry(errors, where, section, entry):
    """Section-specific checks for one list entry."""
    if section == 'noise_layers':
        octaves = entry.get('octaves', 4)
        if not isinstance(octaves, int) or isinstance(octaves, bool) or octaves < 0:
            errors.append("{}.octaves must be an integer >= 0".format(where))
        for key in ('frequency', 'lacunarity'):
            value = entry.get(key, 1.0)
            if not _is_number(value) or not math.isfinite(value) or value < 0:
                errors.append("{}.{} must be a finite number >= 0".format(
                    where, key))
        if 'noise_type' in entry:
            _check_enum(errors, where + '.noise_type', entry['noise_type'],
                        NoiseType)
        if 'offset' in entry:
            _check_vector(errors, where + '.offset', entry['offset'], 2)

    if 'scale_range' in entry:
        _check_vector(errors, where + '.scale_range', entry['scale_range'], 2)

    if section == 'scatter_profiles' and 'prefabs' in entry:
        if not isinstance(entry['prefabs'], list):
            errors.append("{}.prefabs must be a list".format(where))

    if section == 'tree_scatter_profiles':
        index = entry.get('tree_prototype_index', 0)
        if not isinstance(index, int) or isinstance(index, bool):
            errors.append("{}.tree_prototype_index must be an integer".format(
                where))

    if section == 'detail_prototypes':
        for key in ('healthy_color', 'dry_color'):
            if key in entry and not (
                    isinstance(entry[key], list) and len(entry[key]) in (3, 4)
                    and all(_is_number(c) for c in entry[key])):
                errors.append("{}.{} must be a list of 3 or 4 numbers".format(
                    where, key))


# ===================================================================
# Conversion
# ===================================================================

def _record_from_dict(record_cls, entry):
    values = dict(entry)
    if record_cls is NoiseLayer and 'noise_type' in values:
        values['noise_type'] = NoiseType.parse(values['noise_type'])
    for key in ('offset', 'scale_range', 'healthy_color', 'dry_color', 'prefabs'):
        if key in values and values[key] is not None:
            values[key] = tuple(values[key])
    if 'dry_color' in values and len(values['dry_color']) == 3:
        values['dry_color'] = values['dry_color'] + (1.0,)
    if 'healthy_color' in values and len(values['healthy_color']) == 3:
        values['healthy_color'] = values['healthy_color'] + (1.0,)
    return record_cls(**values)


def profile_from_dict(data):
    """
    Build a GenerationProfile from a JSON-style dict.

    Raises:
        ValueError: If validate_profile() reports any error.  The message
            lists every problem found.
    """
    errors = validate_profile(data)
    if errors:
        raise ValueError("Invalid generation profile:\n  " + "\n  ".join(errors))

    values = {}
    for name, _ in GenerationProfile._FIELDS:
        if name in data:
            values[name] = data[name]

    if 'terrain_size' in values:
        values['terrain_size'] = tuple(float(v) for v in values['terrain_size'])
    if 'biome' in values:
        values['biome'] = BiomeType.parse(values['biome'])
    if 'geological_type' in values:
        values['geological_type'] = GeologicalType.parse(values['geological_type'])
    if values.get('island_falloff') is not None:
        values['island_falloff'] = FalloffCurve(values['island_falloff'])

    for section, record_cls in _LIST_SECTIONS:
        if values.get(section) is not None:
            values[section] = tuple(_record_from_dict(record_cls, e)
                                    for e in values[section])

    return GenerationProfile(**values)


def create_profile_template(biome=BiomeType.TEMPERATE,
                            geological_type=GeologicalType.VOLCANIC, seed=None):
    """
    Build a starter profile with a typical layer stack.

    Four texture bands (sand, grass, rock, snow), one tree prototype and
    scatter, a grass detail layer and a rock prefab scatter.  Asset handles
    are placeholder names for the host to resolve.

    Args:
        biome:           BiomeType or name.
        geological_type: GeologicalType or name.
        seed:            Optional seed (default DEFAULT_SEED).

    Returns:
        GenerationProfile
    """
    return GenerationProfile(
        seed=DEFAULT_SEED if seed is None else int(seed),
        biome=BiomeType.parse(biome),
        geological_type=GeologicalType.parse(geological_type),
        terrain_layers=[
            TerrainLayerProfile(name='Sand', terrain_layer='sand',
                                min_height=0.0, max_height=0.36,
                                min_slope=0.0, max_slope=30.0),
            TerrainLayerProfile(name='Grass', terrain_layer='grass',
                                min_height=0.3, max_height=0.7,
                                min_slope=0.0, max_slope=30.0),
            TerrainLayerProfile(name='Rock', terrain_layer='rock',
                                min_height=0.0, max_height=1.0,
                                min_slope=25.0, max_slope=90.0,
                                weight=0.8),
            TerrainLayerProfile(name='Snow', terrain_layer='snow',
                                min_height=0.75, max_height=1.0,
                                min_slope=0.0, max_slope=40.0),
        ],
        tree_prototypes=[
            TreePrototypeProfile(name='Pine', prefab='pine'),
        ],
        tree_scatter_profiles=[
            TreeScatterProfile(name='Forest', tree_prototype_index=0,
                               density=0.0008, min_height=0.35,
                               max_height=0.7, max_slope=30.0),
        ],
        detail_prototypes=[
            DetailPrototypeProfile(name='Grass', texture='grass_blades',
                                   min_height_ratio=0.34,
                                   max_height_ratio=0.7),
        ],
        scatter_profiles=[
            ScatterProfile(name='Boulders', prefabs=['boulder_a', 'boulder_b'],
                           seed_offset=7, density=0.0002, min_height=0.35,
                           max_height=0.9, max_slope=45.0),
        ],
    )


def profile_to_dict(profile):
    """Serialise a GenerationProfile to a JSON-friendly dict."""
    return profile.to_dict()


def load_profile(filepath):
    """
    Load and validate a profile from a JSON file.

    Args:
        filepath: Path to the JSON file.

    Returns:
        GenerationProfile
    """
    with open(filepath, 'r', encoding='utf-8') as f:
        data = json.load(f)
    profile = profile_from_dict(data)
    log.debug("Loaded profile from %s (seed=%d)", filepath, profile.seed)
    return profile


def save_profile(filepath, profile, indent=2):
    """Write *profile* as JSON, creating parent directories as needed."""
    parent = os.path.dirname(filepath)
    if parent and not os.path.exists(parent):
        os.makedirs(parent)
    with open(filepath, 'w', encoding='utf-8') as f:
        json.dump(profile_to_dict(profile), f, indent=indent)
