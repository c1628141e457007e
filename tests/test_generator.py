"""
Tests for the generation orchestrator, export and command-line front end.

Tests:
  Stage order against a recording host
  Skipped references and their diagnostics
  Biome presets applied to a copy
  Prefab re-runs, determinism
  build_terrain() export and tools/generate_terrain.py
"""

import importlib.util
import json
import os
import shutil
import sys
import tempfile
import traceback

import numpy as np

# Ensure the project root is on the path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from PIL import Image

from terrain_modeler import build_terrain
from terrain_modeler.generator import (SCATTER_CONTAINER, TerrainModeler,
                                       generate_terrain)
from terrain_modeler.settings import (BiomeType, ScatterProfile,
                                      TerrainLayerProfile, TreePrototypeProfile,
                                      TreeScatterProfile, create_profile_template,
                                      save_profile)
from terrain_modeler.terrain import InMemoryInstantiator, InMemoryTerrain


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_PASSED = 0
_FAILED = 0
_ERRORS = []

RES = 33


def _test(name, fn):
    """Run a test function, track pass/fail."""
    global _PASSED, _FAILED
    try:
        fn()
        _PASSED += 1
        print("  PASS  {}".format(name))
    except Exception as e:
        _FAILED += 1
        _ERRORS.append((name, e))
        print("  FAIL  {} -- {}".format(name, e))
        traceback.print_exc()


class RecordingTerrain(InMemoryTerrain):
    """In-memory host that records the order of sink calls."""

    def __init__(self, **kwargs):
        self.calls = []
        super().__init__(**kwargs)
        self.calls = []

    def configure(self, *args):
        self.calls.append('configure')
        super().configure(*args)

    def set_heights(self, *args):
        self.calls.append('set_heights')
        super().set_heights(*args)

    def set_terrain_layers(self, *args):
        self.calls.append('set_terrain_layers')
        super().set_terrain_layers(*args)

    def set_alphamaps(self, *args):
        self.calls.append('set_alphamaps')
        super().set_alphamaps(*args)

    def set_tree_prototypes(self, *args):
        self.calls.append('set_tree_prototypes')
        super().set_tree_prototypes(*args)

    def set_detail_prototypes(self, *args):
        self.calls.append('set_detail_prototypes')
        super().set_detail_prototypes(*args)

    def set_detail_layer(self, *args):
        self.calls.append('set_detail_layer')
        super().set_detail_layer(*args)

    def set_tree_instances(self, *args):
        self.calls.append('set_tree_instances')
        super().set_tree_instances(*args)

    def flush(self):
        self.calls.append('flush')
        super().flush()


def _small_profile(**kwargs):
    """The starter template at a resolution small enough for tests."""
    values = dict(heightmap_resolution=RES, alphamap_resolution=16,
                  detail_resolution=16, terrain_size=(400.0, 120.0, 400.0))
    values.update(kwargs)
    return create_profile_template(seed=3).replace(**values)


def _load_cli():
    path = os.path.join(PROJECT_ROOT, 'tools', 'generate_terrain.py')
    spec = importlib.util.spec_from_file_location('generate_terrain_cli', path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

def test_stage_order():
    terrain = RecordingTerrain()
    result = generate_terrain(_small_profile(), terrain, InMemoryInstantiator())
    assert result is not None
    assert terrain.calls == [
        'configure',
        'set_heights',
        'set_terrain_layers',
        'set_alphamaps',
        'set_tree_prototypes',
        'set_detail_prototypes',
        'set_detail_layer',
        'set_tree_instances',
        'flush',
    ], terrain.calls
    assert terrain.flush_count == 1


def test_host_receives_results():
    terrain = InMemoryTerrain()
    result = generate_terrain(_small_profile(), terrain)
    assert terrain.heightmap_resolution == RES
    assert terrain.size == (400.0, 120.0, 400.0)
    assert np.array_equal(terrain.get_heights(), result.heights)
    assert terrain.terrain_layers == ['sand', 'grass', 'rock', 'snow']
    assert result.terrain_layers == terrain.terrain_layers
    assert result.weights.shape == (16, 16, 4)
    assert np.array_equal(terrain.alphamaps, result.weights)
    totals = result.weights.sum(axis=2)
    assert np.all((np.abs(totals - 1.0) < 1e-5) | (totals == 0.0))
    assert terrain.tree_prototypes == [{'prefab': 'pine', 'bend_factor': 0.2}]
    assert len(result.detail_layers) == 1
    assert np.array_equal(terrain.detail_layers[0], result.detail_layers[0])
    detail = terrain.detail_prototypes[0]
    assert detail['texture'] == 'grass_blades'
    assert detail['use_prototype_mesh'] is False
    assert detail['render_mode'] == 'grass'


def test_missing_profile_or_terrain():
    terrain = RecordingTerrain()
    assert generate_terrain(None, terrain) is None
    assert terrain.calls == []
    assert generate_terrain(_small_profile(), None) is None


def test_no_layer_profiles_leave_weights_alone():
    terrain = RecordingTerrain()
    result = generate_terrain(_small_profile(terrain_layers=[]), terrain)
    assert 'set_terrain_layers' not in terrain.calls
    assert 'set_alphamaps' not in terrain.calls
    assert result.weights is None
    assert result.terrain_layers == []


def test_textureless_layers_are_reported():
    terrain = RecordingTerrain()
    profile = _small_profile(terrain_layers=[TerrainLayerProfile(name='Bare')])
    result = generate_terrain(profile, terrain)
    assert 'set_terrain_layers' not in terrain.calls
    assert any('Bare' in d for d in result.diagnostics), result.diagnostics


def test_biome_applied_to_copy():
    profile = _small_profile(biome=BiomeType.ALPINE, base_height=0.9,
                             falloff_strength=4.0)
    result = generate_terrain(profile, InMemoryTerrain())
    assert result.profile.base_height == 0.18
    assert result.profile.falloff_strength == 1.2
    assert profile.base_height == 0.9
    assert profile.falloff_strength == 4.0

    kept = generate_terrain(profile, InMemoryTerrain(), apply_biome=False)
    assert kept.profile.base_height == 0.9


def test_tree_prototype_without_prefab_skipped():
    profile = _small_profile(tree_prototypes=[
        TreePrototypeProfile(name='Ghost'),
        TreePrototypeProfile(name='Oak', prefab='oak', bend_factor=0.4),
    ])
    terrain = InMemoryTerrain()
    result = generate_terrain(profile, terrain)
    assert terrain.tree_prototypes == [{'prefab': 'oak', 'bend_factor': 0.4}]
    assert any('Ghost' in d for d in result.diagnostics), result.diagnostics


def test_tree_instances_always_written():
    terrain = RecordingTerrain()
    terrain.set_tree_instances([{'prototype_index': 0}])
    terrain.calls = []
    result = generate_terrain(_small_profile(tree_scatter_profiles=[]), terrain)
    assert 'set_tree_instances' in terrain.calls
    assert terrain.tree_instances == []
    assert result.tree_records == []


def test_tree_instances_match_records():
    profile = _small_profile(water_level=0.0, tree_scatter_profiles=[
        TreeScatterProfile(name='Forest', density=0.05, max_slope=90.0)])
    terrain = InMemoryTerrain()
    result = generate_terrain(profile, terrain)
    assert len(result.tree_records) == 54
    assert terrain.tree_instances == [r.to_tree_instance() for r in result.tree_records]


def test_prefab_rerun_replaces_objects():
    profile = _small_profile(water_level=0.0, scatter_profiles=[
        ScatterProfile(name='Rocks', prefabs=['rock'], density=0.05,
                       max_slope=90.0)])
    scene = InMemoryInstantiator()
    first = generate_terrain(profile, InMemoryTerrain(), scene)
    assert len(first.prefab_records) == 54
    assert len(scene.objects(SCATTER_CONTAINER)) == 54

    second = generate_terrain(profile, InMemoryTerrain(), scene)
    placed = scene.objects(SCATTER_CONTAINER)
    assert len(placed) == 54
    assert [o.position for o in placed] == [r.position for r in second.prefab_records]
    assert all(o.prefab == 'rock' for o in placed)


def test_rerun_on_same_host_overwrites_registrations():
    terrain = InMemoryTerrain()
    first = generate_terrain(_small_profile(water_level=0.0), terrain)
    assert terrain.tree_prototype_count == 1
    assert terrain.detail_prototype_count == 1
    assert first.weights is not None

    bare = _small_profile(water_level=0.0, terrain_layers=[],
                          tree_prototypes=[], detail_prototypes=[],
                          tree_scatter_profiles=[
                              TreeScatterProfile(name='Orphans',
                                                 tree_prototype_index=0,
                                                 density=0.05, max_slope=90.0)])
    second = generate_terrain(bare, terrain)
    assert second.tree_records == []
    assert terrain.tree_instances == []
    assert terrain.tree_prototype_count == 0
    assert terrain.detail_prototype_count == 0
    assert terrain.detail_layers == {}
    assert terrain.terrain_layers == []
    assert terrain.alphamaps is None
    assert any('Orphans' in d for d in second.diagnostics), second.diagnostics


def test_prefabs_need_instantiator():
    profile = _small_profile(scatter_profiles=[
        ScatterProfile(prefabs=['rock'], density=0.05)])
    result = generate_terrain(profile, InMemoryTerrain())
    assert result.prefab_records == []


def test_custom_parent():
    scene = InMemoryInstantiator()
    profile = _small_profile(water_level=0.0, scatter_profiles=[
        ScatterProfile(prefabs=['rock'], density=0.01, max_slope=90.0)])
    modeler = TerrainModeler(profile, InMemoryTerrain(), scene, parent='island')
    result = modeler.generate()
    assert len(scene.objects('island')) == len(result.prefab_records) > 0
    assert scene.objects(SCATTER_CONTAINER) == []


def test_generation_is_deterministic():
    profile = _small_profile(water_level=0.0, tree_scatter_profiles=[
        TreeScatterProfile(density=0.02, max_slope=90.0)])
    a = generate_terrain(profile, InMemoryTerrain(), InMemoryInstantiator())
    b = generate_terrain(profile, InMemoryTerrain(), InMemoryInstantiator())
    assert np.array_equal(a.heights, b.heights)
    assert np.array_equal(a.weights, b.weights)
    assert a.tree_records == b.tree_records
    assert a.prefab_records == b.prefab_records
    assert all(np.array_equal(x, y) for x, y in zip(a.detail_layers, b.detail_layers))


def test_summary():
    result = generate_terrain(_small_profile(), InMemoryTerrain())
    summary = result.summary()
    assert summary['heightmap_resolution'] == RES
    assert 0.0 <= summary['height_min'] <= summary['height_max'] <= 1.0
    assert summary['terrain_layers'] == 4
    assert summary['tree_instances'] == len(result.tree_records)
    assert len(summary['detail_cells']) == 1
    json.dumps(summary)


# ---------------------------------------------------------------------------
# Export and CLI
# ---------------------------------------------------------------------------

def test_build_terrain_exports_files():
    tmp_dir = tempfile.mkdtemp(prefix="terrain_export_")
    try:
        out = os.path.join(tmp_dir, 'out')
        built = build_terrain(_small_profile(), out)
        files = built['files']
        assert built['output_dir'] == out
        assert files['heightmap'] == 'heightmap.png'
        assert files['splatmaps'] == ['splat_0.png', 'splat_1.png',
                                      'splat_2.png', 'splat_3.png']
        assert files['detail_layers'] == ['detail_0.png']
        for name in ['heightmap.png', 'splat_0.png', 'detail_0.png',
                     'trees.json', 'prefabs.json', 'meta.json']:
            assert os.path.isfile(os.path.join(out, name)), name

        with Image.open(os.path.join(out, 'heightmap.png')) as img:
            assert img.size == (RES, RES)
        with Image.open(os.path.join(out, 'splat_0.png')) as img:
            assert img.size == (16, 16)

        with open(os.path.join(out, 'meta.json'), 'r', encoding='utf-8') as f:
            meta = json.load(f)
        assert meta['summary']['heightmap_resolution'] == RES
        assert meta['terrain_layers'] == ['sand', 'grass', 'rock', 'snow']
        assert meta['profile']['seed'] == 3
        with open(os.path.join(out, 'prefabs.json'), 'r', encoding='utf-8') as f:
            prefabs = json.load(f)
        assert len(prefabs) == len(built['result'].prefab_records)
    finally:
        shutil.rmtree(tmp_dir)


def test_build_terrain_without_profile():
    tmp_dir = tempfile.mkdtemp(prefix="terrain_export_")
    try:
        out = os.path.join(tmp_dir, 'out')
        assert build_terrain(None, out) is None
        assert not os.path.exists(out)
    finally:
        shutil.rmtree(tmp_dir)


def test_cli_template_validate_generate():
    cli = _load_cli()
    tmp_dir = tempfile.mkdtemp(prefix="terrain_cli_")
    try:
        template = os.path.join(tmp_dir, 'template.json')
        assert cli.main(['template', '-o', template, '--biome', 'alpine',
                         '--seed', '5']) == 0
        with open(template, 'r', encoding='utf-8') as f:
            data = json.load(f)
        assert data['biome'] == 'alpine'
        assert data['seed'] == 5
        assert cli.main(['validate', template]) == 0

        broken = os.path.join(tmp_dir, 'broken.json')
        with open(broken, 'w', encoding='utf-8') as f:
            json.dump({'heightmap_resolution': 0}, f)
        assert cli.main(['validate', broken]) == 1
        assert cli.main(['generate', broken]) == 1

        small = os.path.join(tmp_dir, 'small.json')
        save_profile(small, _small_profile())
        out = os.path.join(tmp_dir, 'small_out')
        assert cli.main(['generate', small, '-o', out, '--seed', '4',
                         '--resolution', '17']) == 0
        with open(os.path.join(out, 'meta.json'), 'r', encoding='utf-8') as f:
            meta = json.load(f)
        assert meta['profile']['seed'] == 4
        assert meta['summary']['heightmap_resolution'] == 17

        assert cli.main([]) == 2
    finally:
        shutil.rmtree(tmp_dir)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main():
    print("=" * 70)
    print("Terrain Generator Test Suite")
    print("=" * 70)

    print("\n--- Pipeline ---")
    _test("stage order", test_stage_order)
    _test("host receives results", test_host_receives_results)
    _test("missing profile/terrain", test_missing_profile_or_terrain)
    _test("no layer profiles", test_no_layer_profiles_leave_weights_alone)
    _test("textureless layers", test_textureless_layers_are_reported)
    _test("biome on copy", test_biome_applied_to_copy)
    _test("tree prototype without prefab", test_tree_prototype_without_prefab_skipped)
    _test("tree instances always written", test_tree_instances_always_written)
    _test("tree instances match records", test_tree_instances_match_records)
    _test("prefab re-run", test_prefab_rerun_replaces_objects)
    _test("re-run overwrites host", test_rerun_on_same_host_overwrites_registrations)
    _test("prefabs need instantiator", test_prefabs_need_instantiator)
    _test("custom parent", test_custom_parent)
    _test("deterministic", test_generation_is_deterministic)
    _test("summary", test_summary)

    print("\n--- Export and CLI ---")
    _test("build_terrain export", test_build_terrain_exports_files)
    _test("build_terrain without profile", test_build_terrain_without_profile)
    _test("cli", test_cli_template_validate_generate)

    print("\n" + "=" * 70)
    print("Results: {} passed, {} failed".format(_PASSED, _FAILED))
    if _ERRORS:
        print("\nFailures:")
        for name, err in _ERRORS:
            print("  {} -- {}".format(name, err))
    print("=" * 70)
    return 0 if _FAILED == 0 else 1


if __name__ == '__main__':
    sys.exit(main())
