"""
Tests for the heightfield synthesizer.

Tests:
  smooth_step, FalloffCurve and island falloff
  Geological modifiers (constants, guards, parsing)
  synthesize(): range, determinism, degenerate inputs, stage order
"""

import os
import sys
import traceback

import numpy as np

# Ensure the project root is on the path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from terrain_modeler.heightfield import (FalloffCurve, GeologicalType,
                                         GLOBAL_OFFSET_RANGE,
                                         draw_global_offsets, evaluate_falloff,
                                         smooth_step, synthesize)
from terrain_modeler.rng import RngStream
from terrain_modeler.settings import GenerationProfile, NoiseLayer


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_PASSED = 0
_FAILED = 0
_ERRORS = []


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


def _flat_profile(base_height, **kwargs):
    """A profile whose only height source is *base_height*."""
    values = dict(
        heightmap_resolution=9,
        base_height=base_height,
        noise_layers=[NoiseLayer(enabled=False)],
        use_falloff=False,
        geological_type=GeologicalType.NONE,
    )
    values.update(kwargs)
    return GenerationProfile(**values)


# ---------------------------------------------------------------------------
# Curves
# ---------------------------------------------------------------------------

def test_smooth_step_interpolates_between_values():
    assert smooth_step(0.2, 0.8, 0.0) == 0.2
    assert smooth_step(0.2, 0.8, 1.0) == 0.8
    assert abs(smooth_step(0.2, 0.8, 0.5) - 0.5) < 1e-12
    assert smooth_step(0.2, 0.8, 5.0) == 0.8
    assert smooth_step(0.2, 0.8, -1.0) == 0.2


def test_ease_in_out_endpoints():
    curve = FalloffCurve.ease_in_out()
    assert curve.evaluate(0.0) == 1.0
    assert curve.evaluate(1.0) == 0.0
    assert abs(curve.evaluate(0.5) - 0.5) < 1e-12
    assert curve.evaluate(-3.0) == 1.0
    assert curve.evaluate(4.0) == 0.0
    values = curve.evaluate(np.linspace(0.0, 1.0, 11))
    assert np.all(np.diff(values) <= 0.0), "ease-in-out must be monotonic"


def test_linear_curve():
    curve = FalloffCurve.linear()
    assert abs(curve.evaluate(0.25) - 0.75) < 1e-12
    assert abs(curve.evaluate(0.6) - 0.4) < 1e-12


def test_empty_curve_is_one():
    curve = FalloffCurve([])
    assert curve.evaluate(0.3) == 1.0
    assert np.all(curve.evaluate(np.array([0.0, 0.5, 1.0])) == 1.0)


def test_curve_keys_round_trip():
    curve = FalloffCurve([[1.0, 0.0], [0.0, 1.0, 0.0, 0.0]])
    assert curve.keys[0][0] == 0.0, "keys must be sorted by time"
    assert FalloffCurve(curve.to_list()) == curve


def test_falloff_centre_and_corner():
    curve = FalloffCurve.ease_in_out()
    assert evaluate_falloff(curve, 1.15, 0.5, 0.5) == 1.0
    assert evaluate_falloff(curve, 1.15, 0.0, 0.0) == 0.0
    assert evaluate_falloff(curve, 1.15, 1.0, 1.0) == 0.0
    edge = evaluate_falloff(curve, 1.0, 1.0, 0.5)
    assert 0.0 < edge < 1.0


def test_falloff_strength_sharpens():
    curve = FalloffCurve.ease_in_out()
    soft = evaluate_falloff(curve, 1.0, 0.8, 0.5)
    hard = evaluate_falloff(curve, 3.0, 0.8, 0.5)
    assert hard < soft


# ---------------------------------------------------------------------------
# Geology
# ---------------------------------------------------------------------------

def test_volcanic_centre():
    # peak 0.25 at the centre, crater smooth_step(0.2, 0.8, 0) = 0.2
    value = GeologicalType.VOLCANIC.apply(0.0, 0.5, 0.5)
    assert abs(value - (0.25 - 0.2 * 0.15)) < 1e-12, value


def test_sedimentary_steps():
    heights = np.linspace(0.0, 1.0, 101)
    stepped = GeologicalType.SEDIMENTARY.apply(heights, 0.0, 0.0)
    assert np.array_equal(stepped * 8.0, np.round(stepped * 8.0))
    assert len(np.unique(stepped)) == 9


def test_granite_guards_negative():
    result = GeologicalType.GRANITE.apply(np.array([-0.5, 0.0, 0.25, 1.0]), 0.0, 0.0)
    assert np.all(np.isfinite(result))
    assert result[0] == 0.0
    assert abs(result[2] - 0.25 ** 0.85) < 1e-12
    assert result[3] == 1.0


def test_none_is_identity():
    heights = np.array([0.1, 0.5, 0.9])
    assert np.array_equal(GeologicalType.NONE.apply(heights, 0.3, 0.3), heights)


def test_geology_parse():
    assert GeologicalType.parse(None) is GeologicalType.NONE
    assert GeologicalType.parse('karst') is GeologicalType.KARST
    assert GeologicalType.parse('Archipelago') is GeologicalType.ARCHIPELAGO
    try:
        GeologicalType.parse('basalt')
    except ValueError:
        pass
    else:
        raise AssertionError("Expected ValueError for unknown geology")


# ---------------------------------------------------------------------------
# Synthesis
# ---------------------------------------------------------------------------

def test_global_offsets_come_first_from_seed():
    offset_x, offset_z = draw_global_offsets(2024)
    rng = RngStream(2024)
    assert offset_x == rng.next_float() * GLOBAL_OFFSET_RANGE
    assert offset_z == rng.next_float() * GLOBAL_OFFSET_RANGE
    assert 0.0 <= offset_x < GLOBAL_OFFSET_RANGE


def test_disabled_layers_give_uniform_base():
    heights = synthesize(_flat_profile(0.1))
    assert heights.shape == (9, 9)
    assert heights.dtype == np.float64
    assert np.all(heights == 0.1), heights


def test_zero_octave_layer_contributes_nothing():
    profile = _flat_profile(0.25, noise_layers=[NoiseLayer(octaves=0, amplitude=3.0)])
    assert np.all(synthesize(profile) == 0.25)


def test_heights_stay_in_unit_range():
    for geology in GeologicalType:
        profile = GenerationProfile(heightmap_resolution=33, seed=7,
                                    geological_type=geology, base_height=0.6,
                                    noise_layers=[NoiseLayer(amplitude=2.0)])
        heights = synthesize(profile)
        assert heights.min() >= 0.0 and heights.max() <= 1.0, geology
        assert np.all(np.isfinite(heights)), geology


def test_sedimentary_grid_is_quantised():
    profile = GenerationProfile(heightmap_resolution=33,
                                geological_type=GeologicalType.SEDIMENTARY)
    heights = synthesize(profile)
    assert np.array_equal(heights * 8.0, np.round(heights * 8.0))


def test_synthesis_is_deterministic():
    profile = GenerationProfile(heightmap_resolution=33, seed=99)
    assert np.array_equal(synthesize(profile), synthesize(profile))


def test_seed_changes_heights():
    a = synthesize(GenerationProfile(heightmap_resolution=33, seed=1))
    b = synthesize(GenerationProfile(heightmap_resolution=33, seed=2))
    assert not np.array_equal(a, b)


def test_falloff_zeroes_corners():
    profile = _flat_profile(0.5, use_falloff=True)
    heights = synthesize(profile)
    assert heights[0, 0] == 0.0
    assert heights[-1, -1] == 0.0
    assert heights[4, 4] == 0.5


def test_resolution_one():
    heights = synthesize(GenerationProfile(), 1)
    assert heights.shape == (1, 1)
    assert np.all(np.isfinite(heights))


def test_resolution_override():
    profile = GenerationProfile(heightmap_resolution=65)
    assert synthesize(profile, 17).shape == (17, 17)


def test_result_is_fresh_array():
    profile = _flat_profile(0.1)
    first = synthesize(profile)
    first[0, 0] = 0.9
    assert synthesize(profile)[0, 0] == 0.1


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main():
    print("=" * 70)
    print("Heightfield Synthesizer Test Suite")
    print("=" * 70)

    print("\n--- Curves ---")
    _test("smooth_step", test_smooth_step_interpolates_between_values)
    _test("ease-in-out endpoints", test_ease_in_out_endpoints)
    _test("linear curve", test_linear_curve)
    _test("empty curve", test_empty_curve_is_one)
    _test("curve keys round trip", test_curve_keys_round_trip)
    _test("falloff centre/corner", test_falloff_centre_and_corner)
    _test("falloff strength", test_falloff_strength_sharpens)

    print("\n--- Geology ---")
    _test("volcanic centre", test_volcanic_centre)
    _test("sedimentary steps", test_sedimentary_steps)
    _test("granite negative guard", test_granite_guards_negative)
    _test("none identity", test_none_is_identity)
    _test("geology parse", test_geology_parse)

    print("\n--- Synthesis ---")
    _test("global offsets", test_global_offsets_come_first_from_seed)
    _test("uniform base", test_disabled_layers_give_uniform_base)
    _test("zero octave layer", test_zero_octave_layer_contributes_nothing)
    _test("unit range", test_heights_stay_in_unit_range)
    _test("sedimentary grid", test_sedimentary_grid_is_quantised)
    _test("deterministic", test_synthesis_is_deterministic)
    _test("seed changes heights", test_seed_changes_heights)
    _test("falloff corners", test_falloff_zeroes_corners)
    _test("resolution 1", test_resolution_one)
    _test("resolution override", test_resolution_override)
    _test("fresh array", test_result_is_fresh_array)

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
