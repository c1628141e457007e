#!/usr/bin/env python
"""
Command-line front end for the terrain modeler.

Generates a terrain from a JSON profile on the in-memory host and exports
the height, weight and detail grids as PNG plus placement JSON.

Usage:
  python generate_terrain.py generate <profile.json> [-o output_dir]
  python generate_terrain.py template [-o profile.json] [--biome alpine]
  python generate_terrain.py validate <profile.json>
"""

import argparse
import json
import logging
import os
import sys

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from terrain_modeler import build_terrain
from terrain_modeler.settings import (BiomeType, create_profile_template,
                                      load_profile, profile_to_dict,
                                      save_profile, validate_profile)
from terrain_modeler.heightfield import GeologicalType

log = logging.getLogger('generate_terrain')


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_generate(args):
    profile = load_profile(args.input)
    overrides = {}
    if args.seed is not None:
        overrides['seed'] = args.seed
    if args.resolution is not None:
        overrides['heightmap_resolution'] = args.resolution
    if overrides:
        profile = profile.replace(**overrides)

    output_dir = args.output or os.path.splitext(args.input)[0] + '_terrain'
    built = build_terrain(profile, output_dir, apply_biome=not args.no_biome)
    summary = built['result'].summary()
    print("{} -> {} ({}x{} heights, {} layers, {} trees, {} prefabs)".format(
        args.input, output_dir, summary['heightmap_resolution'],
        summary['heightmap_resolution'], summary['terrain_layers'],
        summary['tree_instances'], summary['prefab_instances']))
    for message in summary['diagnostics']:
        print("  warning: {}".format(message))
    return 0


def cmd_template(args):
    profile = create_profile_template(args.biome, args.geology, args.seed)
    if args.output:
        save_profile(args.output, profile)
        print("Wrote profile template to {}".format(args.output))
    else:
        print(json.dumps(profile_to_dict(profile), indent=2))
    return 0


def cmd_validate(args):
    with open(args.input, 'r', encoding='utf-8') as f:
        data = json.load(f)
    errors = validate_profile(data)
    if errors:
        print("{}: {} error(s)".format(args.input, len(errors)))
        for error in errors:
            print("  " + error)
        return 1
    print("{}: OK".format(args.input))
    return 0


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Procedural terrain generator (heights, splat maps, scatter)')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Enable debug logging')
    subparsers = parser.add_subparsers(dest='command')

    # -- generate -------------------------------------------------------
    p_gen = subparsers.add_parser('generate', help='Generate terrain from a profile')
    p_gen.add_argument('input', help='Input profile .json file')
    p_gen.add_argument('-o', '--output', help='Output directory')
    p_gen.add_argument('--seed', type=int, help='Override the profile seed')
    p_gen.add_argument('--resolution', type=int,
                       help='Override the heightmap resolution')
    p_gen.add_argument('--no-biome', action='store_true',
                       help='Keep base height and falloff from the profile')

    # -- template -------------------------------------------------------
    p_tpl = subparsers.add_parser('template', help='Write a starter profile')
    p_tpl.add_argument('-o', '--output', help='Output .json file (default: stdout)')
    p_tpl.add_argument('--biome', default='temperate',
                       choices=[b.value for b in BiomeType])
    p_tpl.add_argument('--geology', default='volcanic',
                       choices=[g.value for g in GeologicalType])
    p_tpl.add_argument('--seed', type=int)

    # -- validate -------------------------------------------------------
    p_val = subparsers.add_parser('validate', help='Check a profile for errors')
    p_val.add_argument('input', help='Input profile .json file')

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(levelname)s %(name)s: %(message)s')

    if args.command == 'generate':
        try:
            return cmd_generate(args)
        except ValueError as exc:
            log.error("%s", exc)
            return 1
    elif args.command == 'template':
        return cmd_template(args)
    elif args.command == 'validate':
        return cmd_validate(args)

    parser.print_help()
    return 2


if __name__ == '__main__':
    sys.exit(main())
