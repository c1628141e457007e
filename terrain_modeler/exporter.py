"""
Result export - writes a GenerationResult as PNG images plus JSON.

Output directory layout::

    heightmap.png          16-bit grayscale, 0..65535 <- height 0..1
    splat_<n>.png          8-bit grayscale weight per texture layer
    detail_<n>.png         8-bit occupancy (0 or 255) per detail layer
    trees.json             tree placement records
    prefabs.json           prefab placement records
    meta.json              profile, run summary and file index

Images are row-major with row 0 at v = 0.
"""

import json
import logging
import os

import numpy as np

log = logging.getLogger(__name__)

try:
    from PIL import Image
except ImportError:
    raise ImportError(
        "Pillow is required for terrain export.  "
        "Install with: pip install Pillow"
    )


def save_json(filepath, data, indent=2):
    """
    Write a dict to a JSON file, creating parent directories as needed.

    Args:
        filepath: Destination file path.
        data: Dict (or list) to serialize.
        indent: JSON indentation level (default 2).
    """
    parent = os.path.dirname(filepath)
    if parent and not os.path.exists(parent):
        os.makedirs(parent)
    with open(filepath, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=indent)


class TerrainImageWriter:
    """Writes height, weight and detail grids as PNG files."""

    def __init__(self, output_dir):
        """
        Args:
            output_dir: Directory to write into (created if missing).
        """
        self.output_dir = output_dir
        if not os.path.exists(output_dir):
            os.makedirs(output_dir)

    def _path(self, filename):
        return os.path.join(self.output_dir, filename)

    def write_heightmap(self, heights, filename="heightmap.png"):
        """
        Write normalised heights as a 16-bit grayscale PNG.

        Returns:
            str or None: Filename, or None for an empty grid.
        """
        heights = np.asarray(heights, dtype=np.float64)
        if heights.size == 0:
            return None
        scaled = np.round(np.clip(heights, 0.0, 1.0) * 65535.0)
        img = Image.fromarray(np.ascontiguousarray(scaled.astype(np.uint16)))
        img.save(self._path(filename))
        return filename

    def write_splatmaps(self, weights):
        """
        Write one 8-bit PNG per weight channel.

        Returns:
            list: Filenames in channel order.
        """
        if weights is None:
            return []
        weights = np.asarray(weights, dtype=np.float64)
        result = []
        for layer_index in range(weights.shape[2]):
            channel = np.round(np.clip(weights[:, :, layer_index], 0.0, 1.0) * 255.0)
            filename = "splat_{}.png".format(layer_index)
            Image.fromarray(np.ascontiguousarray(channel.astype(np.uint8))).save(
                self._path(filename))
            result.append(filename)
        return result

    def write_detail_layers(self, layers):
        """Write occupancy grids as 0/255 8-bit PNGs."""
        result = []
        for layer_index, layer in enumerate(layers):
            mask = (np.asarray(layer) > 0).astype(np.uint8) * 255
            filename = "detail_{}.png".format(layer_index)
            Image.fromarray(np.ascontiguousarray(mask)).save(self._path(filename))
            result.append(filename)
        return result


def export_result(result, output_dir, profile_dict=None):
    """
    Write every artefact of *result* into *output_dir*.

    Args:
        result:       GenerationResult.
        output_dir:   Destination directory.
        profile_dict: Optional profile dict stored in meta.json.

    Returns:
        dict: Filenames written (relative to output_dir), keyed by artefact.
    """
    writer = TerrainImageWriter(output_dir)
    files = {
        'heightmap': writer.write_heightmap(result.heights),
        'splatmaps': writer.write_splatmaps(result.weights),
        'detail_layers': writer.write_detail_layers(result.detail_layers),
        'trees': 'trees.json',
        'prefabs': 'prefabs.json',
    }

    save_json(os.path.join(output_dir, 'trees.json'),
              [r.to_dict() for r in result.tree_records])
    save_json(os.path.join(output_dir, 'prefabs.json'),
              [r.to_dict() for r in result.prefab_records])

    meta = {
        'summary': result.summary(),
        'terrain_layers': [str(t) for t in result.terrain_layers],
        'files': files,
    }
    if profile_dict is not None:
        meta['profile'] = profile_dict
    save_json(os.path.join(output_dir, 'meta.json'), meta)

    log.info("Exported terrain to %s (%d splat maps, %d detail layers)",
             output_dir, len(files['splatmaps']), len(files['detail_layers']))
    return files
