"""
Compare two PPM renders pixel-wise. Saves a diff image if they differ and prints the max channel difference.
Usage:
  python compare_images.py results/seq.ppm results/par.ppm [--diff results/diff.png]
Exit status is 0 when the images are identical, 1 otherwise.
"""

import argparse
import os
import sys

import numpy as np
from PIL import Image, ImageChops

from raytracer import read_ppm


def compare(path_a, path_b, diff_path=None):
    """Returns (identical, max_diff, bbox). Writes the diff image only when the images differ."""
    a = Image.fromarray(read_ppm(path_a))
    b = Image.fromarray(read_ppm(path_b))
    if a.size != b.size:
        raise ValueError(f"different sizes: {a.size} vs {b.size}")
    diff = ImageChops.difference(a, b)
    bbox = diff.getbbox()
    if bbox is None:
        return True, 0, None
    if diff_path:
        os.makedirs(os.path.dirname(diff_path) or '.', exist_ok=True)
        diff.save(diff_path)
    return False, int(np.array(diff).max()), bbox

def main(argv=None):
    parser = argparse.ArgumentParser()
    parser.add_argument('a')
    parser.add_argument('b')
    parser.add_argument('--diff', default=None, help='where to save the diff image')
    args = parser.parse_args(argv)

    try:
        identical, max_diff, bbox = compare(args.a, args.b, args.diff)
    except ValueError as e:
        print("DIFFERENT:", e)
        return 1
    if identical:
        print("IDENTICAL")
        return 0
    print("Max per-channel diff:", max_diff)
    print("Diff bbox:", bbox)
    if args.diff:
        print("Saved diff to", args.diff)
    return 1

if __name__ == '__main__':
    sys.exit(main())
