"""FAST corners, oriented BRIEF (ORB) descriptors and brute-force Hamming matching."""

from __future__ import annotations

import argparse
import sys
import time
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

DEFAULT_FIRST_IMAGE = "./1.png"
DEFAULT_SECOND_IMAGE = "./2.png"
DEFAULT_OUTPUT = "matches.png"
FAST_THRESHOLD = 40
MAX_MATCH_DISTANCE = 40

DESCRIPTOR_WORDS = 8
_BITS_PER_WORD = 32
_WORD_MASK = 0xFFFFFFFF
_HALF_PATCH = 8
_HALF_BOUNDARY = 16
_FAST_RADIUS = 3
_FAST_ARC = 9

Descriptor = tuple[int, ...]

# Offsets (dx, dy) of the 16-pixel Bresenham circle of radius 3.
_CIRCLE = (
    (0, 3), (1, 3), (2, 2), (3, 1), (3, 0), (3, -1), (2, -2), (1, -3),
    (0, -3), (-1, -3), (-2, -2), (-3, -1), (-3, 0), (-3, 1), (-2, 2), (-1, 3),
)

# Point pairs (px, py, qx, qy) of the BRIEF sampling pattern.
_ORB_PATTERN = np.array((
    (8, -3, 9, 5), (4, 2, 7, -12), (-11, 9, -8, 2), (7, -12, 12, -13),
    (2, -13, 2, 12), (1, -7, 1, 6), (-2, -10, -2, -4), (-13, -13, -11, -8),
    (-13, -3, -12, -9), (10, 4, 11, 9), (-13, -8, -8, -9), (-11, 7, -9, 12),
    (7, 7, 12, 6), (-4, -5, -3, 0), (-13, 2, -12, -3), (-9, 0, -7, 5),
    (12, -6, 12, -1), (-3, 6, -2, 12), (-6, -13, -4, -8), (11, -13, 12, -8),
    (4, 7, 5, 1), (5, -3, 10, -3), (3, -7, 6, 12), (-8, -7, -6, -2),
    (-2, 11, -1, -10), (-13, 12, -8, 10), (-7, 3, -5, -3), (-4, 2, -3, 7),
    (-10, -12, -6, 11), (5, -12, 6, -7), (5, -6, 7, -1), (1, 0, 4, -5),
    (9, 11, 11, -13), (4, 7, 4, 12), (2, -1, 4, 4), (-4, -12, -2, 7),
    (-8, -5, -7, -10), (4, 11, 9, 12), (0, -8, 1, -13), (-13, -2, -8, 2),
    (-3, -2, -2, 3), (-6, 9, -4, -9), (8, 12, 10, 7), (0, 9, 1, 3),
    (7, -5, 11, -10), (-13, -6, -11, 0), (10, 7, 12, 1), (-6, -3, -6, 12),
    (10, -9, 12, -4), (-13, 8, -8, -12), (-13, 0, -8, -4), (3, 3, 7, 8),
    (5, 7, 10, -7), (-1, 7, 1, -12), (3, -10, 5, 6), (2, -4, 3, -10),
    (-13, 0, -13, 5), (-13, -7, -12, 12), (-13, 3, -11, 8), (-7, 12, -4, 7),
    (6, -10, 12, 8), (-9, -1, -7, -6), (-2, -5, 0, 12), (-12, 5, -7, 5),
    (3, -10, 8, -13), (-7, -7, -4, 5), (-3, -2, -1, -7), (2, 9, 5, -11),
    (-11, -13, -5, -13), (-1, 6, 0, -1), (5, -3, 5, 2), (-4, -13, -4, 12),
    (-9, -6, -9, 6), (-12, -10, -8, -4), (10, 2, 12, -3), (7, 12, 12, 12),
    (-7, -13, -6, 5), (-4, 9, -3, 4), (7, -1, 12, 2), (-7, 6, -5, 1),
    (-13, 11, -12, 5), (-3, 7, -2, -6), (7, -8, 12, -7), (-13, -7, -11, -12),
    (1, -3, 12, 12), (2, -6, 3, 0), (-4, 3, -2, -13), (-1, -13, 1, 9),
    (7, 1, 8, -6), (1, -1, 3, 12), (9, 1, 12, 6), (-1, -9, -1, 3),
    (-13, -13, -10, 5), (7, 7, 10, 12), (12, -5, 12, 9), (6, 3, 7, 11),
    (5, -13, 6, 10), (2, -12, 2, 3), (3, 8, 4, -6), (2, 6, 12, -13),
    (9, -12, 10, 3), (-8, 4, -7, 9), (-11, 12, -4, -6), (1, 12, 2, -8),
    (6, -9, 7, -4), (2, 3, 3, -2), (6, 3, 11, 0), (3, -3, 8, -8),
    (7, 8, 9, 3), (-11, -5, -6, -4), (-10, 11, -5, 10), (-5, -8, -3, 12),
    (-10, 5, -9, 0), (8, -1, 12, -6), (4, -6, 6, -11), (-10, 12, -8, 7),
    (4, -2, 6, 7), (-2, 0, -2, 12), (-5, -8, -5, 2), (7, -6, 10, 12),
    (-9, -13, -8, -8), (-5, -13, -5, -2), (8, -8, 9, -13), (-9, -11, -9, 0),
    (1, -8, 1, -2), (7, -4, 9, 1), (-2, 1, -1, -4), (11, -6, 12, -11),
    (-12, -9, -6, 4), (3, 7, 7, 12), (5, 5, 10, 8), (0, -4, 2, 8),
    (-9, 12, -5, -13), (0, 7, 2, 12), (-1, 2, 1, 7), (5, 11, 7, -9),
    (3, 5, 6, -8), (-13, -4, -8, 9), (-5, 9, -3, -3), (-4, -7, -3, -12),
    (6, 5, 8, 0), (-7, 6, -6, 12), (-13, 6, -5, -2), (1, -10, 3, 10),
    (4, 1, 8, -4), (-2, -2, 2, -13), (2, -12, 12, 12), (-2, -13, 0, -6),
    (4, 1, 9, 3), (-6, -10, -3, -5), (-3, -13, -1, 1), (7, 5, 12, -11),
    (4, -2, 5, -7), (-13, 9, -9, -5), (7, 1, 8, 6), (7, -8, 7, 6),
    (-7, -4, -7, 1), (-8, 11, -7, -8), (-13, 6, -12, -8), (2, 4, 3, 9),
    (10, -5, 12, 3), (-6, -5, -6, 7), (8, -3, 9, -8), (2, -12, 2, 8),
    (-11, -2, -10, 3), (-12, -13, -7, -9), (-11, 0, -10, -5), (5, -3, 11, 8),
    (-2, -13, -1, 12), (-1, -8, 0, 9), (-13, -11, -12, -5), (-10, -2, -10, 11),
    (-3, 9, -2, -13), (2, -3, 3, 2), (-9, -13, -4, 0), (-4, 6, -3, -10),
    (-4, 12, -2, -7), (-6, -11, -4, 9), (6, -3, 6, 11), (-13, 11, -5, 5),
    (11, 11, 12, 6), (7, -5, 12, -2), (-1, 12, 0, 7), (-4, -8, -3, -2),
    (-7, 1, -6, 7), (-13, -12, -8, -13), (-7, -2, -6, -8), (-8, 5, -6, -9),
    (-5, -1, -4, 5), (-13, 7, -8, 10), (1, 5, 5, -13), (1, 0, 10, -13),
    (9, 12, 10, -1), (5, -8, 10, -9), (-1, 11, 1, -13), (-9, -3, -6, 2),
    (-1, -10, 1, 12), (-13, 1, -8, -10), (8, -11, 10, -6), (2, -13, 3, -6),
    (7, -13, 12, -9), (-10, -10, -5, -7), (-10, -8, -8, -13), (4, -6, 8, 5),
    (3, 12, 8, -13), (-4, 2, -3, -3), (5, -13, 10, -12), (4, -13, 5, -1),
    (-9, 9, -4, 3), (0, 3, 3, -9), (-12, 1, -6, 1), (3, 2, 4, -8),
    (-10, -10, -10, 9), (8, -13, 12, 12), (-8, -12, -6, -5), (2, 2, 3, 7),
    (10, 6, 11, -8), (6, 8, 8, -12), (-7, 10, -6, 5), (-3, -9, -3, 9),
    (-1, -13, -1, 5), (-3, -7, -3, 4), (-8, -2, -8, 3), (4, 2, 12, 12),
    (2, -5, 3, 11), (6, -9, 11, -13), (3, -1, 7, 12), (11, -1, 12, 4),
    (-3, 0, -3, 6), (4, -11, 4, 12), (2, -4, 2, 1), (-10, -6, -8, 1),
    (-13, 7, -11, 1), (-13, 12, -11, -13), (6, 0, 11, -13), (0, -1, 1, 4),
    (-13, 3, -9, -2), (-9, 8, -6, -3), (-13, -6, -8, -2), (5, -9, 8, 10),
    (2, 7, 3, -9), (-1, -6, -1, -1), (9, 5, 11, -2), (11, -3, 12, -8),
    (3, 0, 3, 5), (-1, 4, 0, 10), (3, -6, 4, 5), (-13, 0, -10, 5),
    (5, 8, 12, 11), (8, 9, 9, -6), (7, -4, 8, -12), (-10, 4, -10, 9),
    (7, 3, 12, 4), (9, -7, 10, -2), (7, 0, 12, -2), (-1, -6, 0, -11),
), dtype=np.float32)


@dataclass(frozen=True)
class KeyPoint:
    """A detected corner at pixel column ``x`` and row ``y`` with its corner score."""

    x: float
    y: float
    response: float = 0.0


@dataclass(frozen=True)
class Match:
    """A descriptor match: index in the first set, index in the second set, Hamming distance."""

    query_idx: int
    train_idx: int
    distance: int


def _grey(image) -> np.ndarray:
    array = np.asarray(image)
    if array.ndim != 2:
        raise ValueError(f"image must be two-dimensional, got shape {array.shape}")
    return array


def fast_detect(image, threshold: int = FAST_THRESHOLD) -> list[KeyPoint]:
    """Detect FAST-9 corners with non-maximum suppression, in row-major order."""
    grey = _grey(image).astype(np.int32)
    rows, cols = grey.shape
    r = _FAST_RADIUS
    if rows <= 2 * r or cols <= 2 * r:
        return []

    center = grey[r:rows - r, r:cols - r]
    diffs = np.stack([
        grey[r + dy:rows - r + dy, r + dx:cols - r + dx] - center for dx, dy in _CIRCLE
    ])
    wrapped = np.concatenate([diffs, diffs[:_FAST_ARC - 1]])
    count = len(_CIRCLE)
    arc_min = np.stack([wrapped[s:s + _FAST_ARC].min(axis=0) for s in range(count)])
    arc_max = np.stack([wrapped[s:s + _FAST_ARC].max(axis=0) for s in range(count)])
    bright = arc_min.max(axis=0)
    dark = -arc_max.min(axis=0)
    strength = np.maximum(bright, dark)
    corner = strength > threshold

    score = np.zeros((rows, cols), dtype=np.int32)
    score[r:rows - r, r:cols - r] = np.where(corner, strength - 1, 0)
    padded = np.pad(score, 1)
    keep = score > 0
    for dy in (-1, 0, 1):
        for dx in (-1, 0, 1):
            if dx == 0 and dy == 0:
                continue
            keep &= score > padded[1 + dy:1 + dy + rows, 1 + dx:1 + dx + cols]

    ys, xs = np.nonzero(keep)
    return [KeyPoint(float(x), float(y), float(score[y, x])) for y, x in zip(ys, xs)]


def _describe(grey: np.ndarray, x: int, y: int, kx: float, ky: float) -> Descriptor:
    rows, cols = grey.shape
    patch = grey[y - _HALF_PATCH:y + _HALF_PATCH, x - _HALF_PATCH:x + _HALF_PATCH].astype(np.float32)
    offsets = np.arange(-_HALF_PATCH, _HALF_PATCH, dtype=np.float32)
    m10 = np.float32((patch * offsets[None, :]).sum())
    m01 = np.float32((patch * offsets[:, None]).sum())
    m_sqrt = np.float32(np.sqrt(m01 * m01 + m10 * m10) + 1e-18)
    sin_theta = np.float32(m01 / m_sqrt)
    cos_theta = np.float32(m10 / m_sqrt)

    px, py, qx, qy = _ORB_PATTERN.T
    kx32, ky32 = np.float32(kx), np.float32(ky)
    ppx = cos_theta * px - sin_theta * py + kx32
    ppy = sin_theta * px + cos_theta * py + ky32
    qqx = cos_theta * qx - sin_theta * qy + kx32
    qqy = sin_theta * qx + cos_theta * qy + ky32

    def sample(us: np.ndarray, vs: np.ndarray) -> np.ndarray:
        columns = np.clip(us.astype(np.int64), 0, cols - 1)
        lines = np.clip(vs.astype(np.int64), 0, rows - 1)
        return grey[lines, columns]

    bits = sample(ppx, ppy) < sample(qqx, qqy)
    words = bits.reshape(DESCRIPTOR_WORDS, _BITS_PER_WORD)
    weights = 1 << np.arange(_BITS_PER_WORD, dtype=np.uint64)
    return tuple(int(value) for value in (words.astype(np.uint64) * weights).sum(axis=1))


def compute_orb(image, keypoints: Sequence[KeyPoint]) -> list[Optional[Descriptor]]:
    """Compute a 256-bit descriptor (eight 32-bit words) for each keypoint.

    Keypoints within 16 pixels of the image border get ``None``.
    """
    grey = _grey(image)
    rows, cols = grey.shape
    descriptors: list[Optional[Descriptor]] = []
    for kp in keypoints:
        if (kp.x < _HALF_BOUNDARY or kp.y < _HALF_BOUNDARY
                or kp.x >= cols - _HALF_BOUNDARY or kp.y >= rows - _HALF_BOUNDARY):
            descriptors.append(None)
            continue
        descriptors.append(_describe(grey, int(kp.x), int(kp.y), kp.x, kp.y))
    return descriptors


def hamming_distance(first: Sequence[int], second: Sequence[int]) -> int:
    """Number of differing bits between two descriptors of 32-bit words."""
    if len(first) != len(second):
        raise ValueError("descriptors must have the same length")
    return sum(((a ^ b) & _WORD_MASK).bit_count() for a, b in zip(first, second))


def bf_match(descriptors1: Sequence[Optional[Descriptor]],
             descriptors2: Sequence[Optional[Descriptor]],
             max_distance: int = MAX_MATCH_DISTANCE) -> list[Match]:
    """Match each descriptor to its nearest one in the other set, below ``max_distance``.

    Missing descriptors are skipped; on ties the earliest candidate wins.
    """
    matches = []
    for query, desc1 in enumerate(descriptors1):
        if not desc1:
            continue
        best = Match(query, 0, DESCRIPTOR_WORDS * _BITS_PER_WORD)
        for train, desc2 in enumerate(descriptors2):
            if not desc2:
                continue
            distance = hamming_distance(desc1, desc2)
            if distance < max_distance and distance < best.distance:
                best = Match(query, train, distance)
        if best.distance < max_distance:
            matches.append(best)
    return matches


def _draw_matches(first: np.ndarray, keypoints1: Sequence[KeyPoint], second: np.ndarray,
                  keypoints2: Sequence[KeyPoint], matches: Sequence[Match], path) -> None:
    from PIL import Image, ImageDraw

    height = max(first.shape[0], second.shape[0])
    width = first.shape[1] + second.shape[1]
    canvas = Image.new("RGB", (width, height))
    canvas.paste(Image.fromarray(first.astype(np.uint8)).convert("RGB"), (0, 0))
    canvas.paste(Image.fromarray(second.astype(np.uint8)).convert("RGB"), (first.shape[1], 0))
    draw = ImageDraw.Draw(canvas)
    shift = first.shape[1]
    palette = [(255, 0, 0), (0, 255, 0), (0, 128, 255), (255, 255, 0), (255, 0, 255)]
    for number, match in enumerate(matches):
        colour = palette[number % len(palette)]
        a = keypoints1[match.query_idx]
        b = keypoints2[match.train_idx]
        draw.line([(a.x, a.y), (b.x + shift, b.y)], fill=colour)
        draw.ellipse([a.x - 3, a.y - 3, a.x + 3, a.y + 3], outline=colour)
        draw.ellipse([b.x + shift - 3, b.y - 3, b.x + shift + 3, b.y + 3], outline=colour)
    canvas.save(path)


def main(argv=None) -> int:
    """Detect, describe and match ORB features between two images and save a match image."""
    from PIL import Image

    parser = argparse.ArgumentParser(prog="orb", description="Hand-made ORB features.")
    parser.add_argument("first", nargs="?", default=DEFAULT_FIRST_IMAGE)
    parser.add_argument("second", nargs="?", default=DEFAULT_SECOND_IMAGE)
    parser.add_argument("--output", default=DEFAULT_OUTPUT)
    args = parser.parse_args(argv)

    try:
        with Image.open(args.first) as handle:
            first = np.asarray(handle.convert("L"))
        with Image.open(args.second) as handle:
            second = np.asarray(handle.convert("L"))
    except OSError as error:
        print(error, file=sys.stderr)
        return 1

    start = time.perf_counter()
    keypoints1 = fast_detect(first, FAST_THRESHOLD)
    descriptors1 = compute_orb(first, keypoints1)
    keypoints2 = fast_detect(second, FAST_THRESHOLD)
    descriptors2 = compute_orb(second, keypoints2)
    elapsed = time.perf_counter() - start
    for keypoints, descriptors in ((keypoints1, descriptors1), (keypoints2, descriptors2)):
        bad = sum(1 for d in descriptors if d is None)
        print(f"bad/total: {bad}/{len(keypoints)}")
    print(f"extract ORB cost = {elapsed:g} seconds. ")

    start = time.perf_counter()
    matches = bf_match(descriptors1, descriptors2, MAX_MATCH_DISTANCE)
    elapsed = time.perf_counter() - start
    print(f"match ORB cost = {elapsed:g} seconds. ")
    print(f"matches: {len(matches)}")

    _draw_matches(first, keypoints1, second, keypoints2, matches, args.output)
    print("done.")
    return 0