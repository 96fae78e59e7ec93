"""Box overlap, suppression and mask component extraction."""

from __future__ import annotations

from typing import Iterable, List

import cv2
import numpy as np

from .types import BoundingBox


def iou(a: BoundingBox, b: BoundingBox) -> float:
    ix1 = max(a.min_x, b.min_x)
    iy1 = max(a.min_y, b.min_y)
    ix2 = min(a.max_x, b.max_x)
    iy2 = min(a.max_y, b.max_y)
    inter = max(0.0, ix2 - ix1) * max(0.0, iy2 - iy1)
    union = a.area + b.area - inter + 1e-6
    return inter / union


def non_max_suppression(boxes: Iterable[BoundingBox], iou_threshold: float) -> List[BoundingBox]:
    """Greedy NMS: highest score first, drop later boxes overlapping a kept one.

    A candidate is suppressed only when its IoU with a kept box is strictly
    greater than ``iou_threshold``. Ties in score keep input order.
    """
    ordered = sorted(boxes, key=lambda b: b.score, reverse=True)
    suppressed = [False] * len(ordered)
    kept: List[BoundingBox] = []
    for i, box in enumerate(ordered):
        if suppressed[i]:
            continue
        kept.append(box)
        for j in range(i + 1, len(ordered)):
            if not suppressed[j] and iou(box, ordered[j]) > iou_threshold:
                suppressed[j] = True
    return kept


def _inclusive_iou(a: BoundingBox, b: BoundingBox) -> float:
    # mask boxes are pixel-inclusive, so a single pixel has area 1
    x1, y1 = max(a.min_x, b.min_x), max(a.min_y, b.min_y)
    x2, y2 = min(a.max_x, b.max_x), min(a.max_y, b.max_y)
    inter = max(0.0, x2 - x1 + 1) * max(0.0, y2 - y1 + 1)
    area_a = (a.max_x - a.min_x + 1) * (a.max_y - a.min_y + 1)
    area_b = (b.max_x - b.min_x + 1) * (b.max_y - b.min_y + 1)
    return inter / max(1.0, area_a + area_b - inter)


def merge_overlapping(boxes: List[BoundingBox], iou_threshold: float) -> List[BoundingBox]:
    """Union boxes whose inclusive IoU reaches ``iou_threshold`` until stable."""
    if len(boxes) <= 1:
        return list(boxes)
    used = [False] * len(boxes)
    merged: List[BoundingBox] = []
    for i in range(len(boxes)):
        if used[i]:
            continue
        used[i] = True
        current = boxes[i]
        changed = True
        while changed:
            changed = False
            for j in range(i + 1, len(boxes)):
                if used[j] or _inclusive_iou(current, boxes[j]) < iou_threshold:
                    continue
                other = boxes[j]
                current = BoundingBox(
                    min_x=min(current.min_x, other.min_x),
                    min_y=min(current.min_y, other.min_y),
                    max_x=max(current.max_x, other.max_x),
                    max_y=max(current.max_y, other.max_y),
                    score=max(current.score, other.score),
                )
                used[j] = True
                changed = True
        merged.append(current)
    return merged


def mask_to_boxes(mask: np.ndarray, min_area: int) -> List[BoundingBox]:
    """Bounding boxes of 4-connected foreground components of a binary mask.

    Boxes use inclusive pixel coordinates in mask space; components smaller
    than ``min_area`` pixels are discarded.
    """
    binary = (np.asarray(mask) > 0).astype(np.uint8)
    count, _labels, stats, _centroids = cv2.connectedComponentsWithStats(binary, connectivity=4)
    boxes: List[BoundingBox] = []
    # label 0 is the background
    for label in range(1, count):
        x, y, w, h, area = (int(v) for v in stats[label])
        if area < min_area:
            continue
        boxes.append(BoundingBox(min_x=x, min_y=y, max_x=x + w - 1, max_y=y + h - 1))
    return boxes
