"""Image processing utilities."""

import io

import cv2
import numpy as np
from PIL import Image
from typing import Optional, Sequence, Tuple

from ..core.entities import Rect


def to_grayscale(image: np.ndarray) -> np.ndarray:
    """Convert a BGR (or BGRA) frame to single-channel grayscale."""
    if image.ndim == 2:
        return image
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
    return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)


def crop_region(image: np.ndarray, rect: Rect) -> np.ndarray:
    """Crop image using (x, y, w, h), clamped to the image bounds."""
    x, y, w, h = rect
    img_h, img_w = image.shape[:2]

    x1 = max(0, min(x, img_w))
    y1 = max(0, min(y, img_h))
    x2 = max(x1, min(x + w, img_w))
    y2 = max(y1, min(y + h, img_h))

    return image[y1:y2, x1:x2]


def upscale(image: np.ndarray, factor: int) -> np.ndarray:
    """Enlarge by an integer factor with bicubic interpolation."""
    h, w = image.shape[:2]
    return cv2.resize(image, (w * factor, h * factor), interpolation=cv2.INTER_CUBIC)


def encode_jpeg(image: np.ndarray, quality: int = 85,
                max_size: Optional[Tuple[int, int]] = None) -> bytes:
    """Encode a BGR frame as JPEG bytes.

    Args:
        image: BGR or grayscale frame
        quality: JPEG quality (1-95)
        max_size: Optional (width, height) bounding box for a thumbnail

    Returns:
        bytes: The encoded JPEG
    """
    if image.ndim == 3:
        rgb = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
    else:
        rgb = image
    pil_image = Image.fromarray(rgb)
    if max_size is not None:
        pil_image.thumbnail(max_size)

    buffer = io.BytesIO()
    pil_image.save(buffer, format="JPEG", quality=quality)
    return buffer.getvalue()


def draw_score_overlay(frame: np.ndarray, regions: Sequence[Rect],
                       raw: Tuple[int, int], filtered: Tuple[int, int],
                       history: Optional[Tuple[Sequence[int], Sequence[int]]] = None) -> np.ndarray:
    """Draw the scoreboard regions, readings and score history onto a copy of the frame."""
    canvas = frame.copy() if frame.ndim == 3 else cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)

    for (x, y, w, h) in regions:
        cv2.rectangle(canvas, (x, y), (x + w, y + h), (0, 0, 255), 1)

    label = f"raw {raw[0]} : {raw[1]}   filtered {filtered[0]} : {filtered[1]}"
    cv2.putText(canvas, label, (10, canvas.shape[0] - 10),
                cv2.FONT_HERSHEY_SIMPLEX, 0.5, (0, 255, 0), 1, cv2.LINE_AA)

    if history:
        left, right = history
        base = canvas.shape[0] - 30
        for colour, values in (((255, 128, 0), left), ((0, 128, 255), right)):
            for i, value in enumerate(values):
                # one pixel per sample, 10px per score step; misses drawn at the baseline
                px_y = base - max(value, 0) * 10
                cv2.circle(canvas, (10 + i, px_y), 1, colour, -1)

    return canvas
