"""Utility functions package."""

from .image_utils import to_grayscale, crop_region, upscale, encode_jpeg, draw_score_overlay
from .process_utils import terminate_stray_processes

__all__ = [
    "to_grayscale", "crop_region", "upscale", "encode_jpeg", "draw_score_overlay",
    "terminate_stray_processes",
]
