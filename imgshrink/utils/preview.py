import io
import math
import os

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import numpy as np
from PIL import Image

from imgshrink.utils.common import create_dir, format_file_size


def _to_rgb_array(image, size=None):
    if image.mode != 'RGB':
        image = image.convert('RGB')
    if size is not None and image.size != size:
        image = image.resize(size, Image.LANCZOS)
    return np.asarray(image, dtype=np.float64)


def psnr(original, compressed):
    """
    Peak signal-to-noise ratio between two images, in dB

    The compressed image is resized to the original's dimensions first, so
    downscaled results can still be compared.

    Returns:
        float: PSNR, or inf for identical images
    """
    reference = _to_rgb_array(original)
    candidate = _to_rgb_array(compressed, size=original.size)
    mse = np.mean((reference - candidate) ** 2)
    if mse == 0:
        return math.inf
    return 20 * math.log10(255.0) - 10 * math.log10(mse)


def difference_map(original, compressed):
    """Per-pixel mean absolute difference, scaled to 0-1"""
    reference = _to_rgb_array(original)
    candidate = _to_rgb_array(compressed, size=original.size)
    return np.abs(reference - candidate).mean(axis=2) / 255.0


def render_comparison(original_bytes, result, save_path):
    """
    Render original, compressed and difference panels side by side

    Args:
        original_bytes: Source image bytes
        result: CompressionResult for that source
        save_path: PNG file to write

    Returns:
        float: PSNR of the compressed image against the original
    """
    original = Image.open(io.BytesIO(original_bytes))
    compressed = Image.open(io.BytesIO(result.data))
    score = psnr(original, compressed)

    fig, axes = plt.subplots(1, 3, figsize=(15, 5))

    # Original image
    axes[0].imshow(original.convert('RGB'))
    axes[0].set_title(f"Original ({format_file_size(result.original_size_bytes)})", fontsize=12)
    axes[0].axis('off')

    # Compressed image
    axes[1].imshow(compressed.convert('RGB'))
    axes[1].set_title(
        f"Compressed ({format_file_size(result.compressed_size_bytes)}, {result.savings_percent:.1f}% saved)",
        fontsize=12,
    )
    axes[1].axis('off')

    # Difference
    axes[2].imshow(difference_map(original, compressed), cmap='inferno', vmin=0, vmax=1)
    axes[2].set_title(f"Difference (PSNR {score:.1f} dB)", fontsize=12)
    axes[2].axis('off')

    if result.note:
        fig.suptitle(result.note, fontsize=10)

    plt.tight_layout()
    create_dir(os.path.dirname(os.path.abspath(save_path)))
    plt.savefig(save_path, bbox_inches='tight')
    plt.close(fig)
    return score
