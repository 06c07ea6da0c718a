import os
import sys
import logging
import argparse
from typing import List, Optional

from imgshrink.compression.batch import DEFAULT_WORKERS, BatchItem, compress_all
from imgshrink.compression.errors import InvalidTarget
from imgshrink.compression.types import (
    DEFAULT_MAX_HEIGHT,
    DEFAULT_MAX_WIDTH,
    CompressionRequest,
    OutputFormat,
)
from imgshrink.data.sources import collect_image_paths, load_uploads
from imgshrink.utils.common import create_dir, format_file_size, setup_logging, unique_name, write_archive


def compress_images(
    input_paths: List[str],
    output_dir: str,
    request: CompressionRequest,
    workers: int = DEFAULT_WORKERS,
    archive_path: Optional[str] = None,
    preview_dir: Optional[str] = None,
) -> List[BatchItem]:
    """
    Compress images from disk and write the results

    Args:
        input_paths: Image files and/or directories of images
        output_dir: Directory for the compressed files
        request: Compression settings applied to every image
        workers: Number of images compressed at the same time
        archive_path: Also write every result into this ZIP archive
        preview_dir: Write an original-vs-compressed comparison per image here

    Returns:
        list: One BatchItem per input image, in input order
    """
    paths = collect_image_paths(input_paths)
    uploads = load_uploads(paths)
    if not uploads:
        logging.warning("No images to compress")
        return []

    create_dir(output_dir)
    items = compress_all(uploads, request, max_workers=workers, show_progress=True)

    results = []
    written = set()
    for upload, item in zip(uploads, items):
        if not item.ok:
            print(f"Error with {item.name}: {item.error}")
            continue

        result = item.result
        # Inputs from different directories can map to the same output name
        output_name = unique_name(result.filename, written)
        output_path = os.path.join(output_dir, output_name)
        with open(output_path, 'wb') as f:
            f.write(result.data)
        results.append(result)

        note = f" [{result.note}]" if result.note else ""
        print(f"{upload.name} -> {output_name}: {format_file_size(result.original_size_bytes)} -> "
              f"{format_file_size(result.compressed_size_bytes)} ({result.savings_percent:.1f}%){note}")

        if preview_dir:
            # Imported lazily, matplotlib is only needed for previews
            from imgshrink.utils.preview import render_comparison
            name, _ = os.path.splitext(output_name)
            preview_path = os.path.join(preview_dir, f"{name}_preview.png")
            score = render_comparison(upload.data, result, preview_path)
            print(f"  Preview saved to {preview_path} (PSNR {score:.1f} dB)")

    if archive_path and results:
        write_archive(results, archive_path)
        print(f"Archive saved to {archive_path}")

    total_original = sum(r.original_size_bytes for r in results)
    total_compressed = sum(r.compressed_size_bytes for r in results)
    print(f"\nCompressed {len(results)}/{len(items)} images to {output_dir} "
          f"({format_file_size(total_original)} -> {format_file_size(total_compressed)})")
    return items


def build_parser():
    parser = argparse.ArgumentParser(description="Compress images by quality or to a target size")
    parser.add_argument("--input", type=str, nargs="+", required=True, help="Image files or directories")
    parser.add_argument("--output_dir", type=str, default="compressed", help="Directory for compressed images")
    parser.add_argument("--method", type=str, choices=["quality", "targetSize"], default="quality",
                        help="Flat quality or iterative search for a target size")
    parser.add_argument("--quality", type=int, default=80, help="Quality in percent (0-100)")
    parser.add_argument("--target_size", type=float, default=None, help="Target size in KB (targetSize method)")
    parser.add_argument("--format", type=str, choices=[f.value for f in OutputFormat], default="original",
                        help="Output format")
    parser.add_argument("--max_width", type=int, default=DEFAULT_MAX_WIDTH, help="Maximum output width")
    parser.add_argument("--max_height", type=int, default=DEFAULT_MAX_HEIGHT, help="Maximum output height")
    parser.add_argument("--workers", type=int, default=DEFAULT_WORKERS, help="Images compressed in parallel")
    parser.add_argument("--archive", type=str, default=None, help="Also write all results into this ZIP file")
    parser.add_argument("--preview_dir", type=str, default=None, help="Write comparison previews here")
    parser.add_argument("--verbose", action="store_true", help="Log every encode attempt")
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.WARNING)

    if not 0 <= args.quality <= 100:
        parser.error("--quality must be between 0 and 100")

    try:
        request = CompressionRequest.from_options(
            method=args.method,
            quality=args.quality,
            max_file_size_kb=args.target_size,
            output_format=args.format,
            max_width=args.max_width,
            max_height=args.max_height,
        )
    except InvalidTarget:
        parser.error("--target_size must be a positive number of KB with --method targetSize")
    except ValueError as e:
        parser.error(str(e))

    items = compress_images(
        args.input,
        args.output_dir,
        request,
        workers=args.workers,
        archive_path=args.archive,
        preview_dir=args.preview_dir,
    )
    if not items or not any(item.ok for item in items):
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
