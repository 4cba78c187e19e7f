#!/usr/bin/env python3
"""
Precompress static assets.

Writes .gz and .br copies of every eligible file so a web server can
serve them without compressing on each request.

Usage:
    python scripts/compress_assets.py static/                 # Compress a directory
    python scripts/compress_assets.py static/ -o dist/        # Custom output directory
    python scripts/compress_assets.py static/ -a gzip         # gzip only
"""

import argparse
import sys
from pathlib import Path

# Add backend to path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from config import settings
from services.compression_service import ALGORITHMS, AssetCompressor


def main():
    parser = argparse.ArgumentParser(description="Precompress static assets")
    parser.add_argument("directory", help="Directory to scan recursively")
    parser.add_argument(
        "--output", "-o",
        default=settings.compressed_output_dir,
        help=f"Output directory (default: {settings.compressed_output_dir})"
    )
    parser.add_argument(
        "--algorithm", "-a",
        action="append",
        choices=ALGORITHMS,
        help="Algorithm to apply, repeatable (default: gzip and brotli)"
    )
    parser.add_argument(
        "--level",
        type=int,
        default=settings.compression_level,
        help=f"Compression level 1-9 (default: {settings.compression_level})"
    )
    parser.add_argument(
        "--threshold",
        type=int,
        default=settings.compression_threshold,
        help=f"Minimum file size in bytes (default: {settings.compression_threshold})"
    )
    args = parser.parse_args()

    if not Path(args.directory).is_dir():
        print(f"Error: {args.directory} is not a directory")
        sys.exit(1)

    compressor = AssetCompressor(
        level=args.level,
        threshold=args.threshold,
        algorithms=args.algorithm or ("gzip", "brotli"),
        output_dir=args.output,
    )
    stats = compressor.compress_directory(args.directory)
    print(AssetCompressor.optimization_report(stats))

    if stats.errors:
        sys.exit(1)


if __name__ == "__main__":
    main()
