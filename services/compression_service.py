"""
Asset and response compression.

AssetCompressor writes .gz / .deflate / .br copies of static files.
ResponseCompressor picks an encoding from Accept-Encoding and compresses
response bodies for the compression middleware.
"""

import gzip
import os
import time
import zlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional, Sequence
import brotli
import structlog

from config import settings

logger = structlog.get_logger(__name__)

ALGORITHMS = ("gzip", "deflate", "brotli")

DEFAULT_EXTENSIONS = (".js", ".css", ".html", ".json", ".svg", ".txt", ".xml")

FILE_SUFFIXES = {
    "gzip": ".gz",
    "deflate": ".deflate",
    "brotli": ".br",
}

CONTENT_ENCODINGS = {
    "gzip": "gzip",
    "deflate": "deflate",
    "brotli": "br",
}


def compress_bytes(data: bytes, algorithm: str, level: int) -> bytes:
    """
    Compress data with one of ALGORITHMS.

    level is 1..9 for gzip / deflate and is used as brotli quality.
    """
    if algorithm == "gzip":
        return gzip.compress(data, compresslevel=level)
    if algorithm == "deflate":
        return zlib.compress(data, level)
    if algorithm == "brotli":
        return brotli.compress(data, quality=level)
    raise ValueError(f"Unsupported compression algorithm: {algorithm}")


@dataclass
class CompressionResult:
    original_size: int
    compressed_size: int
    algorithm: str
    output_path: str
    processing_time: float
    source_path: str = ""

    @property
    def compression_ratio(self) -> float:
        return self.compressed_size / self.original_size if self.original_size else 0.0

    def to_dict(self) -> dict:
        return {
            "original_size": self.original_size,
            "compressed_size": self.compressed_size,
            "compression_ratio": round(self.compression_ratio, 4),
            "algorithm": self.algorithm,
            "source_path": self.source_path,
            "output_path": self.output_path,
            "processing_time": round(self.processing_time, 2),
        }


@dataclass
class CompressionStats:
    total_files: int = 0
    compressed_files: int = 0
    total_original_size: int = 0
    total_compressed_size: int = 0
    processing_time: float = 0.0
    errors: list[str] = field(default_factory=list)

    @property
    def average_compression_ratio(self) -> float:
        if not self.total_original_size:
            return 0.0
        return self.total_compressed_size / self.total_original_size

    def to_dict(self) -> dict:
        return {
            "total_files": self.total_files,
            "compressed_files": self.compressed_files,
            "total_original_size": self.total_original_size,
            "total_compressed_size": self.total_compressed_size,
            "average_compression_ratio": round(self.average_compression_ratio, 4),
            "processing_time": round(self.processing_time, 2),
            "errors": list(self.errors),
        }


class AssetCompressor:
    """
    Compresses files on disk into output_dir.

    Args:
        level: Compression level (1-9)
        threshold: Minimum file size in bytes
        algorithms: Algorithms applied to every file
        extensions: File extensions eligible for compression
        output_dir: Where compressed copies are written
    """

    def __init__(
        self,
        level: Optional[int] = None,
        threshold: Optional[int] = None,
        algorithms: Sequence[str] = ("gzip", "brotli"),
        extensions: Sequence[str] = DEFAULT_EXTENSIONS,
        output_dir: Optional[str] = None,
    ):
        self.level = level if level is not None else settings.compression_level
        self.threshold = threshold if threshold is not None else settings.compression_threshold
        unknown = [a for a in algorithms if a not in ALGORITHMS]
        if unknown:
            raise ValueError(f"Unsupported compression algorithm: {unknown[0]}")
        self.algorithms = tuple(algorithms)
        self.extensions = tuple(e.lower() for e in extensions)
        self.output_dir = Path(output_dir or settings.compressed_output_dir)

    def compress(self, data: bytes, algorithm: str = "gzip") -> bytes:
        return compress_bytes(data, algorithm, self.level)

    def should_compress(self, path: str, size: int) -> bool:
        return Path(path).suffix.lower() in self.extensions and size >= self.threshold

    def compress_file(self, path: str, algorithm: str = "gzip") -> CompressionResult:
        """
        Write a compressed copy of one file.

        Raises:
            ValueError: If the file is below the threshold or its extension
                is not eligible
            OSError: If the file cannot be read or written
        """
        start = time.perf_counter()
        source = Path(path)
        size = source.stat().st_size

        if size < self.threshold:
            raise ValueError(f"File size {size} bytes is below threshold {self.threshold}")
        if source.suffix.lower() not in self.extensions:
            raise ValueError(f"Extension {source.suffix.lower()} is not in allowed extensions")

        data = source.read_bytes()
        compressed = self.compress(data, algorithm)

        self.output_dir.mkdir(parents=True, exist_ok=True)
        output = self.output_dir / f"{source.name}{FILE_SUFFIXES[algorithm]}"
        output.write_bytes(compressed)

        return CompressionResult(
            original_size=len(data),
            compressed_size=len(compressed),
            algorithm=algorithm,
            output_path=str(output),
            processing_time=(time.perf_counter() - start) * 1000,
            source_path=str(source),
        )

    def compress_files(self, paths: Iterable[str]) -> CompressionStats:
        """Compress every file with every configured algorithm; failures go to errors."""
        start = time.perf_counter()
        paths = list(paths)
        results: list[CompressionResult] = []
        errors: list[str] = []

        for path in paths:
            try:
                for algorithm in self.algorithms:
                    results.append(self.compress_file(path, algorithm))
            except (OSError, ValueError) as e:
                errors.append(f"{path}: {e}")

        stats = self.stats(results, errors)
        stats.total_files = len(paths)
        stats.processing_time = (time.perf_counter() - start) * 1000
        logger.info(
            "assets_compressed",
            files=stats.total_files,
            compressed=stats.compressed_files,
            errors=len(stats.errors),
        )
        return stats

    def compress_directory(self, directory: str) -> CompressionStats:
        files = []
        for root, _dirs, names in os.walk(directory):
            for name in sorted(names):
                path = os.path.join(root, name)
                if self.should_compress(path, os.path.getsize(path)):
                    files.append(path)
        return self.compress_files(files)

    @staticmethod
    def stats(results: Iterable[CompressionResult], errors: Iterable[str] = ()) -> CompressionStats:
        """
        Totals over compression results, one result per file and algorithm.

        total_files counts distinct source files; processing_time is the
        sum of the per result times.
        """
        results = list(results)
        return CompressionStats(
            total_files=len({r.source_path for r in results}),
            compressed_files=len(results),
            total_original_size=sum(r.original_size for r in results),
            total_compressed_size=sum(r.compressed_size for r in results),
            processing_time=sum(r.processing_time for r in results),
            errors=list(errors),
        )

    @staticmethod
    def optimization_report(stats: CompressionStats) -> str:
        """Plain text summary of a compression run."""
        savings = stats.total_original_size - stats.total_compressed_size
        percent = (savings / stats.total_original_size * 100) if stats.total_original_size else 0.0

        lines = [
            "=== Asset Optimization Report ===",
            f"Total Files: {stats.total_files}",
            f"Compressed Files: {stats.compressed_files}",
            f"Original Size: {format_bytes(stats.total_original_size)}",
            f"Compressed Size: {format_bytes(stats.total_compressed_size)}",
            f"Space Saved: {format_bytes(savings)} ({percent:.2f}%)",
            f"Average Compression Ratio: {stats.average_compression_ratio * 100:.2f}%",
            f"Processing Time: {stats.processing_time:.0f}ms",
            f"Errors: {len(stats.errors)}",
        ]
        if stats.errors:
            lines.append("")
            lines.append("Errors:")
            lines.extend(stats.errors)
        return "\n".join(lines)


class ResponseCompressor:
    """Accept-Encoding negotiation for HTTP responses."""

    def __init__(self, level: Optional[int] = None):
        self.level = level if level is not None else settings.compression_level

    @staticmethod
    def select_encoding(accept_encoding: Optional[str]) -> Optional[str]:
        """Algorithm to use, preferring brotli, then gzip, then deflate."""
        if not accept_encoding:
            return None

        accepted = set()
        for part in accept_encoding.lower().split(","):
            token, _, params = part.strip().partition(";")
            if params.strip().replace(" ", "") in ("q=0", "q=0.0"):
                continue
            accepted.add(token.strip())

        if "br" in accepted:
            return "brotli"
        if "gzip" in accepted:
            return "gzip"
        if "deflate" in accepted:
            return "deflate"
        return None

    def compress(self, body: bytes, algorithm: str) -> bytes:
        return compress_bytes(body, algorithm, self.level)

    @staticmethod
    def content_encoding(algorithm: str) -> str:
        return CONTENT_ENCODINGS.get(algorithm, "identity")


def format_bytes(size: int) -> str:
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    index = 0
    value = float(size)
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{round(value, 2):g} {units[index]}"
