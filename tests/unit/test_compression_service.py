"""
Unit tests for asset and response compression.

Run: pytest tests/unit/test_compression_service.py -v
"""

import gzip

import brotli
import pytest

from services.compression_service import (
    AssetCompressor,
    ResponseCompressor,
    compress_bytes,
    format_bytes,
)

BIG_TEXT = ("function migrar(dados) { return dados.map(normalizar); }\n" * 100).encode("utf-8")


@pytest.fixture
def assets(tmp_path):
    source = tmp_path / "assets"
    source.mkdir()
    (source / "app.js").write_bytes(BIG_TEXT)
    (source / "logo.png").write_bytes(BIG_TEXT)
    (source / "pequeno.css").write_bytes(b"a{}")
    return source


@pytest.fixture
def compressor(tmp_path):
    return AssetCompressor(level=6, threshold=1024, output_dir=str(tmp_path / "out"))


# ===================
# ALGORITHMS
# ===================

class TestCompressBytes:
    """Tests for compress_bytes()"""

    def test_gzip(self):
        assert gzip.decompress(compress_bytes(BIG_TEXT, "gzip", 6)) == BIG_TEXT

    def test_brotli(self):
        assert brotli.decompress(compress_bytes(BIG_TEXT, "brotli", 6)) == BIG_TEXT

    def test_unknown_algorithm(self):
        with pytest.raises(ValueError):
            compress_bytes(BIG_TEXT, "zip", 6)


# ===================
# ASSETS
# ===================

class TestAssetCompressor:
    """Tests for AssetCompressor"""

    def test_rejects_unknown_algorithm(self):
        with pytest.raises(ValueError):
            AssetCompressor(algorithms=("gzip", "zip"))

    def test_should_compress(self, compressor):
        assert compressor.should_compress("app.JS", 2048) is True
        assert compressor.should_compress("logo.png", 2048) is False
        assert compressor.should_compress("app.js", 100) is False

    def test_compress_file(self, compressor, assets, tmp_path):
        result = compressor.compress_file(str(assets / "app.js"), "brotli")

        assert result.output_path == str(tmp_path / "out" / "app.js.br")
        assert result.original_size == len(BIG_TEXT)
        assert result.compression_ratio < 0.5

    def test_compress_file_below_threshold(self, compressor, assets):
        with pytest.raises(ValueError):
            compressor.compress_file(str(assets / "pequeno.css"))

    def test_compress_directory(self, compressor, assets, tmp_path):
        stats = compressor.compress_directory(str(assets))

        assert stats.total_files == 1
        assert stats.compressed_files == 2
        assert stats.errors == []
        assert sorted(p.name for p in (tmp_path / "out").iterdir()) == ["app.js.br", "app.js.gz"]

    def test_missing_file_is_reported(self, compressor, assets):
        stats = compressor.compress_files([str(assets / "app.js"), str(assets / "sumiu.js")])

        assert stats.compressed_files == 2
        assert len(stats.errors) == 1
        assert "sumiu.js" in stats.errors[0]

    def test_stats_from_results(self, compressor, assets):
        results = [compressor.compress_file(str(assets / "app.js"), a) for a in ("gzip", "brotli")]

        stats = compressor.stats(results, ["sumiu.js: not found"])

        assert stats.total_files == 1
        assert stats.compressed_files == 2
        assert stats.total_original_size == 2 * len(BIG_TEXT)
        assert stats.total_compressed_size == sum(r.compressed_size for r in results)
        assert stats.average_compression_ratio < 0.5
        assert stats.errors == ["sumiu.js: not found"]

    def test_stats_empty(self, compressor):
        stats = compressor.stats([])

        assert stats.total_files == 0
        assert stats.average_compression_ratio == 0.0

    def test_report(self, compressor, assets):
        report = compressor.optimization_report(compressor.compress_directory(str(assets)))

        assert report.startswith("=== Asset Optimization Report ===")
        assert "Total Files: 1" in report
        assert "Errors: 0" in report


# ===================
# RESPONSES
# ===================

class TestResponseCompressor:
    """Tests for Accept-Encoding negotiation"""

    @pytest.mark.parametrize("header,expected", [
        ("gzip, deflate, br", "brotli"),
        ("gzip, deflate", "gzip"),
        ("gzip;q=0, deflate", "deflate"),
        ("identity", None),
        ("", None),
        (None, None),
    ])
    def test_select_encoding(self, header, expected):
        assert ResponseCompressor.select_encoding(header) == expected

    def test_content_encoding(self):
        assert ResponseCompressor.content_encoding("brotli") == "br"
        assert ResponseCompressor.content_encoding("gzip") == "gzip"

    def test_compress(self):
        body = ResponseCompressor(level=6).compress(BIG_TEXT, "gzip")

        assert gzip.decompress(body) == BIG_TEXT


class TestFormatBytes:
    """Tests for format_bytes()"""

    @pytest.mark.parametrize("size,expected", [
        (0, "0 Bytes"),
        (512, "512 Bytes"),
        (1024, "1 KB"),
        (1536, "1.5 KB"),
        (5 * 1024 * 1024, "5 MB"),
    ])
    def test_format(self, size, expected):
        assert format_bytes(size) == expected
