from __future__ import annotations

import zipfile
from pathlib import Path

import pytest

from archive_builder import build_archive
from certificate_errors import ArchiveError


@pytest.fixture
def batch_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "batch-1"
    directory.mkdir()
    (directory / "certificate-a-00000001.pdf").write_bytes(b"%PDF-a" * 100)
    (directory / "certificate-b-00000002.pdf").write_bytes(b"%PDF-b" * 100)
    (directory / "nested").mkdir()
    (directory / "nested" / "ignored.pdf").write_bytes(b"x")
    return directory


async def test_archives_top_level_files_by_base_name(tmp_path, batch_dir):
    archive = await build_archive(batch_dir, tmp_path / "out" / "certificates.zip")

    assert archive == tmp_path / "out" / "certificates.zip"
    with zipfile.ZipFile(archive) as zf:
        assert zf.namelist() == ["certificate-a-00000001.pdf", "certificate-b-00000002.pdf"]
        assert zf.read("certificate-a-00000001.pdf") == b"%PDF-a" * 100
        assert all(info.compress_type == zipfile.ZIP_DEFLATED for info in zf.infolist())
        assert zf.testzip() is None


async def test_no_partial_file_left_after_success(tmp_path, batch_dir):
    archive = await build_archive(batch_dir, tmp_path / "certificates.zip")
    assert not archive.with_name(archive.name + ".part").exists()


async def test_skips_unfinished_pdfs(tmp_path, batch_dir):
    (batch_dir / "certificate-c-00000003.pdf.part").write_bytes(b"half")
    archive = await build_archive(batch_dir, tmp_path / "certificates.zip")
    with zipfile.ZipFile(archive) as zf:
        assert "certificate-c-00000003.pdf.part" not in zf.namelist()


async def test_missing_source_directory_is_fatal(tmp_path):
    with pytest.raises(ArchiveError, match="not found"):
        await build_archive(tmp_path / "nope", tmp_path / "certificates.zip")


async def test_write_failure_is_fatal_and_cleans_up(tmp_path, batch_dir):
    # A directory where the archive should go makes the final rename fail.
    target = tmp_path / "certificates.zip"
    target.mkdir()
    with pytest.raises(ArchiveError):
        await build_archive(batch_dir, target)
    assert not (tmp_path / "certificates.zip.part").exists()
