import asyncio
import logging
import os
import zipfile
from pathlib import Path

from certificate_errors import ArchiveError

logger = logging.getLogger(__name__)


def _write_zip(source_dir: Path, archive_path: Path) -> list[str]:
    files = sorted(
        (p for p in source_dir.iterdir() if p.is_file() and not p.name.endswith(".part")),
        key=lambda p: p.name,
    )
    partial = archive_path.with_name(archive_path.name + ".part")
    try:
        with zipfile.ZipFile(partial, "w", zipfile.ZIP_DEFLATED, compresslevel=9) as zipf:
            for file_path in files:
                zipf.write(file_path, file_path.name)
        os.replace(partial, archive_path)
    except BaseException:
        partial.unlink(missing_ok=True)
        raise
    return [p.name for p in files]


async def build_archive(source_dir: Path, archive_path: Path) -> Path:
    """Zip every file directly under *source_dir* into *archive_path*.

    Entries are stored by base name. The archive only appears at
    *archive_path* once the zip file has been closed, so a path returned from
    here is always complete.
    """
    source_dir = Path(source_dir)
    archive_path = Path(archive_path)
    if not source_dir.is_dir():
        raise ArchiveError(f"Archive source directory not found: {source_dir}")
    archive_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        names = await asyncio.to_thread(_write_zip, source_dir, archive_path)
    except (OSError, zipfile.BadZipFile, zipfile.LargeZipFile) as exc:
        raise ArchiveError(f"Failed to write archive {archive_path.name}: {exc}") from exc
    logger.info("Wrote archive %s with %d file(s)", archive_path, len(names))
    return archive_path
