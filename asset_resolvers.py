"""Filesystem-backed resolvers for template backgrounds, fonts and templates."""

import asyncio
import io
import json
import logging
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from certificate_errors import (
    FontAssetNotFoundError,
    TemplateAssetNotFoundError,
    TemplateNotFoundError,
)
from certificate_types import BackgroundAsset, CertificateTemplate, FontAsset

logger = logging.getLogger(__name__)

FONT_SUFFIXES = {".ttf", ".otf"}


def _safe_child(base_dir: Path, ref: str) -> Path | None:
    """Resolve *ref* under *base_dir*, or None if it escapes the directory."""
    candidate = (base_dir / ref).resolve()
    try:
        candidate.relative_to(base_dir.resolve())
    except ValueError:
        return None
    return candidate


def read_image_size(data: bytes) -> tuple[int, int]:
    with Image.open(io.BytesIO(data)) as img:
        return img.size


class FileBackgroundResolver:
    def __init__(self, base_dir: Path) -> None:
        self.base_dir = Path(base_dir)

    async def resolve(self, background_ref: str) -> BackgroundAsset:
        if not background_ref:
            raise TemplateAssetNotFoundError("(empty)", "template has no background image")
        path = Path(background_ref)
        if not path.is_absolute():
            path = _safe_child(self.base_dir, background_ref)
            if path is None:
                raise TemplateAssetNotFoundError(background_ref, "path escapes the assets directory")

        try:
            data = await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise TemplateAssetNotFoundError(background_ref, exc.strerror) from exc

        try:
            width, height = read_image_size(data)
        except (UnidentifiedImageError, OSError) as exc:
            raise TemplateAssetNotFoundError(background_ref, "file is not a readable image") from exc
        if width <= 0 or height <= 0:
            raise TemplateAssetNotFoundError(background_ref, f"invalid image size {width}x{height}")

        logger.debug("Resolved background %s (%dx%d)", background_ref, width, height)
        return BackgroundAsset(data=data, width=width, height=height)


class FileFontResolver:
    def __init__(self, fonts_dir: Path) -> None:
        self.fonts_dir = Path(fonts_dir)

    async def resolve(self, font_ref: str) -> FontAsset:
        suffix = Path(font_ref).suffix.lower()
        path = _safe_child(self.fonts_dir, Path(font_ref).name)
        if suffix not in FONT_SUFFIXES or path is None:
            raise FontAssetNotFoundError(font_ref)
        try:
            data = await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise FontAssetNotFoundError(font_ref) from exc
        return FontAsset(name=path.stem, data=data, format=suffix[1:])

    def list_fonts(self) -> list[dict]:
        if not self.fonts_dir.exists():
            return []
        fonts = []
        for font_file in sorted(self.fonts_dir.iterdir()):
            if font_file.suffix.lower() not in FONT_SUFFIXES or not font_file.is_file():
                continue
            fonts.append(
                {
                    "name": font_file.stem,
                    "file": font_file.name,
                    "type": font_file.suffix.lower()[1:],
                    "size_kb": round(font_file.stat().st_size / 1024, 2),
                }
            )
        return fonts


class FileTemplateResolver:
    """Stores templates as `<store_dir>/<id>.json`."""

    def __init__(self, store_dir: Path) -> None:
        self.store_dir = Path(store_dir)

    def _path_for(self, template_id: str) -> Path:
        cleaned = Path(template_id).name
        if not cleaned or cleaned != template_id:
            raise TemplateNotFoundError(f"Template not found: {template_id}")
        return self.store_dir / f"{cleaned}.json"

    async def resolve(self, template_id: str) -> CertificateTemplate:
        path = self._path_for(template_id)
        try:
            raw = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except OSError as exc:
            raise TemplateNotFoundError(f"Template not found: {template_id}") from exc
        try:
            return CertificateTemplate.model_validate(json.loads(raw))
        except ValueError as exc:
            raise TemplateNotFoundError(f"Invalid template {template_id}: {exc}") from exc

    def save(self, template: CertificateTemplate) -> Path:
        path = self._path_for(template.id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(template.model_dump_json(indent=2), encoding="utf-8")
        return path
