"""
Shared fixtures: solid-colour background PNGs generated with Pillow in
tmp_path, a registry wired to those directories, and small PDF helpers.
"""
from __future__ import annotations

from pathlib import Path

import pytest
from PIL import Image
from pypdf import PdfReader

from asset_resolvers import FileBackgroundResolver, FileFontResolver
from batch_orchestrator import BatchOrchestrator
from certificate_types import CertificateTemplate, FieldMapping, TemplateType
from generator_registry import GeneratorRegistry
from generators import ImageCertificateGenerator

BACKGROUND_SIZE = (1000, 700)


def make_background(path: Path, size: tuple[int, int] = BACKGROUND_SIZE, color=(240, 235, 220)) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, color).save(path, format="PNG")
    return path


def page_content(pdf_path: Path) -> bytes:
    """Decompressed content stream of the first page."""
    page = PdfReader(str(pdf_path)).pages[0]
    return page.get_contents().get_data()


@pytest.fixture
def assets_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "assets"
    make_background(directory / "background.png")
    return directory


@pytest.fixture
def fonts_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "fonts"
    directory.mkdir()
    return directory


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    return tmp_path / "output"


@pytest.fixture
def background_resolver(assets_dir: Path) -> FileBackgroundResolver:
    return FileBackgroundResolver(assets_dir)


@pytest.fixture
def font_resolver(fonts_dir: Path) -> FileFontResolver:
    return FileFontResolver(fonts_dir)


@pytest.fixture
def registry(background_resolver, font_resolver) -> GeneratorRegistry:
    registry = GeneratorRegistry()
    registry.register(TemplateType.IMAGE, ImageCertificateGenerator(background_resolver, font_resolver))
    return registry


@pytest.fixture
def orchestrator(registry: GeneratorRegistry, output_dir: Path) -> BatchOrchestrator:
    return BatchOrchestrator(registry, output_dir)


@pytest.fixture
def name_template() -> CertificateTemplate:
    return CertificateTemplate(
        id="tpl-1",
        name="Course completion",
        type=TemplateType.IMAGE,
        background_ref="background.png",
        fields=[FieldMapping(source_key="name", x=500, y=280, align="center", max_width=800)],
    )
