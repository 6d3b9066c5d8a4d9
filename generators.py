"""Per-template-type certificate generators.

A generator only knows how to validate a template of its type and render a
single record. Batch iteration, file naming and archiving live in
`batch_orchestrator` and are shared by every type.
"""

import abc
import logging
from pathlib import Path
from typing import Any

from certificate_errors import InvalidTemplateError
from certificate_overlay import render_certificate
from certificate_types import (
    BackgroundAsset,
    CertificateTemplate,
    DataRecord,
    GenerationOptions,
    TemplateType,
)

logger = logging.getLogger(__name__)


class CertificateGenerator(abc.ABC):
    template_type: str = ""

    @abc.abstractmethod
    async def validate_template(self, template: CertificateTemplate) -> Any:
        """Raise a `CertificateError` if *template* cannot be rendered.

        The return value is handed back unchanged to every `render_single`
        call of the same batch, so per-batch assets are loaded exactly once.
        """

    @abc.abstractmethod
    async def render_single(
        self,
        template: CertificateTemplate,
        record: DataRecord,
        output_path: Path,
        options: GenerationOptions,
        prepared: Any = None,
    ) -> Path:
        """Render one record to *output_path* and return the written path."""


class ImageCertificateGenerator(CertificateGenerator):
    """Draws field values over a raster background, one PDF page per record."""

    template_type = TemplateType.IMAGE.value

    def __init__(self, background_resolver, font_resolver=None) -> None:
        self.background_resolver = background_resolver
        self.font_resolver = font_resolver

    async def validate_template(self, template: CertificateTemplate) -> BackgroundAsset:
        if template.type != TemplateType.IMAGE:
            raise InvalidTemplateError(f'Template type must be "image", got "{template.type.value}"')
        # Read fresh for every batch so a replaced or deleted asset is noticed;
        # the asset then stays fixed for the rest of that batch.
        return await self.background_resolver.resolve(template.background_ref)

    async def render_single(
        self,
        template: CertificateTemplate,
        record: DataRecord,
        output_path: Path,
        options: GenerationOptions,
        prepared: BackgroundAsset | None = None,
    ) -> Path:
        background = prepared
        if background is None:
            background = await self.background_resolver.resolve(template.background_ref)
        return await render_certificate(
            background=background,
            fields=template.fields,
            record=record,
            output_path=output_path,
            package_type=options.package_type,
            font_resolver=self.font_resolver,
        )
