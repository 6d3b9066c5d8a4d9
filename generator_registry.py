from collections.abc import Mapping

from asset_resolvers import FileBackgroundResolver, FileFontResolver
from certificate_errors import UnsupportedTemplateTypeError
from certificate_types import TemplateType
from generators import CertificateGenerator, ImageCertificateGenerator
from settings import Settings


def _type_key(template_type: str | TemplateType) -> str:
    if isinstance(template_type, TemplateType):
        return template_type.value
    return str(template_type).lower()


class GeneratorRegistry:
    """Maps a template type to the generator that renders it.

    Each orchestrator is handed its own registry, so the set of supported
    types is explicit at every call site.
    """

    def __init__(self, generators: Mapping[str, CertificateGenerator] | None = None) -> None:
        self._generators: dict[str, CertificateGenerator] = {}
        for template_type, generator in (generators or {}).items():
            self.register(template_type, generator)

    def register(self, template_type: str | TemplateType, generator: CertificateGenerator) -> None:
        # Re-registering a type replaces the previous generator.
        self._generators[_type_key(template_type)] = generator

    def resolve(self, template_type: str | TemplateType) -> CertificateGenerator:
        key = _type_key(template_type)
        try:
            return self._generators[key]
        except KeyError:
            raise UnsupportedTemplateTypeError(key, self.registered_types()) from None

    def has(self, template_type: str | TemplateType) -> bool:
        return _type_key(template_type) in self._generators

    def registered_types(self) -> list[str]:
        return sorted(self._generators)

    def __contains__(self, template_type: object) -> bool:
        return isinstance(template_type, (str, TemplateType)) and self.has(template_type)


def build_default_registry(settings: Settings) -> GeneratorRegistry:
    image = ImageCertificateGenerator(
        background_resolver=FileBackgroundResolver(settings.assets_dir),
        font_resolver=FileFontResolver(settings.fonts_dir),
    )
    return GeneratorRegistry({TemplateType.IMAGE.value: image})
