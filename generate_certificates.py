import argparse
import asyncio
import json
import logging
from pathlib import Path

from asset_resolvers import FileBackgroundResolver, FileFontResolver
from batch_orchestrator import BatchOrchestrator
from certificate_errors import CertificateError
from certificate_types import CertificateTemplate, GenerationOptions, PackageType, TemplateType
from generator_registry import GeneratorRegistry
from generators import ImageCertificateGenerator
from record_source import RecordSource
from settings import configure_logging, get_settings

logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    settings = get_settings()
    parser = argparse.ArgumentParser(
        description="Render one PDF certificate per data row over an image template and zip them."
    )
    parser.add_argument("--template-json", required=True, help="Path to the template JSON (fields + background).")
    parser.add_argument("--data", required=True, help="CSV or Excel file with one row per certificate.")
    parser.add_argument(
        "--output-dir",
        default=str(settings.output_dir),
        help="Directory that receives the batch folder and ZIP archive.",
    )
    parser.add_argument(
        "--assets-dir",
        default=None,
        help="Directory background references are relative to (defaults to the template's folder).",
    )
    parser.add_argument("--fonts-dir", default=str(settings.fonts_dir), help="Directory with custom .ttf/.otf fonts.")
    parser.add_argument(
        "--package-type",
        default=PackageType.FREE.value,
        choices=[p.value for p in PackageType],
        help="Package tier; 'free' adds the FREE watermark.",
    )
    parser.add_argument("--concurrency", type=int, default=1, help="Certificates rendered at once.")
    parser.add_argument("--manifest", help="Optional path to write the JSON manifest.")
    parser.add_argument("--log-level", default=settings.log_level, help="Logging level.")
    return parser.parse_args()


async def run(args: argparse.Namespace) -> dict:
    template_path = Path(args.template_json)
    template = CertificateTemplate.model_validate_json(template_path.read_text(encoding="utf-8"))
    records = RecordSource.from_file(Path(args.data))

    assets_dir = Path(args.assets_dir) if args.assets_dir else template_path.parent
    registry = GeneratorRegistry()
    registry.register(
        TemplateType.IMAGE,
        ImageCertificateGenerator(
            background_resolver=FileBackgroundResolver(assets_dir),
            font_resolver=FileFontResolver(Path(args.fonts_dir)),
        ),
    )
    orchestrator = BatchOrchestrator(registry, Path(args.output_dir))

    def report(done: int, total: int) -> None:
        print(f"  [{done}/{total}]")

    print(f"Generating {len(records)} certificates...")
    result = await orchestrator.generate(
        template,
        records,
        GenerationOptions(package_type=PackageType(args.package_type), concurrency=args.concurrency),
        on_progress=report,
    )
    return {
        "batch_id": result.batch_id,
        "batch_dir": str(result.batch_dir),
        "zip_path": str(result.zip_path),
        "count": result.count,
        "certificates": result.manifest(),
    }


def main() -> int:
    args = parse_args()
    configure_logging(args.log_level.upper())
    try:
        summary = asyncio.run(run(args))
    except CertificateError as exc:
        logger.error("%s", exc)
        return 1

    if args.manifest:
        manifest_path = Path(args.manifest)
        manifest_path.parent.mkdir(parents=True, exist_ok=True)
        manifest_path.write_text(json.dumps(summary, indent=2), encoding="utf-8")
        print(f"Wrote manifest: {manifest_path}")
    print(f"Done! Generated {summary['count']} certificates in {summary['batch_dir']}")
    print(f"Created ZIP archive: {summary['zip_path']}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
