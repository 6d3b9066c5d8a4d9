"""
Drives one generation request: one rendered PDF per record, then a ZIP.

Batch directories are never cleaned up here. A failed batch leaves whatever
it wrote under `output_dir/<batch_id>` for an external reaper; retries get a
fresh batch id and never reuse an earlier attempt's files.
"""

import asyncio
import logging
import re
import time
import uuid
from collections.abc import Callable, Iterable
from pathlib import Path

from archive_builder import build_archive
from certificate_errors import NoRecordsError
from certificate_types import (
    CertificateTemplate,
    DataRecord,
    GeneratedCertificate,
    GenerationOptions,
    GenerationResult,
)
from generator_registry import GeneratorRegistry

logger = logging.getLogger(__name__)

NAME_KEYS = ("name", "Name", "NAME", "fullname", "fullName", "FullName", "full_name", "Full Name")
MAX_NAME_LENGTH = 50
SUFFIX_LENGTH = 8

ProgressCallback = Callable[[int, int], None]


def new_batch_id() -> str:
    return f"batch-{int(time.time() * 1000)}-{uuid.uuid4().hex[:SUFFIX_LENGTH]}"


def sanitize_fragment(value: str) -> str:
    return re.sub(r"[^a-zA-Z0-9_-]", "-", value)[:MAX_NAME_LENGTH]


def derive_output_name(record: DataRecord, index: int) -> str:
    """`certificate-<name>-<random>.pdf`, using `record-<n>` when no name key is set."""
    fragment = None
    for key in NAME_KEYS:
        value = record.get(key)
        if value is not None and str(value).strip():
            fragment = str(value).strip()
            break
    if fragment is None:
        fragment = f"record-{index + 1}"
    return f"certificate-{sanitize_fragment(fragment)}-{uuid.uuid4().hex[:SUFFIX_LENGTH]}.pdf"


class BatchOrchestrator:
    def __init__(self, registry: GeneratorRegistry, output_dir: Path) -> None:
        self.registry = registry
        self.output_dir = Path(output_dir)

    async def generate(
        self,
        template: CertificateTemplate,
        records: Iterable[DataRecord],
        options: GenerationOptions | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> GenerationResult:
        options = options or GenerationOptions()
        records = list(records)
        if not records:
            raise NoRecordsError()

        generator = self.registry.resolve(template.type)
        prepared = await generator.validate_template(template)

        batch_id = new_batch_id()
        batch_dir = self.output_dir / batch_id
        batch_dir.mkdir(parents=True, exist_ok=False)
        logger.info(
            "Generating %d certificate(s) for template %s in %s",
            len(records),
            template.id,
            batch_dir,
        )

        total = len(records)
        done = 0
        names = [derive_output_name(record, i) for i, record in enumerate(records)]
        semaphore = asyncio.Semaphore(options.concurrency)

        async def render(index: int) -> GeneratedCertificate:
            nonlocal done
            output_path = batch_dir / names[index]
            async with semaphore:
                await generator.render_single(template, records[index], output_path, options, prepared)
            done += 1
            logger.debug("[%d/%d] %s", done, total, names[index])
            if on_progress is not None:
                on_progress(done, total)
            return GeneratedCertificate(name=names[index], path=output_path, record=records[index])

        if options.concurrency == 1:
            certificates = [await render(i) for i in range(total)]
        else:
            tasks = [asyncio.create_task(render(i)) for i in range(total)]
            try:
                # gather keeps results in argument order, i.e. record order.
                certificates = list(await asyncio.gather(*tasks))
            except BaseException:
                # First failure aborts the batch: nothing keeps writing after we raise.
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise

        zip_path = self.output_dir / f"certificates-{batch_id}.zip"
        await build_archive(batch_dir, zip_path)
        logger.info("Batch %s complete: %d certificate(s), archive %s", batch_id, total, zip_path)
        return GenerationResult(
            batch_id=batch_id,
            batch_dir=batch_dir,
            certificates=certificates,
            zip_path=zip_path,
        )
