import asyncio
import logging
import tempfile
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse

from asset_resolvers import FileFontResolver, FileTemplateResolver, read_image_size
from batch_orchestrator import BatchOrchestrator
from certificate_errors import (
    ArchiveError,
    CertificateError,
    InvalidTemplateError,
    NoRecordsError,
    RecordSourceError,
    RenderError,
    TemplateAssetNotFoundError,
    TemplateNotFoundError,
    UnsupportedTemplateTypeError,
)
from certificate_types import CertificateTemplate, GenerationOptions, PackageType
from generator_registry import GeneratorRegistry, build_default_registry
from job_queue import Job, JobQueue, JobState, RetryPolicy
from record_source import RecordSource
from settings import Settings, configure_logging, get_settings

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: list[tuple[type[CertificateError], int]] = [
    (TemplateNotFoundError, 404),
    (NoRecordsError, 400),
    (RecordSourceError, 400),
    (InvalidTemplateError, 400),
    (UnsupportedTemplateTypeError, 400),
    (TemplateAssetNotFoundError, 422),
    (RenderError, 500),
    (ArchiveError, 500),
]


def status_for(exc: CertificateError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


def write_upload_to_temp(upload: UploadFile, suffix: str, temp_dir: Path) -> Path:
    temp_dir.mkdir(parents=True, exist_ok=True)
    temp_path = Path(
        tempfile.NamedTemporaryFile(
            delete=False,
            suffix=suffix,
            dir=temp_dir,
        ).name
    )
    contents = upload.file.read()
    temp_path.write_bytes(contents)
    return temp_path


def create_app(settings: Settings | None = None, registry: GeneratorRegistry | None = None) -> FastAPI:
    settings = settings or get_settings()
    registry = registry or build_default_registry(settings)
    templates = FileTemplateResolver(settings.templates_dir)
    fonts = FileFontResolver(settings.fonts_dir)
    orchestrator = BatchOrchestrator(registry, settings.output_dir)
    uploads_dir = settings.output_dir / "uploads"

    async def run_generation_job(job: Job) -> dict[str, Any]:
        payload = job.payload
        template = await templates.resolve(payload["template_id"])
        records = await asyncio.to_thread(RecordSource.from_file, Path(payload["data_path"]))
        result = await orchestrator.generate(
            template,
            records,
            GenerationOptions(package_type=payload["package_type"], concurrency=payload["concurrency"]),
            on_progress=job.set_progress,
        )
        return {
            "batch_id": result.batch_id,
            "zip_path": str(result.zip_path),
            "count": result.count,
            "certificates": [cert.name for cert in result.certificates],
        }

    def discard_upload(job: Job) -> None:
        Path(job.payload["data_path"]).unlink(missing_ok=True)

    queue = JobQueue(
        run_generation_job,
        workers=settings.workers,
        retry_policy=RetryPolicy(max_attempts=settings.max_attempts, backoff_base=settings.backoff_seconds),
        on_finished=discard_upload,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        queue.start()
        yield
        await queue.stop()

    app = FastAPI(title="Certificate Generator API", lifespan=lifespan)
    app.state.settings = settings
    app.state.registry = registry
    app.state.queue = queue

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={
                "message": "Request validation failed.",
                "detail": exc.errors(),
            },
        )

    @app.exception_handler(CertificateError)
    async def certificate_exception_handler(request: Request, exc: CertificateError) -> JSONResponse:
        status_code = status_for(exc)
        if status_code >= 500:
            logger.error("Certificate generation failed: %s", exc)
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    @app.get("/api/health")
    def health() -> dict[str, Any]:
        return {"status": "ok", "template_types": registry.registered_types()}

    @app.get("/api/templates/{template_id}")
    async def get_template(template_id: str) -> dict[str, Any]:
        template = await templates.resolve(template_id)
        return template.model_dump(mode="json")

    @app.post("/api/templates")
    def save_template(template: CertificateTemplate) -> dict[str, str]:
        if not registry.has(template.type):
            raise UnsupportedTemplateTypeError(template.type.value, registry.registered_types())
        templates.save(template)
        return {"message": f"Saved: {template.id}", "id": template.id}

    @app.post("/api/upload-background")
    def upload_background(image: UploadFile = File(...)) -> dict[str, Any]:
        suffix = Path(image.filename or "background.png").suffix.lower()
        if suffix not in {".png", ".jpg", ".jpeg"}:
            raise HTTPException(status_code=400, detail=f"Unsupported image type: {suffix or '(none)'}")
        contents = image.file.read()
        try:
            width, height = read_image_size(contents)
        except OSError as exc:
            raise HTTPException(status_code=400, detail=f"Unreadable image: {exc}") from exc
        settings.assets_dir.mkdir(parents=True, exist_ok=True)
        ref = f"{uuid.uuid4().hex}{suffix}"
        (settings.assets_dir / ref).write_bytes(contents)
        return {"background_ref": ref, "width": width, "height": height}

    @app.get("/api/list-custom-fonts")
    def list_custom_fonts() -> dict[str, Any]:
        available_fonts = fonts.list_fonts()
        return {"custom_fonts": available_fonts, "count": len(available_fonts)}

    @app.post("/api/upload-font")
    def upload_font(font_file: UploadFile = File(...)) -> dict[str, Any]:
        """Upload a custom font file (.ttf or .otf) to the fonts directory."""
        filename = font_file.filename or "unknown.ttf"
        file_ext = filename.lower().split(".")[-1]
        if file_ext not in ["ttf", "otf"]:
            raise HTTPException(
                status_code=400,
                detail=f"Invalid file type. Only .ttf and .otf files are allowed. Got: .{file_ext}",
            )

        # Sanitize filename (remove any path components and special chars)
        safe_filename = "".join(c for c in Path(filename).name if c.isalnum() or c in ".-_ ")
        settings.fonts_dir.mkdir(parents=True, exist_ok=True)
        target_path = settings.fonts_dir / safe_filename
        if target_path.exists():
            raise HTTPException(
                status_code=409,
                detail=f"Font file '{safe_filename}' already exists. Delete it first or rename your file.",
            )

        contents = font_file.file.read()
        target_path.write_bytes(contents)
        return {
            "message": "Font uploaded successfully",
            "filename": safe_filename,
            "font_name": target_path.stem,
            "size_kb": round(len(contents) / 1024, 2),
        }

    @app.delete("/api/delete-font/{filename}")
    def delete_font(filename: str) -> dict[str, str]:
        safe_filename = Path(filename).name
        font_path = settings.fonts_dir / safe_filename
        if font_path.suffix.lower() not in [".ttf", ".otf"]:
            raise HTTPException(status_code=400, detail="Can only delete .ttf or .otf font files.")
        if not font_path.exists():
            raise HTTPException(status_code=404, detail=f"Font file '{safe_filename}' not found.")
        font_path.unlink()
        return {"message": f"Font '{safe_filename}' deleted successfully.", "filename": safe_filename}

    @app.post("/api/generate")
    async def generate(
        template_id: str = Form(...),
        data_file: UploadFile = File(...),
        package_type: PackageType = Form(PackageType.FREE),
        concurrency: int = Form(1, ge=1),
    ) -> FileResponse:
        suffix = Path(data_file.filename or "data.csv").suffix
        data_path = await asyncio.to_thread(write_upload_to_temp, data_file, suffix, uploads_dir)
        try:
            template = await templates.resolve(template_id)
            records = await asyncio.to_thread(RecordSource.from_file, data_path)
            result = await orchestrator.generate(
                template,
                records,
                GenerationOptions(package_type=package_type, concurrency=concurrency),
            )
        finally:
            data_path.unlink(missing_ok=True)

        return FileResponse(
            result.zip_path,
            media_type="application/zip",
            filename="certificates.zip",
            headers={"X-Certificate-Count": str(result.count), "X-Batch-Id": result.batch_id},
        )

    @app.post("/api/jobs", status_code=202)
    async def create_job(
        template_id: str = Form(...),
        data_file: UploadFile = File(...),
        package_type: PackageType = Form(PackageType.FREE),
        concurrency: int = Form(1, ge=1),
    ) -> dict[str, Any]:
        suffix = Path(data_file.filename or "data.csv").suffix
        data_path = await asyncio.to_thread(write_upload_to_temp, data_file, suffix, uploads_dir)
        # Reject empty or unreadable datasets before queueing anything.
        try:
            records = await asyncio.to_thread(RecordSource.from_file, data_path)
            records.validate_required([])
        except CertificateError:
            data_path.unlink(missing_ok=True)
            raise
        job = queue.submit(
            {
                "template_id": template_id,
                "data_path": str(data_path),
                "package_type": package_type,
                "concurrency": concurrency,
            }
        )
        return job.to_dict()

    def get_job_or_404(job_id: str) -> Job:
        job = queue.get(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
        return job

    @app.get("/api/jobs/{job_id}")
    def get_job(job_id: str) -> dict[str, Any]:
        job = get_job_or_404(job_id)
        body = job.to_dict()
        if job.state is JobState.COMPLETED:
            body["result"] = {k: v for k, v in job.result.items() if k != "zip_path"}
        return body

    @app.get("/api/jobs/{job_id}/download")
    def download_job(job_id: str) -> FileResponse:
        job = get_job_or_404(job_id)
        if job.state is not JobState.COMPLETED:
            raise HTTPException(status_code=409, detail=f"Job is {job.state.value}, not completed.")
        return FileResponse(job.result["zip_path"], media_type="application/zip", filename="certificates.zip")

    return app


def main() -> None:
    import uvicorn

    configure_logging()
    uvicorn.run(create_app(), host="127.0.0.1", port=8000)


if __name__ == "__main__":
    main()
