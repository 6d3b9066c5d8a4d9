from __future__ import annotations

import asyncio
import io
import time
import zipfile

import pytest
from fastapi.testclient import TestClient

from app_server import create_app
from record_source import RecordSource
from settings import Settings

TEMPLATE = {
    "id": "award",
    "name": "Award",
    "type": "image",
    "backgroundRef": "background.png",
    "fields": [{"csvColumn": "name", "x": 500, "y": 280, "align": "center", "width": 800}],
}


@pytest.fixture
def settings(tmp_path, assets_dir, fonts_dir, output_dir) -> Settings:
    return Settings(
        output_dir=output_dir,
        assets_dir=assets_dir,
        fonts_dir=fonts_dir,
        templates_dir=tmp_path / "templates",
        workers=1,
        max_attempts=2,
        backoff_seconds=0,
    )


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as test_client:
        yield test_client


def csv_upload(text: str) -> dict:
    return {"data_file": ("people.csv", io.BytesIO(text.encode("utf-8")), "text/csv")}


def save_template(client: TestClient) -> None:
    response = client.post("/api/templates", json=TEMPLATE)
    assert response.status_code == 200, response.text


def test_health(client):
    response = client.get("/api/health")
    assert response.json() == {"status": "ok", "template_types": ["image"]}


def test_template_round_trip(client):
    save_template(client)
    body = client.get("/api/templates/award").json()
    assert body["background_ref"] == "background.png"
    assert body["fields"][0]["source_key"] == "name"
    assert client.get("/api/templates/unknown").status_code == 404


def test_template_with_unregistered_type_is_rejected(client):
    response = client.post("/api/templates", json={**TEMPLATE, "type": "html"})
    assert response.status_code == 400
    assert "Unsupported template type" in response.json()["detail"]


def test_generate_returns_zip(client):
    save_template(client)
    response = client.post(
        "/api/generate",
        data={"template_id": "award", "package_type": "premium"},
        files=csv_upload("name\nAda Lovelace\nAlan Turing\n"),
    )
    assert response.status_code == 200, response.text
    assert response.headers["x-certificate-count"] == "2"
    with zipfile.ZipFile(io.BytesIO(response.content)) as zf:
        names = zf.namelist()
    assert len(names) == 2
    assert any(name.startswith("certificate-Ada-Lovelace-") for name in names)


def test_generate_with_no_rows_is_client_error(client, output_dir):
    save_template(client)
    response = client.post("/api/generate", data={"template_id": "award"}, files=csv_upload("name\n"))
    assert response.status_code == 400
    assert "No records" in response.json()["detail"]
    assert not list(output_dir.glob("batch-*"))


def test_generate_with_missing_background(client):
    client.post("/api/templates", json={**TEMPLATE, "backgroundRef": "gone.png"})
    response = client.post("/api/generate", data={"template_id": "award"}, files=csv_upload("name\nAda\n"))
    assert response.status_code == 422
    assert "Template asset not found" in response.json()["detail"]


def wait_for_job(client: TestClient, job_id: str, timeout: float = 20) -> dict:
    deadline = time.monotonic() + timeout
    body = client.get(f"/api/jobs/{job_id}").json()
    while body["state"] in ("pending", "processing") and time.monotonic() < deadline:
        time.sleep(0.05)
        body = client.get(f"/api/jobs/{job_id}").json()
    return body


def test_job_lifecycle(client, output_dir):
    save_template(client)
    response = client.post("/api/jobs", data={"template_id": "award"}, files=csv_upload("name\nAda\nAlan\n"))
    assert response.status_code == 202
    body = wait_for_job(client, response.json()["id"])
    job_id = body["id"]

    assert body["state"] == "completed", body
    assert body["progress"] == 100.0
    assert body["result"]["count"] == 2
    download = client.get(f"/api/jobs/{job_id}/download")
    assert download.status_code == 200
    with zipfile.ZipFile(io.BytesIO(download.content)) as zf:
        assert sorted(zf.namelist()) == sorted(body["result"]["certificates"])
    assert not list((output_dir / "uploads").iterdir())


def test_failed_job_removes_its_upload(client, output_dir):
    response = client.post("/api/jobs", data={"template_id": "never-saved"}, files=csv_upload("name\nAda\n"))
    assert response.status_code == 202
    body = wait_for_job(client, response.json()["id"])

    assert body["state"] == "failed", body
    assert body["error"] == "Template not found: never-saved"
    assert not list((output_dir / "uploads").iterdir())


def test_dataset_parsing_runs_off_the_event_loop(client, monkeypatch):
    parsed_on_loop: list[bool] = []
    original = RecordSource.from_file

    def from_file(path):
        try:
            asyncio.get_running_loop()
            parsed_on_loop.append(True)
        except RuntimeError:
            parsed_on_loop.append(False)
        return original(path)

    monkeypatch.setattr(RecordSource, "from_file", from_file)
    save_template(client)
    assert client.post("/api/generate", data={"template_id": "award"}, files=csv_upload("name\nAda\n")).status_code == 200
    job = client.post("/api/jobs", data={"template_id": "award"}, files=csv_upload("name\nAda\n")).json()
    assert wait_for_job(client, job["id"])["state"] == "completed"

    assert parsed_on_loop == [False, False, False]


def test_job_with_empty_dataset_is_rejected_up_front(client):
    save_template(client)
    response = client.post("/api/jobs", data={"template_id": "award"}, files=csv_upload("name\n"))
    assert response.status_code == 400


def test_unknown_job(client):
    assert client.get("/api/jobs/nope").status_code == 404


def test_font_upload_list_delete(client):
    upload = client.post("/api/upload-font", files={"font_file": ("Script.ttf", b"fake-font", "font/ttf")})
    assert upload.status_code == 200
    assert client.get("/api/list-custom-fonts").json()["count"] == 1
    duplicate = client.post("/api/upload-font", files={"font_file": ("Script.ttf", b"fake-font", "font/ttf")})
    assert duplicate.status_code == 409
    assert client.post("/api/upload-font", files={"font_file": ("x.woff", b"x", "font/woff")}).status_code == 400
    assert client.delete("/api/delete-font/Script.ttf").status_code == 200
    assert client.get("/api/list-custom-fonts").json()["count"] == 0


def test_upload_background(client, settings):
    from conftest import make_background

    path = make_background(settings.output_dir.parent / "upload.png", size=(640, 480))
    response = client.post("/api/upload-background", files={"image": ("upload.png", path.read_bytes(), "image/png")})
    assert response.status_code == 200
    body = response.json()
    assert (body["width"], body["height"]) == (640, 480)
    assert (settings.assets_dir / body["background_ref"]).exists()
