"""Tests for the HTTP backend."""

import io
import zipfile

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import TEXT_PAGES
from pdf2epub.config import AppConfig, Settings
from pdf2epub.library import DocumentLibrary
from pdf2epub.pipeline import BookSession
from pdf2epub.server import create_app
from pdf2epub.transcriber import TranscriptionDriver, VisionClient


@pytest.fixture
def config(tmp_path):
    return AppConfig(settings_path=tmp_path / "settings.json", output_dir=tmp_path / "out")


@pytest.fixture
def client(config):
    app = create_app(session=BookSession(config, Settings.default()))
    with TestClient(app) as client:
        yield client


@pytest.fixture
def pdf_path(tmp_path, text_pdf):
    path = tmp_path / "Novel.pdf"
    path.write_bytes(text_pdf)
    return path


@pytest.fixture
def doc_id(client, pdf_path):
    response = client.post("/documents", json={"path": str(pdf_path)})
    assert response.status_code == 200
    return response.json()["document"]["id"]


class TestDocuments:
    """Tests for opening and listing documents."""

    def test_open(self, client, pdf_path):
        data = client.post("/documents", json={"path": str(pdf_path)}).json()

        assert data["document"]["title"] == "Novel"
        assert data["document"]["mode"] == "text"
        assert data["document"]["current"] is True
        assert data["transcriptionStarted"] is False

    def test_missing_file(self, client, tmp_path):
        response = client.post("/documents", json={"path": str(tmp_path / "nope.pdf")})
        assert response.status_code == 404

    def test_not_a_pdf(self, client, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_text("hello")
        assert client.post("/documents", json={"path": str(path)}).status_code == 400

    def test_history_and_remove(self, client, doc_id):
        assert [d["id"] for d in client.get("/documents").json()["documents"]] == [doc_id]

        assert client.delete(f"/documents/{doc_id}").status_code == 200
        assert client.get("/documents").json()["documents"] == []
        assert client.get(f"/documents/{doc_id}").status_code == 404


class TestPages:
    """Tests for page editing endpoints."""

    def test_list_pages(self, client, doc_id):
        data = client.get(f"/documents/{doc_id}/pages").json()

        assert data["edited"] is False
        assert len(data["pages"]) == 3
        assert data["pages"][0]["provenance"] == "extracted"
        assert TEXT_PAGES[0] in data["pages"][0]["text"]

    def test_edit_split_reset(self, client, doc_id):
        client.put(f"/documents/{doc_id}/pages/0", json={"text": "Hello there world"})
        data = client.post(f"/documents/{doc_id}/pages/0/split", json={"offset": 11}).json()

        assert data["edited"] is True
        assert [p["text"] for p in data["pages"][:2]] == ["Hello there", "world"]

        data = client.post(f"/documents/{doc_id}/reset").json()
        assert data["edited"] is False
        assert len(data["pages"]) == 3

    def test_split_rejected(self, client, doc_id):
        response = client.post(f"/documents/{doc_id}/pages/0/split", json={"offset": 0})
        assert response.status_code == 400

    def test_bad_page_index(self, client, doc_id):
        assert client.put(f"/documents/{doc_id}/pages/9", json={"text": "x"}).status_code == 404

    def test_chapters(self, client, doc_id):
        data = client.put(f"/documents/{doc_id}/chapters/1", json={"title": "Intro"}).json()
        assert [(c["pageIndex"], c["title"]) for c in data["chapters"]] == [(1, "Intro")]

        data = client.put(f"/documents/{doc_id}/chapters/1", json={"title": " "}).json()
        assert data["chapters"] == []


class TestTranscription:
    """Tests for transcription control."""

    def test_requires_base_url(self, client, doc_id):
        response = client.post(f"/documents/{doc_id}/transcription/rescan")
        assert response.status_code == 400
        assert "base URL" in response.json()["detail"]

    def test_start_leaves_extracted_text(self, config, pdf_path):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"choices": [{"message": {"content": "vlm"}}]})

        transport = httpx.MockTransport(handler)
        driver = TranscriptionDriver(
            DocumentLibrary(),
            config,
            client_factory=lambda profile: VisionClient(profile, transport=transport),
        )
        settings = Settings.default()
        settings.update_profile(settings.profiles[0].id, base_url="http://vlm.test/v1", model="m")

        app = create_app(session=BookSession(config, settings, driver=driver))
        with TestClient(app) as client:
            doc_id = client.post("/documents", json={"path": str(pdf_path)}).json()["document"]["id"]
            response = client.post(f"/documents/{doc_id}/transcription/start")
            pages = client.get(f"/documents/{doc_id}/pages").json()

        assert response.status_code == 200
        assert response.json()["state"] == "idle"
        assert requests == []
        assert [p["provenance"] for p in pages["pages"]] == ["extracted"] * 3
        assert TEXT_PAGES[0] in pages["pages"][0]["text"]

    def test_status_idle(self, client, doc_id):
        data = client.get(f"/documents/{doc_id}/transcription").json()
        assert data["state"] == "idle"
        assert data["lastCompletedIndex"] is None

    def test_unknown_action(self, client, doc_id):
        assert client.post(f"/documents/{doc_id}/transcription/explode").status_code == 404


class TestExport:
    """Tests for EPUB download."""

    def test_export(self, client, doc_id, config):
        client.put(f"/documents/{doc_id}/metadata", json={"title": "Renamed", "author": "Me"})
        client.put(f"/documents/{doc_id}/chapters/1", json={"title": "Intro"})

        response = client.post(f"/documents/{doc_id}/export")

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/epub+zip"
        assert "Renamed.epub" in response.headers["content-disposition"]
        epub = zipfile.ZipFile(io.BytesIO(response.content))
        assert "OEBPS/chapter2.xhtml" in epub.namelist()
        assert (config.output_dir / "Renamed.epub").exists()

    def test_export_while_exporting(self, client, doc_id):
        client.app.state.session.exporting = True
        response = client.post(f"/documents/{doc_id}/export")
        assert response.status_code == 409


class TestProfiles:
    """Tests for profile management."""

    def test_crud(self, client, config):
        created = client.post("/profiles").json()
        updated = client.put(
            f"/profiles/{created['id']}",
            json={"name": "Local", "baseUrl": "http://localhost:11434/v1", "model": "llava"},
        ).json()
        assert updated["baseUrl"] == "http://localhost:11434/v1"

        data = client.post(f"/profiles/{created['id']}/activate").json()
        assert data["activeProfileId"] == created["id"]
        assert config.settings_store.load().active_profile.name == "Local"

        data = client.delete(f"/profiles/{created['id']}").json()
        assert len(data["profiles"]) == 1

    def test_models_requires_base_url(self, client):
        profile_id = client.get("/profiles").json()["activeProfileId"]
        assert client.get(f"/profiles/{profile_id}/models").status_code == 400

    def test_unknown_profile(self, client):
        assert client.post("/profiles/missing/activate").status_code == 404
