import os
import sys
import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Ensure project root is on sys.path so 'src' is importable during tests
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("SUPABASE_DISABLED", "1")
os.environ.setdefault("USE_LOCAL_DB", "0")
os.environ.setdefault("SUPABASE_STORAGE_LOCAL_DIR", tempfile.mkdtemp(prefix="localcdn-test-"))

from tests.image_factory import make_jpeg_bytes  # noqa: E402


@pytest.fixture()
def client():
    # lazy import after env configured; a fresh app per test means fresh in-memory stores
    from src.main import create_app

    with TestClient(create_app()) as c:
        yield c


@pytest.fixture()
def auth_header() -> dict[str, str]:
    # any token is accepted in disabled mode, each distinct token is a distinct user
    return {"Authorization": "Bearer alice-token"}


@pytest.fixture()
def other_auth_header() -> dict[str, str]:
    return {"Authorization": "Bearer bob-token"}


@pytest.fixture()
def upload(client):
    def _upload(headers, title="sample", visibility="private", tags="", data=None, filename="sample.jpg"):
        files = {"file": (filename, data or make_jpeg_bytes(make="Canon", model="EOS R5"), "image/jpeg")}
        form = {"title": title, "visibility": visibility, "tags": tags}
        r = client.post("/images/upload", headers=headers, files=files, data=form)
        assert r.status_code == 201, r.text
        return r.json()["image"]

    return _upload
