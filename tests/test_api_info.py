from unittest.mock import patch

from fastapi import FastAPI
from fastapi.testclient import TestClient

from homeport.api.routers.info import router


def _client():
    app = FastAPI()
    app.include_router(router)
    return TestClient(app)


def test_version():
    with patch("homeport.version.get_version", return_value="1.4.2"):
        response = _client().get("/info/version")

    assert response.status_code == 200
    assert response.json()["data"] == {"version": "1.4.2"}


def test_version_error():
    with patch("homeport.version.get_version", side_effect=RuntimeError("no git")):
        response = _client().get("/info/version")

    assert response.status_code == 500
    assert response.json()["detail"] == "no git"


def test_stamped_version_wins():
    from homeport import version

    with patch.object(version, "__version__", "2.0.0"):
        assert version.get_version() == "2.0.0"


def test_git_unavailable_falls_back():
    from homeport import version

    with patch("homeport.version.subprocess.run", side_effect=FileNotFoundError()):
        assert version.get_version() == "test"
