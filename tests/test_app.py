from __future__ import annotations

import time
from pathlib import Path

from fastapi.testclient import TestClient

from literal_worker.app.main import create_app
from literal_worker.app.settings import Settings

from support import RecordingGenerator, StaticLyrics, make_lines


def _settings(tmp_path: Path) -> Settings:
    return Settings(data_root=tmp_path, throttle_interval_seconds=0.0)


def _app(tmp_path: Path, generator: RecordingGenerator | None = None):
    lyrics = StaticLyrics({"track42": make_lines((0, "a"), (1000, "b"), (2000, "a"))})
    return create_app(
        _settings(tmp_path),
        lyrics=lyrics,
        generator=generator or RecordingGenerator(delay=0.05),
    )


def test_create_app(tmp_path: Path) -> None:
    app = _app(tmp_path)
    assert app.title == "Literal Worker"
    assert (tmp_path / "images").is_dir()


def test_health_endpoint(tmp_path: Path) -> None:
    with TestClient(_app(tmp_path)) as client:
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["active_jobs"] == 0


def test_generate_and_poll_until_done(tmp_path: Path) -> None:
    generator = RecordingGenerator(delay=0.2)
    with TestClient(_app(tmp_path, generator)) as client:
        response = client.get("/generate/track42")
        assert response.status_code == 200
        generation_id = response.json()["generationId"]

        for _ in range(100):
            body = client.get(f"/poll/{generation_id}").json()
            if body["status"] == "done":
                break
            assert body["status"] in {"waiting", "inProgress"}
            if body["status"] == "waiting":
                assert body == {"status": "waiting", "queuePosition": 2}
            else:
                assert set(body) == {"status", "done", "total"}
                assert body["total"] == 3
            time.sleep(0.02)

        assert body["status"] == "done"
        assert [entry["startTimeMs"] for entry in body["lyrics"]] == [0, 1000, 2000]
        assert all(entry["imageUri"].startswith("data:image/jpeg;base64,") for entry in body["lyrics"])
        assert body["lyrics"][0]["words"] == "a"
        assert sorted(generator.calls) == ["a", "b"]

        assert client.get(f"/poll/{generation_id}").status_code == 404


def test_generate_rejects_invalid_track_id(tmp_path: Path) -> None:
    with TestClient(_app(tmp_path)) as client:
        assert client.get("/generate/not-a-track!").status_code == 400
        assert client.get("/health").json()["active_jobs"] == 0


def test_generate_unknown_track_is_unprocessable(tmp_path: Path) -> None:
    with TestClient(_app(tmp_path)) as client:
        response = client.get("/generate/unknown")
        assert response.status_code == 422
        assert client.get("/health").json()["active_jobs"] == 0


def test_generate_internal_error(tmp_path: Path) -> None:
    class BrokenLyrics:
        async def fetch(self, track_id: str):
            raise RuntimeError("provider exploded")

    app = create_app(_settings(tmp_path), lyrics=BrokenLyrics(), generator=RecordingGenerator())
    with TestClient(app) as client:
        assert client.get("/generate/track42").status_code == 500


def test_poll_unknown_generation(tmp_path: Path) -> None:
    with TestClient(_app(tmp_path)) as client:
        assert client.get("/poll/does-not-exist").status_code == 404
