from __future__ import annotations

import contextlib
import io
import json
import threading
import time
import urllib.error
import urllib.request
from urllib.parse import urlencode

import pytest
from PIL import Image

from conftest import GatedClient, make_png_ref
from makeoverkit.studio.api.mock_client import MockMakeoverGeneratorClient
from makeoverkit.studio.io.images import Artifact
from makeoverkit.studio.pipeline.controller import CompositionController
from makeoverkit.studio.ui.server import ReuseHTTPServer, StudioHandler, StudioRuntime


@contextlib.contextmanager
def _serving(controller):
    runtime = StudioRuntime(controller)
    runtime.start()
    StudioHandler.runtime = runtime

    server = ReuseHTTPServer(("127.0.0.1", 0), StudioHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}", runtime
    finally:
        server.shutdown()
        server.server_close()
        runtime.stop()
        StudioHandler.runtime = None


@pytest.fixture
def studio(tmp_path):
    controller = CompositionController(MockMakeoverGeneratorClient(), output_dir=tmp_path)
    with _serving(controller) as (base, _):
        yield base, controller


@pytest.fixture
def gated_studio(tmp_path):
    client = GatedClient()
    controller = CompositionController(client, output_dir=tmp_path)
    with _serving(controller) as (base, runtime):
        yield base, client, runtime


def _get(url: str):
    with urllib.request.urlopen(url, timeout=10) as r:
        return r.status, r.headers, r.read()


def _post(url: str, fields: list[tuple[str, str]] | None = None):
    body = urlencode(fields or []).encode("utf-8")
    req = urllib.request.Request(url, data=body, method="POST")
    req.add_header("Content-Type", "application/x-www-form-urlencoded")
    try:
        with urllib.request.urlopen(req, timeout=10) as r:
            return r.status, json.loads(r.read())
    except urllib.error.HTTPError as e:
        return e.code, json.loads(e.read())


def _wait_idle(base: str) -> dict:
    deadline = time.time() + 10
    while time.time() < deadline:
        _, _, raw = _get(base + "/state.json")
        state = json.loads(raw)
        if not state["busy"]:
            return state
        time.sleep(0.02)
    raise AssertionError("studio never went idle")


def test_index_and_initial_state(studio) -> None:
    base, _ = studio
    status, headers, body = _get(base + "/")
    assert status == 200
    assert "Makeover Studio" in body.decode("utf-8")

    _, _, raw = _get(base + "/state.json")
    state = json.loads(raw)
    assert state["cursor"] == -1
    assert state["status"] == "idle"
    assert [s["label"] for s in state["slots"]][:2] == ["Face / Portrait*", "Element 1"]


def test_upload_generate_edit_undo_download(studio, tmp_path) -> None:
    base, _ = studio
    portrait = make_png_ref((200, 160, 140), "me.png")
    hat = make_png_ref((0, 0, 0), "hat.png")

    status, state = _post(
        base + "/upload",
        [("image", portrait.to_data_url()), ("name", "me.png"), ("image", hat.to_data_url()), ("name", "hat.png")],
    )
    assert status == 200
    assert state["slots"][0]["filename"] == "me.png"
    assert state["slots"][1]["filename"] == "hat.png"
    assert state["can_generate"]

    status, _ = _post(base + "/generate")
    assert status == 200
    state = _wait_idle(base)
    assert state["cursor"] == 0 and state["history_length"] == 1

    status, _ = _post(base + "/edit", [("instruction", "warmer light")])
    assert status == 200
    state = _wait_idle(base)
    assert state["history_length"] == 2

    status, state = _post(base + "/undo")
    assert state["cursor"] == 0 and state["can_redo"]

    status, headers, body = _get(base + "/download")
    assert status == 200
    assert headers["Content-Type"] == "image/png"
    assert headers["Content-Disposition"].startswith('attachment; filename="makeover-')
    assert body[:8] == b"\x89PNG\r\n\x1a\n"

    status, payload = _post(base + "/export")
    assert status == 200
    assert payload["path"].startswith(str(tmp_path))

    status, state = _post(base + "/reuse")
    assert state["slots"][1]["filename"] is None
    assert state["slots"][6]["filename"].startswith("vibe-from-generated-")
    assert state["cursor"] == -1


def test_errors_map_to_status_codes(studio) -> None:
    base, controller = studio

    status, payload = _post(base + "/generate")
    assert (status, payload["error"]) == (400, "validation")

    status, payload = _post(base + "/slot/clear", [("index", "9")])
    assert (status, payload["error"]) == (400, "index_out_of_range")

    status, payload = _post(base + "/slot/set", [("index", "1"), ("image", "data:text/plain;base64,aGk=")])
    assert (status, payload["error"]) == (400, "bad_request")

    status, _, _ = _get(base + "/state.json")
    assert status == 200
    assert not controller.slots.has_any()


def test_slot_routes(studio) -> None:
    base, _ = studio
    ref = make_png_ref((5, 5, 5), "shoe.png")

    status, state = _post(base + "/slot/set", [("index", "3"), ("image", ref.to_data_url()), ("name", "shoe.png")])
    assert status == 200
    assert state["slots"][3]["filename"] == "shoe.png"
    assert state["dirty"]

    status, _, body = _get(base + "/slot/3")
    assert body == ref.data

    status, state = _post(base + "/slot/clear", [("index", "3")])
    assert state["slots"][3]["filename"] is None

    with pytest.raises(urllib.error.HTTPError) as exc:
        _get(base + "/slot/3")
    assert exc.value.code == 404


def test_download_refused_while_busy(gated_studio) -> None:
    base, client, runtime = gated_studio
    portrait = make_png_ref((200, 160, 140), "me.png")
    _post(base + "/upload", [("image", portrait.to_data_url()), ("name", "me.png")])

    _post(base + "/generate")
    runtime.call(client.release)
    _wait_idle(base)

    runtime.call(client.gate.clear)
    status, state = _post(base + "/edit", [("instruction", "darker")])
    assert status == 200
    assert state["busy"] and not state["can_download"]

    with pytest.raises(urllib.error.HTTPError) as exc:
        _get(base + "/download")
    assert exc.value.code == 409
    assert json.loads(exc.value.read())["error"] == "busy"

    # the preview route keeps showing the displayed result
    status, _, _ = _get(base + "/current")
    assert status == 200

    runtime.call(client.release)
    _wait_idle(base)
    status, _, _ = _get(base + "/download")
    assert status == 200


def test_download_without_result_is_404(studio) -> None:
    base, _ = studio
    with pytest.raises(urllib.error.HTTPError) as exc:
        _get(base + "/download")
    assert exc.value.code == 404


def test_download_extension_follows_mime_type(gated_studio) -> None:
    base, client, runtime = gated_studio
    portrait = make_png_ref((1, 2, 3), "me.png")
    jpeg_bytes = _jpeg_bytes()
    client.outcomes.append(Artifact(data=jpeg_bytes, mime_type="image/jpeg"))
    runtime.call(client.release)

    _post(base + "/upload", [("image", portrait.to_data_url()), ("name", "me.png")])
    _post(base + "/generate")
    _wait_idle(base)

    status, headers, body = _get(base + "/download")
    assert status == 200
    assert headers["Content-Type"] == "image/jpeg"
    assert headers["Content-Disposition"].endswith('.jpg"')
    assert body == jpeg_bytes


def _jpeg_bytes() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (8, 8), (10, 20, 30)).save(buf, format="JPEG")
    return buf.getvalue()
