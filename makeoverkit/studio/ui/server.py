# makeoverkit/studio/ui/server.py
from __future__ import annotations

import asyncio
import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Callable, Optional, TypeVar
from urllib.parse import parse_qs, urlsplit

from makeoverkit.studio.errors import BusyError, IndexOutOfRange, ValidationError
from makeoverkit.studio.io.images import ImageRef
from makeoverkit.studio.pipeline.controller import CompositionController, export_filename

logger = logging.getLogger(__name__)

T = TypeVar("T")

CALL_TIMEOUT_S = 30.0


class ReuseHTTPServer(HTTPServer):
    allow_reuse_address = True


class StudioRuntime:
    """
    Runs the asyncio loop that owns the controller on a background thread.

    HTTP handler threads never touch the controller directly: every intent
    is shipped to the loop with call(), so state is only ever mutated by
    the loop thread.
    """

    def __init__(self, controller: CompositionController) -> None:
        self.controller = controller
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run, name="studio-loop", daemon=True)

    def _run(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        if not self._loop.is_running():
            return
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=5)

    def call(self, fn: Callable[..., T], *args: Any) -> T:
        async def invoke() -> T:
            return fn(*args)

        fut = asyncio.run_coroutine_threadsafe(invoke(), self._loop)
        return fut.result(timeout=CALL_TIMEOUT_S)


class StudioHandler(BaseHTTPRequestHandler):
    runtime: Optional[StudioRuntime] = None

    def log_message(self, fmt: str, *args) -> None:
        logger.debug("%s - %s", self.address_string(), fmt % args)

    def do_GET(self) -> None:
        try:
            path = urlsplit(self.path).path
            if path == "/":
                self._send_html(INDEX_HTML)
            elif path == "/state.json":
                self._serve_state()
            elif path.startswith("/slot/"):
                self._serve_slot(path[len("/slot/"):])
            elif path == "/current":
                self._serve_current(attachment=False)
            elif path == "/download":
                self._serve_current(attachment=True)
            else:
                self.send_error(404)
        except Exception:
            logger.exception("GET %s crashed", self.path)
            self._send_json(500, {"error": "handler_crash", "where": "do_GET"})

    def do_POST(self) -> None:
        routes = {
            "/upload": self._handle_upload,
            "/slot/set": self._handle_slot_set,
            "/slot/clear": self._handle_slot_clear,
            "/generate": self._handle_generate,
            "/edit": self._handle_edit,
            "/undo": self._handle_simple("undo"),
            "/redo": self._handle_simple("redo"),
            "/start_over": self._handle_simple("start_over"),
            "/reuse": self._handle_simple("reuse_result_as_reference"),
            "/dismiss": self._handle_simple("dismiss_error"),
            "/export": self._handle_export,
        }
        route = routes.get(urlsplit(self.path).path)
        if route is None:
            self.send_error(404)
            return

        try:
            route(self._read_form())
        except IndexOutOfRange as e:
            self._send_json(400, {"error": "index_out_of_range", "detail": str(e)})
        except ValidationError as e:
            self._send_json(400, {"error": "validation", "detail": str(e)})
        except BusyError as e:
            self._send_json(409, {"error": "busy", "detail": str(e)})
        except ValueError as e:
            self._send_json(400, {"error": "bad_request", "detail": str(e)})
        except Exception:
            logger.exception("POST %s crashed", self.path)
            self._send_json(500, {"error": "handler_crash", "where": "do_POST"})

    # ------------------------
    # helpers

    @property
    def _runtime(self) -> StudioRuntime:
        if self.runtime is None:
            raise RuntimeError("no studio runtime attached")
        return self.runtime

    def _read_form(self) -> dict[str, list[str]]:
        length = int(self.headers.get("Content-Length", "0") or "0")
        raw = self.rfile.read(length).decode("utf-8", errors="replace")
        return parse_qs(raw, keep_blank_values=True)

    @staticmethod
    def _first(form: dict[str, list[str]], key: str, default: str = "") -> str:
        values = form.get(key)
        return values[0] if values else default

    @classmethod
    def _index(cls, form: dict[str, list[str]]) -> int:
        raw = cls._first(form, "index")
        try:
            return int(raw)
        except ValueError:
            raise IndexOutOfRange(f"slot index must be an integer, got {raw!r}") from None

    def _send_json(self, status: int, payload: dict) -> None:
        b = json.dumps(payload, indent=2).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(b)))
        self.send_header("Cache-Control", "no-store")
        self.end_headers()
        self.wfile.write(b)

    def _send_html(self, html: str) -> None:
        b = html.encode("utf-8")
        self.send_response(200)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(b)))
        self.send_header("Cache-Control", "no-store")
        self.end_headers()
        self.wfile.write(b)

    def _send_image(self, data: bytes, mime_type: str, filename: Optional[str] = None) -> None:
        self.send_response(200)
        self.send_header("Content-Type", mime_type)
        self.send_header("Content-Length", str(len(data)))
        self.send_header("Cache-Control", "no-store")
        if filename:
            self.send_header("Content-Disposition", f'attachment; filename="{filename}"')
        self.end_headers()
        self.wfile.write(data)

    def _send_state(self) -> None:
        snap = self._runtime.call(self._runtime.controller.snapshot)
        self._send_json(200, snap.to_dict())

    # ------------------------
    # GET routes

    def _serve_state(self) -> None:
        self._send_state()

    def _serve_slot(self, raw_index: str) -> None:
        try:
            index = int(raw_index)
            ref = self._runtime.call(self._runtime.controller.slots.get, index)
        except (ValueError, IndexOutOfRange):
            self.send_error(404)
            return
        if ref is None:
            self.send_error(404)
            return
        self._send_image(ref.data, ref.mime_type)

    def _serve_current(self, *, attachment: bool) -> None:
        if not attachment:
            artifact = self._runtime.call(self._runtime.controller.current_artifact)
            if artifact is None:
                self.send_error(404)
                return
            self._send_image(artifact.data, artifact.mime_type)
            return

        try:
            artifact = self._runtime.call(self._runtime.controller.downloadable_artifact)
        except BusyError as e:
            self._send_json(409, {"error": "busy", "detail": str(e)})
            return
        except ValidationError:
            self.send_error(404)
            return
        self._send_image(artifact.data, artifact.mime_type, export_filename(artifact))

    # ------------------------
    # POST routes

    def _handle_upload(self, form: dict[str, list[str]]) -> None:
        urls = form.get("image", [])
        names = form.get("name", [])
        files = [
            ImageRef.from_data_url(url, names[i] if i < len(names) and names[i] else f"upload-{i}.png")
            for i, url in enumerate(urls)
        ]
        self._runtime.call(self._runtime.controller.upload, files)
        self._send_state()

    def _handle_slot_set(self, form: dict[str, list[str]]) -> None:
        index = self._index(form)
        ref = ImageRef.from_data_url(self._first(form, "image"), self._first(form, "name") or f"slot-{index}.png")
        self._runtime.call(self._runtime.controller.set_slot, index, ref)
        self._send_state()

    def _handle_slot_clear(self, form: dict[str, list[str]]) -> None:
        self._runtime.call(self._runtime.controller.remove_slot, self._index(form))
        self._send_state()

    def _handle_generate(self, form: dict[str, list[str]]) -> None:
        # Only the start is awaited here; the page polls /state.json for completion.
        self._runtime.call(self._runtime.controller.generate)
        self._send_state()

    def _handle_edit(self, form: dict[str, list[str]]) -> None:
        self._runtime.call(self._runtime.controller.apply_edit, self._first(form, "instruction"))
        self._send_state()

    def _handle_export(self, form: dict[str, list[str]]) -> None:
        path = self._runtime.call(self._runtime.controller.export_current)
        self._send_json(200, {"ok": True, "path": str(path)})

    def _handle_simple(self, method: str) -> Callable[[dict[str, list[str]]], None]:
        def handle(form: dict[str, list[str]]) -> None:
            self._runtime.call(getattr(self._runtime.controller, method))
            self._send_state()

        return handle


def run_server(
    *,
    controller: CompositionController,
    host: str = "127.0.0.1",
    port: int = 8000,
) -> None:
    runtime = StudioRuntime(controller)
    runtime.start()
    StudioHandler.runtime = runtime

    server = ReuseHTTPServer((host, port), StudioHandler)
    logger.info("Running at http://%s:%d", host, port)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("shutting down")
    finally:
        server.server_close()
        runtime.stop()


# IMPORTANT:
# - NOT an f-string.
# - Avoid JS template literals so braces never collide with Python formatting.
INDEX_HTML = """\
<!doctype html>
<html>
<head>
<meta charset="utf-8"/>
<meta name="viewport" content="width=device-width, initial-scale=1"/>
<title>Makeover Studio</title>
<style>
  body { margin: 0; background: #111; color: #eee;
         font-family: -apple-system, system-ui, Segoe UI, Roboto, Helvetica, Arial, sans-serif; }
  .wrap { padding: 12px; display: flex; flex-direction: column; gap: 10px; }
  .grid { display: grid; grid-template-columns: 1fr 3fr 1fr; gap: 10px; }
  .col { display: flex; flex-direction: column; gap: 8px; }
  .slot { position: relative; aspect-ratio: 1 / 1; border: 2px dashed #444; border-radius: 8px;
          background: #1a1a1a; overflow: hidden; display: flex; align-items: center; justify-content: center; }
  .slot img { width: 100%; height: 100%; object-fit: cover; }
  .slot .label { font-size: 12px; color: #999; }
  .slot .rm { position: absolute; top: 4px; right: 4px; background: #000a; color: #fff; border: none;
              border-radius: 50%; width: 24px; height: 24px; cursor: pointer; }
  .elements { display: grid; grid-template-columns: 1fr 1fr; gap: 6px; }
  .stage { background: #000; border: 1px solid #333; border-radius: 10px; min-height: 420px;
           display: flex; align-items: center; justify-content: center; }
  .stage img { max-width: 100%; max-height: 70vh; }
  .bar { display: flex; flex-wrap: wrap; gap: 8px; align-items: center; }
  button { background: #fc3; color: #000; border: none; padding: 9px 13px; font-weight: 700;
           border-radius: 8px; cursor: pointer; }
  button.plain { background: #333; color: #eee; }
  button:disabled { opacity: 0.45; cursor: not-allowed; }
  input[type=text] { flex: 1; background: #0b0b0b; color: #eee; border: 1px solid #333;
                     border-radius: 8px; padding: 9px; }
  .status { font-size: 12px; color: #aaa; }
  .err { color: #ffb36b; white-space: pre-wrap; }
  .hidden { display: none; }
</style>
</head>
<body>
<div class="wrap">

  <div id="start">
    <p>Upload up to 7 images: 1 face/portrait*, up to 5 style elements, 1 optional vibe image.</p>
    <input id="uploadAll" type="file" accept="image/*" multiple/>
  </div>

  <div id="errorBox" class="hidden">
    <p class="err" id="errText"></p>
    <button id="dismissBtn">Try Again</button>
  </div>

  <div id="studio" class="hidden">
    <div class="grid">
      <div class="col" id="portraitCol"></div>
      <div class="col">
        <div class="stage" id="stage"></div>
        <div class="bar">
          <input id="instruction" type="text" placeholder="Describe an edit (e.g., 'make the lighting more dramatic')"/>
          <button id="applyBtn">Apply</button>
        </div>
      </div>
      <div class="col">
        <div class="elements" id="elementsCol"></div>
        <div id="vibeCol"></div>
      </div>
    </div>

    <div class="bar">
      <button class="plain" id="startOverBtn">Start Over</button>
      <button id="generateBtn">Generate Makeover</button>
      <button id="regenerateBtn">Regenerate Makeover</button>
      <button class="plain" id="reuseBtn">Refine with this Vibe</button>
      <button class="plain" id="undoBtn">Undo</button>
      <button class="plain" id="redoBtn">Redo</button>
      <span style="flex: 1"></span>
      <button id="downloadBtn">Download Image</button>
    </div>
    <div class="status" id="status"></div>
  </div>

</div>

<script>
  var state = null;
  var pollHandle = null;

  function el(id) { return document.getElementById(id); }

  function readAsDataURL(file) {
    return new Promise(function(resolve, reject) {
      var r = new FileReader();
      r.onload = function() { resolve(r.result); };
      r.onerror = function() { reject(r.error); };
      r.readAsDataURL(file);
    });
  }

  async function post(path, params) {
    var body = new URLSearchParams();
    (params || []).forEach(function(kv) { body.append(kv[0], kv[1]); });
    var r = await fetch(path, {
      method: "POST",
      headers: {"Content-Type": "application/x-www-form-urlencoded"},
      body: body.toString(),
    });
    var out = await r.json().catch(function() { return {}; });
    if (!r.ok) {
      alert((out.detail || out.error || "request failed"));
      await refresh();
      return null;
    }
    if (out.slots) render(out);
    return out;
  }

  function slotNode(slot) {
    var box = document.createElement("div");
    box.className = "slot";
    var input = document.createElement("input");
    input.type = "file";
    input.accept = "image/*";
    input.className = "hidden";
    input.addEventListener("change", async function() {
      if (!input.files || !input.files[0]) return;
      var f = input.files[0];
      var url = await readAsDataURL(f);
      await post("/slot/set", [["index", String(slot.index)], ["image", url], ["name", f.name]]);
    });
    box.appendChild(input);
    if (slot.filename) {
      var img = document.createElement("img");
      img.src = "/slot/" + slot.index + "?cb=" + encodeURIComponent(slot.filename) + state.session_token;
      img.title = slot.filename;
      box.appendChild(img);
      var rm = document.createElement("button");
      rm.className = "rm";
      rm.textContent = "x";
      rm.disabled = state.busy;
      rm.addEventListener("click", function(e) {
        e.stopPropagation();
        post("/slot/clear", [["index", String(slot.index)]]);
      });
      box.appendChild(rm);
    } else {
      var label = document.createElement("span");
      label.className = "label";
      label.textContent = "+ " + slot.label;
      box.appendChild(label);
      box.addEventListener("click", function() { if (!state.busy) input.click(); });
    }
    return box;
  }

  function render(st) {
    state = st;
    el("start").classList.toggle("hidden", st.has_uploaded_images);
    el("studio").classList.toggle("hidden", !st.has_uploaded_images || !!st.error);
    el("errorBox").classList.toggle("hidden", !st.error);
    el("errText").textContent = st.error || "";

    var pc = el("portraitCol"), ec = el("elementsCol"), vc = el("vibeCol");
    pc.innerHTML = ""; ec.innerHTML = ""; vc.innerHTML = "";
    st.slots.forEach(function(slot) {
      var node = slotNode(slot);
      if (slot.role === "portrait") pc.appendChild(node);
      else if (slot.role === "vibe") vc.appendChild(node);
      else ec.appendChild(node);
    });

    var stage = el("stage");
    stage.innerHTML = "";
    if (st.has_artifact) {
      var img = document.createElement("img");
      img.src = "/current?cb=" + st.cursor + "_" + st.history_length + "_" + st.session_token;
      stage.appendChild(img);
    } else {
      stage.textContent = st.busy ? "AI is creating your new look..." : "Ready for a New Look?";
    }

    el("generateBtn").classList.toggle("hidden", st.has_artifact);
    el("generateBtn").disabled = !st.can_generate;
    el("regenerateBtn").classList.toggle("hidden", !(st.has_artifact && st.dirty));
    el("regenerateBtn").disabled = !st.can_regenerate;
    el("reuseBtn").classList.toggle("hidden", !st.has_artifact);
    el("reuseBtn").disabled = !st.can_reuse;
    el("undoBtn").disabled = !st.can_undo;
    el("redoBtn").disabled = !st.can_redo;
    el("downloadBtn").disabled = !st.can_download;
    el("applyBtn").disabled = !st.can_apply_edit || !el("instruction").value.trim();
    el("instruction").disabled = st.busy || !st.has_artifact;

    el("status").textContent = st.busy ? "Working..." :
      (st.has_artifact ? "Result " + (st.cursor + 1) + " of " + st.history_length : "Idle.");

    if (st.busy && pollHandle === null) {
      pollHandle = setInterval(refresh, 500);
    } else if (!st.busy && pollHandle !== null) {
      clearInterval(pollHandle);
      pollHandle = null;
    }
  }

  async function refresh() {
    var r = await fetch("/state.json", {cache: "no-store"});
    render(await r.json());
  }

  el("uploadAll").addEventListener("change", async function(e) {
    var files = Array.prototype.slice.call(e.target.files || []);
    var params = [];
    for (var i = 0; i < files.length; i++) {
      params.push(["image", await readAsDataURL(files[i])]);
      params.push(["name", files[i].name]);
    }
    await post("/upload", params);
  });

  el("generateBtn").addEventListener("click", function() { post("/generate"); });
  el("regenerateBtn").addEventListener("click", function() { post("/generate"); });
  el("applyBtn").addEventListener("click", async function() {
    var text = el("instruction").value;
    if (!text.trim()) return;
    var out = await post("/edit", [["instruction", text]]);
    if (out) el("instruction").value = "";
  });
  el("instruction").addEventListener("input", function() { if (state) render(state); });
  el("instruction").addEventListener("keydown", function(e) {
    if (e.key === "Enter") el("applyBtn").click();
  });
  el("undoBtn").addEventListener("click", function() { post("/undo"); });
  el("redoBtn").addEventListener("click", function() { post("/redo"); });
  el("startOverBtn").addEventListener("click", function() { post("/start_over"); });
  el("reuseBtn").addEventListener("click", function() { post("/reuse"); });
  el("dismissBtn").addEventListener("click", function() { post("/dismiss"); });
  el("downloadBtn").addEventListener("click", function() { window.location = "/download"; });

  refresh();
</script>
</body>
</html>
"""
