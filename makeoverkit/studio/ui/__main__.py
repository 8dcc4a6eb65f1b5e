# makeoverkit/studio/ui/__main__.py
from __future__ import annotations

import argparse
from pathlib import Path

from makeoverkit.paths import LOG_ROOT, ensure_dirs
from makeoverkit.studio.api.client import GeneratorError
from makeoverkit.studio.api.factory import build_client
from makeoverkit.studio.config import BACKENDS, load_config
from makeoverkit.studio.log import setup_logging
from makeoverkit.studio.pipeline.controller import CompositionController
from makeoverkit.studio.ui.server import run_server


def main() -> None:
    config = load_config()

    p = argparse.ArgumentParser(prog="python -m makeoverkit.studio.ui")
    p.add_argument("--backend", type=str, default=config.backend, choices=list(BACKENDS))
    p.add_argument("--host", type=str, default=config.host)
    p.add_argument("--port", type=int, default=config.port)
    p.add_argument("--mock-delay", type=float, default=config.mock_delay_s,
                   help="Seconds the mock backend waits before answering.")
    p.add_argument("--output-dir", type=str, default=str(config.output_dir),
                   help="Where exported results are written.")
    p.add_argument("--log-level", type=str, default=config.log_level)
    p.add_argument("--log-dir", type=str, default=str(LOG_ROOT),
                   help="Directory for studio.log.")
    args = p.parse_args()

    config.backend = args.backend
    config.host = args.host
    config.port = args.port
    config.mock_delay_s = max(0.0, args.mock_delay)
    config.output_dir = Path(args.output_dir).expanduser()
    config.log_level = args.log_level.upper()

    ensure_dirs()
    setup_logging(config.log_level, Path(args.log_dir).expanduser())

    try:
        client = build_client(config)
    except GeneratorError as e:
        raise SystemExit(f"Cannot start the {config.backend} backend: {e}")

    controller = CompositionController(client, output_dir=config.output_dir)
    run_server(controller=controller, host=config.host, port=config.port)


if __name__ == "__main__":
    main()
