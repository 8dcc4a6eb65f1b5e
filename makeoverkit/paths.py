from pathlib import Path

# resolve project root assuming this file lives in makeoverkit/paths.py
PROJECT_ROOT = Path(__file__).resolve().parent.parent

# top-level outputs
OUTPUT_ROOT = PROJECT_ROOT / "outputs"

# subdirectories
OUTPUT_IMAGES = OUTPUT_ROOT / "images"
LOG_ROOT = PROJECT_ROOT / "logs"


def ensure_dirs():
    dirs = [
        OUTPUT_ROOT,
        OUTPUT_IMAGES,
        LOG_ROOT,
    ]

    for d in dirs:
        d.mkdir(parents=True, exist_ok=True)
