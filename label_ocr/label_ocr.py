#!/usr/bin/env python3
"""
Label OCR - product-name reader for photographed grocery labels.

Reads one or more label photos and prints the ranked product-name lines
(best first), or the JSON payload the OCR route returns.

Usage:
    label-ocr photo.jpg
    label-ocr photos/ --mode thorough --json
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List

from .core.settings import load_settings
from .pipeline import RequestCoordinator, handle_request

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".bmp", ".tif", ".tiff", ".heic", ".heif"}


def collect_images(path: Path) -> List[Path]:
    if path.is_file():
        return [path]
    return sorted(p for p in path.iterdir() if p.suffix.lower() in IMAGE_EXTENSIONS)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Grocery label product-name OCR",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Read one label with the deployment's default mode
  label-ocr --input beans.jpg

  # Exhaustive read of a folder, JSON output
  label-ocr --input labels/ --mode thorough --json

  # Use a config file and the local Ollama fallback
  LABEL_OCR_VISION_PROVIDER=ollama label-ocr --input pasta.jpg --config ocr.yaml
        """
    )

    parser.add_argument(
        "input", nargs="?",
        help="Path to a label image or a folder of images"
    )
    parser.add_argument(
        "--input", "-i", dest="input_flag", default=None,
        help="Same as the positional input"
    )
    parser.add_argument(
        "--mode", "-m", choices=["fast", "thorough"], default=None,
        help="Recognition mode (default: fast in production, thorough otherwise)"
    )
    parser.add_argument(
        "--config", "-c", default=None,
        help="YAML settings file (default: $LABEL_OCR_CONFIG)"
    )
    parser.add_argument(
        "--json", action="store_true",
        help="Print the JSON payload instead of plain text"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Verbose output"
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    target = args.input_flag or args.input
    if not target:
        parser.error("an input image or folder is required")
    input_path = Path(target)
    if not input_path.exists():
        print(f"Error: Input path does not exist: {target}")
        return 1

    settings = load_settings(Path(args.config) if args.config else None)
    coordinator = RequestCoordinator(settings)

    exit_code = 0
    for image_path in collect_images(input_path):
        status, payload = handle_request(image_path.read_bytes(), args.mode, coordinator=coordinator)
        if status != 200 or not payload.get("ok"):
            exit_code = 1

        if args.json:
            print(json.dumps({"file": str(image_path), "status": status, **payload}, indent=2))
            continue

        print("\n" + "=" * 60)
        print(f"LABEL OCR RESULT: {image_path.name}")
        print("=" * 60)
        if not payload.get("ok"):
            print(f"Error: {payload['error']}")
        else:
            draft = payload.get("draft") or {}
            print(f"Engine: {payload['result']['engine']}")
            if draft.get("brand"):
                print(f"Brand: {draft['brand']}")
            if draft.get("size"):
                print(f"Size: {draft['size']}")
            print("-" * 60)
            print(payload["text"])
        print("=" * 60)

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
