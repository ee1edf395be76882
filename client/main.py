# =============================================================================
# Closet Tagger VLM - Client Entry Point
# =============================================================================
# Uploads one or more clothing photos to the tagging server and prints the
# resulting tags, or the alert the server attached ("no clothing", failure,
# busy).  Cancelled requests print nothing.
# =============================================================================

import argparse
import logging
import sys
from pathlib import Path
from typing import List

from config import get_config
from client.client import TaggerClient

logger = logging.getLogger(__name__)

_IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png", ".webp", ".bmp", ".heic"}


def _collect_images(paths: List[str]) -> List[Path]:
    """Expand directories into the image files they contain."""
    images = []
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            images.extend(
                sorted(p for p in path.iterdir() if p.suffix.lower() in _IMAGE_SUFFIXES)
            )
        else:
            images.append(path)
    return images


def _print_closet(client: TaggerClient) -> None:
    items = client.list_closet()
    if not items:
        print("No clothes added yet.")
        return
    for item in items:
        print(f"  {item['id']}  {item['tag']}")


def main():
    """CLI entry point for the tagging client."""
    parser = argparse.ArgumentParser(
        description="Closet Tagger VLM - Client",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("images", nargs="*", help="Image files or directories to tag")
    parser.add_argument(
        "--server-url", type=str, default=None,
        help="Server base URL (e.g., http://127.0.0.1:8000)",
    )
    parser.add_argument("--warm-up", action="store_true", help="Load the model before tagging")
    parser.add_argument("--list", action="store_true", help="Print the closet afterwards")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    server_url = args.server_url or get_config().server_url
    client = TaggerClient(server_url=server_url)

    if not client.wait_for_server(timeout=60):
        logger.error("Server not available. Exiting.")
        sys.exit(1)

    if args.warm_up:
        state = client.warm_up()
        if not state.get("model_loaded"):
            alert = state.get("alert") or {}
            logger.error("Model warm-up failed: %s", alert.get("message", "unknown error"))
            sys.exit(1)
        logger.info("Model loaded in %.2fs", state.get("load_seconds") or 0.0)

    exit_code = 0
    for image_path in _collect_images(args.images):
        result = client.tag_image(image_path)
        status = result.get("status")
        alert = result.get("alert")

        if status == "tagged":
            print(f"{image_path.name}: {result['tag']}")
        elif alert:
            print(f"{image_path.name}: [{alert['kind']}] {alert['message']}")
        if status in ("failed", "busy"):
            exit_code = 1

    if args.list:
        _print_closet(client)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
