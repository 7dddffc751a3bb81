"""Render the annotated page of a PDF to an image, plus a minimal CLI."""
from __future__ import annotations

import argparse
import io
from pathlib import Path
import sys

from pdf2image import convert_from_path

IMAGE_SUFFIXES = (".png", ".jpg", ".jpeg", ".webp", ".bmp", ".tif", ".tiff")


def is_pdf(path: Path) -> bool:
    return path.suffix.lower() == ".pdf"


def is_page_image(path: Path) -> bool:
    return path.suffix.lower() in IMAGE_SUFFIXES


def render_first_page(pdf_path: Path, dpi: int = 150):
    """Return the first page of ``pdf_path`` as a PIL image."""
    pages = convert_from_path(str(pdf_path), dpi=dpi, first_page=1, last_page=1, use_pdftocairo=True)
    if not pages:
        raise ValueError(f"PDF has no pages: {pdf_path}")
    return pages[0]


def render_first_page_png(pdf_path: Path, dpi: int = 150) -> bytes:
    buffer = io.BytesIO()
    render_first_page(pdf_path, dpi=dpi).save(buffer, format="PNG")
    return buffer.getvalue()


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Render the first page of a PDF to data/page_images/<name>.png")
    parser.add_argument("pdf", help="Path to the PDF to render")
    parser.add_argument("--dpi", type=int, default=150, help="Image resolution")
    parser.add_argument("--output", default=None, help="Output PNG path")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    pdf_path = Path(args.pdf)
    if not pdf_path.is_file():
        print(f"PDF not found: {pdf_path}", file=sys.stderr)
        return 1

    target = Path(args.output) if args.output else Path("data/page_images") / f"{pdf_path.stem}.png"
    target.parent.mkdir(parents=True, exist_ok=True)

    try:
        page = render_first_page(pdf_path, dpi=args.dpi)
    except Exception as exc:
        print(f"Conversion failed: {exc}", file=sys.stderr)
        return 1

    page.save(target, format="PNG")
    print(f"wrote {target} ({page.width}x{page.height})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
