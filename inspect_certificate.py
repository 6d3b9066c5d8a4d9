"""List the text drawn on a generated certificate, in image pixel coordinates.

Useful when calibrating field mappings: each span's origin is the baseline
start, which should sit on the field anchor that was clicked in the mapper.
"""

import argparse
import json
from pathlib import Path

import fitz

from certificate_types import CertificateTemplate


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Extract text spans from a generated certificate PDF using PyMuPDF."
    )
    parser.add_argument("pdf", help="Path to a generated certificate PDF.")
    parser.add_argument("--page", type=int, default=0, help="Zero-based page index.")
    parser.add_argument(
        "--contains",
        help="Filter spans containing this text (case-insensitive).",
    )
    parser.add_argument(
        "--template-json",
        help="Template JSON; draws each field anchor on the --annotate output.",
    )
    parser.add_argument(
        "--output-json",
        help="Optional JSON output path for extracted spans.",
    )
    parser.add_argument(
        "--annotate",
        help="Optional output PDF with span boxes (red) and field anchors (blue).",
    )
    return parser.parse_args()


def iter_spans(page: fitz.Page):
    data = page.get_text("dict")
    for block in data.get("blocks", []):
        if block.get("type") != 0:
            continue
        for line in block.get("lines", []):
            for span in line.get("spans", []):
                yield span


def extract_spans(pdf_path: Path, page_index: int = 0, contains: str | None = None) -> dict:
    """Return page size and text spans; coordinates are top-left based like the mapper's."""
    with fitz.open(pdf_path) as doc:
        if page_index < 0 or page_index >= len(doc):
            raise IndexError(f"Page {page_index} out of range. PDF has {len(doc)} page(s).")
        page = doc[page_index]
        needle = contains.lower() if contains else None
        items: list[dict] = []
        for span in iter_spans(page):
            text = (span.get("text") or "").strip()
            if not text:
                continue
            if needle and needle not in text.lower():
                continue
            origin = span.get("origin")
            items.append(
                {
                    "text": text,
                    "font": span.get("font"),
                    "size": span.get("size"),
                    "color": span.get("color"),
                    "bbox": list(span.get("bbox", [0, 0, 0, 0])),
                    "origin": list(origin) if origin else None,
                }
            )
        return {
            "page_count": len(doc),
            "page_size": [float(page.rect.width), float(page.rect.height)],
            "items": items,
        }


def main() -> None:
    args = parse_args()
    pdf_path = Path(args.pdf)
    result = extract_spans(pdf_path, args.page, args.contains)

    page_w, page_h = result["page_size"]
    print(f"Certificate: {pdf_path}")
    print(f"Page: {args.page}  Size: {page_w:.0f} x {page_h:.0f} px")
    print(f"Spans: {len(result['items'])}")
    for idx, item in enumerate(result["items"], start=1):
        origin = item["origin"] or [0.0, 0.0]
        print(
            f"{idx:03d} | '{item['text']}' | font={item['font']} size={item['size']:.1f} | "
            f"baseline=({origin[0]:.2f},{origin[1]:.2f})"
        )

    if args.output_json:
        output_path = Path(args.output_json)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(json.dumps({"certificate": str(pdf_path), **result}, indent=2), encoding="utf-8")
        print(f"Wrote JSON: {output_path}")

    if args.annotate:
        template = None
        if args.template_json:
            template = CertificateTemplate.model_validate_json(Path(args.template_json).read_text(encoding="utf-8"))
        annot_path = Path(args.annotate)
        annot_path.parent.mkdir(parents=True, exist_ok=True)
        with fitz.open(pdf_path) as doc:
            page = doc[args.page]
            for idx, item in enumerate(result["items"], start=1):
                rect = fitz.Rect(item["bbox"])
                page.draw_rect(rect, color=(1, 0, 0), width=0.7)
                page.insert_text(rect.tl + fitz.Point(0, -2), f"{idx:03d}", fontsize=7, color=(1, 0, 0))
            for field in template.fields if template else []:
                point = fitz.Point(field.x, field.y)
                page.draw_line(point - (6, 0), point + (6, 0), color=(0, 0, 1), width=0.7)
                page.draw_line(point - (0, 6), point + (0, 6), color=(0, 0, 1), width=0.7)
            doc.save(annot_path)
        print(f"Wrote annotated PDF: {annot_path}")


if __name__ == "__main__":
    main()
