import asyncio
import hashlib
import io
import logging
import os
import re
from pathlib import Path

from reportlab.lib.colors import Color
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.pdfgen import canvas

from certificate_errors import CertificateError, FontAssetNotFoundError, RenderError
from certificate_types import BackgroundAsset, DataRecord, FieldMapping, PackageType

logger = logging.getLogger(__name__)

_BASE14_FONTS = {
    "Courier",
    "Courier-Bold",
    "Courier-Oblique",
    "Courier-BoldOblique",
    "Helvetica",
    "Helvetica-Bold",
    "Helvetica-Oblique",
    "Helvetica-BoldOblique",
    "Times-Roman",
    "Times-Bold",
    "Times-Italic",
    "Times-BoldItalic",
    "Symbol",
    "ZapfDingbats",
}

CUSTOM_FONT_SUFFIXES = (".ttf", ".otf")
DEFAULT_FONT = "Helvetica-Bold"
DEFAULT_COLOR = (0.0, 0.0, 0.0)

# Field anchors are where the user clicked on the image. The text box top sits
# 0.75 * fontSize above the click so the baseline lands on it. Existing saved
# mappings depend on this value.
BASELINE_OFFSET_RATIO = 0.75
# Default box width leaves this many pixels before the right edge.
RIGHT_MARGIN = 50
LINE_HEIGHT_RATIO = 1.2

WATERMARK_TEXT = "FREE"
WATERMARK_FONT = "Helvetica-Bold"
WATERMARK_SIZE = 48
WATERMARK_COLOR = (1.0, 0.0, 0.0)
WATERMARK_ALPHA = 0.3
WATERMARK_BOX = (200, 80, 180)  # offset from right, offset from bottom, box width

_custom_fonts: dict[str, str] = {}


def _normalize_font_name(name: str) -> str:
    return "".join(ch for ch in name.lower() if ch.isalnum())


def _font_is_available(font_name: str) -> bool:
    if font_name in _BASE14_FONTS:
        return True
    try:
        pdfmetrics.getFont(font_name)
        return True
    except Exception:
        return False


def resolve_font_name(font_name: str, fallback_font: str = DEFAULT_FONT) -> str:
    if _font_is_available(font_name):
        return font_name

    # Try case/spacing-insensitive match against registered fonts.
    normalized = _normalize_font_name(font_name)
    for candidate in list(pdfmetrics.getRegisteredFontNames()) + sorted(_BASE14_FONTS):
        if _normalize_font_name(candidate) == normalized and _font_is_available(candidate):
            return candidate

    logger.warning("Font '%s' is unavailable. Falling back to '%s'.", font_name, fallback_font)
    return fallback_font


def is_custom_font_ref(font_ref: str | None) -> bool:
    return bool(font_ref) and font_ref.lower().endswith(CUSTOM_FONT_SUFFIXES)


def register_font_bytes(name: str, data: bytes) -> str:
    """Register TTF/OTF bytes with reportlab once per distinct file content."""
    digest = hashlib.sha1(data).hexdigest()[:12]
    if digest in _custom_fonts:
        return _custom_fonts[digest]
    font_name = f"{re.sub(r'[^A-Za-z0-9_-]', '', name) or 'Custom'}-{digest}"
    pdfmetrics.registerFont(TTFont(font_name, io.BytesIO(data)))
    _custom_fonts[digest] = font_name
    return font_name


async def resolve_field_font(font_ref: str | None, font_resolver) -> str:
    """Return a registered reportlab font name for a field's font reference."""
    if not font_ref:
        return DEFAULT_FONT
    if font_ref in _BASE14_FONTS:
        return font_ref
    if not is_custom_font_ref(font_ref):
        return resolve_font_name(font_ref, fallback_font=DEFAULT_FONT)

    if font_resolver is None:
        logger.warning("No font resolver configured for '%s', using %s", font_ref, DEFAULT_FONT)
        return DEFAULT_FONT
    try:
        asset = await font_resolver.resolve(font_ref)
    except FontAssetNotFoundError:
        logger.warning("Custom font not found: %s, using %s", font_ref, DEFAULT_FONT)
        return DEFAULT_FONT
    try:
        return register_font_bytes(asset.name, asset.data)
    except Exception as exc:
        # reportlab raises a mix of TTFError, struct.error and ValueError on bad font files.
        logger.warning("Could not load font %s (%s), using %s", font_ref, exc, DEFAULT_FONT)
        return DEFAULT_FONT


def _split_to_width(word: str, font_name: str, size: float, max_width: float) -> list[str]:
    """Cut a word that is wider than *max_width* into pieces that fit."""
    pieces: list[str] = []
    piece = ""
    for ch in word:
        if piece and pdfmetrics.stringWidth(piece + ch, font_name, size) > max_width:
            pieces.append(piece)
            piece = ch
        else:
            piece += ch
    pieces.append(piece)
    return pieces


def wrap_text_to_lines(font_name: str, text: str, size: float, max_width: float) -> list[str]:
    """Greedy word-wrap of *text* to *max_width* points, keeping explicit newlines.

    A word wider than the box on its own is broken between characters.
    """
    lines: list[str] = []
    for paragraph in re.split(r"\r\n|\r|\n", text):
        line = ""
        for word in paragraph.split(" "):
            if pdfmetrics.stringWidth(word, font_name, size) > max_width:
                *full, word = _split_to_width(word, font_name, size, max_width)
                if line:
                    lines.append(line)
                lines.extend(full)
                line = word
                continue
            joined = f"{line} {word}" if line else word
            if line and pdfmetrics.stringWidth(joined, font_name, size) > max_width:
                lines.append(line)
                line = word
            else:
                line = joined
        lines.append(line)
    return lines


def _clamp_unit(value: float) -> float:
    return min(1.0, max(0.0, value))


def normalize_color(color: list | tuple | None, fallback: tuple[float, float, float]) -> tuple[float, float, float]:
    if not isinstance(color, (list, tuple)) or len(color) != 3:
        return fallback
    try:
        return tuple(_clamp_unit(float(c)) for c in color)
    except (TypeError, ValueError):
        return fallback


_NAMED_COLORS = {
    "black": "#000000",
    "white": "#ffffff",
    "red": "#ff0000",
    "green": "#008000",
    "blue": "#0000ff",
    "yellow": "#ffff00",
}
_HEX_COLOR = re.compile(r"#([0-9a-f]{3}|[0-9a-f]{6})")
_RGB_COLOR = re.compile(r"rgb\(\s*(\d{1,3})\s*,\s*(\d{1,3})\s*,\s*(\d{1,3})\s*\)")


def parse_css_color(value: str, fallback: tuple[float, float, float]) -> tuple[float, float, float]:
    """Parse ``#rgb``, ``#rrggbb``, ``rgb(r, g, b)`` or a basic colour name."""
    if not isinstance(value, str):
        return fallback
    s = value.strip().lower()
    if s in ("gray", "grey"):
        return (0.5, 0.5, 0.5)
    s = _NAMED_COLORS.get(s, s)
    hex_match = _HEX_COLOR.fullmatch(s)
    if hex_match:
        digits = hex_match.group(1)
        if len(digits) == 3:
            digits = "".join(ch * 2 for ch in digits)
        return tuple(int(digits[i : i + 2], 16) / 255.0 for i in (0, 2, 4))
    rgb_match = _RGB_COLOR.fullmatch(s)
    if rgb_match:
        return tuple(_clamp_unit(int(c) / 255.0) for c in rgb_match.groups())
    return fallback


def resolve_color(color: str | list | None) -> tuple[float, float, float]:
    if isinstance(color, (list, tuple)):
        return normalize_color(color, DEFAULT_COLOR)
    return parse_css_color(color or "", DEFAULT_COLOR)


def field_text(field: FieldMapping, record: DataRecord) -> str:
    value = record.get(field.source_key)
    if value is None:
        return ""
    return str(value).strip()


def layout_field(
    field: FieldMapping,
    text: str,
    font_name: str,
    page_w: float,
    page_h: float,
) -> list[tuple[float, float, str]]:
    """Return `(x, y, line)` draw positions in PDF (bottom-left) coordinates."""
    size = field.font_size
    box_width = field.max_width if field.max_width is not None else page_w - field.x - RIGHT_MARGIN
    if box_width > 0:
        lines = wrap_text_to_lines(font_name, text, size, box_width)
    else:
        lines = text.split("\n")

    box_top = field.y - size * BASELINE_OFFSET_RATIO
    first_baseline = box_top + pdfmetrics.getAscent(font_name, size)
    line_height = size * LINE_HEIGHT_RATIO

    positions = []
    for i, line in enumerate(lines):
        if not line:
            continue
        line_width = pdfmetrics.stringWidth(line, font_name, size)
        if box_width <= 0 or field.align == "left":
            start_x = float(field.x)
        elif field.align == "center":
            start_x = field.x + (box_width - line_width) / 2.0
        else:
            start_x = field.x + box_width - line_width
        positions.append((start_x, page_h - (first_baseline + i * line_height), line))
    return positions


def draw_field(c: canvas.Canvas, field: FieldMapping, text: str, font_name: str, page_w: float, page_h: float) -> None:
    c.setFillColor(Color(*resolve_color(field.color)))
    c.setFont(font_name, field.font_size)
    for x, y, line in layout_field(field, text, font_name, page_w, page_h):
        c.drawString(x, y, line)


def draw_free_watermark(c: canvas.Canvas, page_w: float, page_h: float) -> None:
    from_right, from_bottom, box_width = WATERMARK_BOX
    baseline = from_bottom - pdfmetrics.getAscent(WATERMARK_FONT, WATERMARK_SIZE)
    c.saveState()
    c.setFillAlpha(WATERMARK_ALPHA)
    c.setFillColor(Color(*WATERMARK_COLOR))
    c.setFont(WATERMARK_FONT, WATERMARK_SIZE)
    c.drawCentredString(page_w - from_right + box_width / 2.0, baseline, WATERMARK_TEXT)
    c.restoreState()


def _write_certificate(
    background: BackgroundAsset,
    drawables: list[tuple[FieldMapping, str, str]],
    output_path: Path,
    watermark: bool,
) -> None:
    page_w, page_h = float(background.width), float(background.height)
    partial = output_path.with_name(output_path.name + ".part")
    try:
        c = canvas.Canvas(str(partial), pagesize=(page_w, page_h), invariant=1)
        c.drawImage(ImageReader(io.BytesIO(background.data)), 0, 0, width=page_w, height=page_h, mask="auto")
        for field, text, font_name in drawables:
            draw_field(c, field, text, font_name, page_w, page_h)
        if watermark:
            draw_free_watermark(c, page_w, page_h)
        c.showPage()
        c.save()
        os.replace(partial, output_path)
    except BaseException:
        partial.unlink(missing_ok=True)
        raise


async def render_certificate(
    background: BackgroundAsset,
    fields: list[FieldMapping],
    record: DataRecord,
    output_path: Path,
    package_type: PackageType = PackageType.FREE,
    font_resolver=None,
) -> Path:
    """
    Write one single-page PDF: the background image at full page size with
    each mapped value drawn on top, in field order.

    Fields whose value is missing or empty are skipped. A bad custom font
    degrades to the default bold font; anything else propagates and leaves no
    file behind at *output_path*.
    """
    output_path = Path(output_path)
    drawables: list[tuple[FieldMapping, str, str]] = []
    for field in fields:
        text = field_text(field, record)
        if not text:
            logger.debug("Skipping field '%s': no value in record", field.source_key)
            continue
        font_name = await resolve_field_font(field.font_ref, font_resolver)
        drawables.append((field, text, font_name))

    drawing = asyncio.ensure_future(
        asyncio.to_thread(
            _write_certificate,
            background,
            drawables,
            output_path,
            PackageType(package_type).watermarked,
        )
    )
    try:
        await asyncio.shield(drawing)
    except asyncio.CancelledError:
        # The drawing thread cannot be interrupted. Wait for it, then drop its output.
        await asyncio.gather(drawing, return_exceptions=True)
        output_path.unlink(missing_ok=True)
        raise
    except CertificateError:
        raise
    except OSError as exc:
        raise RenderError(f"Could not write certificate {output_path.name}: {exc}") from exc
    return output_path
