"""
Bill Intake
===========

Gets text out of uploaded bill files and hands it to the extractor.

  PDF:    text layer of the first MAX_PDF_PAGES pages via PyMuPDF
  Image:  Tesseract OCR via pytesseract (word DataFrame -> line text)
  Batch:  first PDF wins; one image is OCR'd directly; several images are
          OCR'd one by one and the most confident result is kept

Text acquisition failures never reach the user: they are logged and the
all-default record is returned so the upload flow can continue into manual
entry.

Usage:
    python bill_intake.py bill.pdf
    python bill_intake.py page1.jpg page2.jpg --json
    python bill_intake.py bill.pdf --user-id 1
"""
from __future__ import annotations

import io
import json
import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

import pandas as pd
import pymupdf

from bill_data import ExtractedBillData, default_bill_data
from bill_extractor import extract_from_text, merge_multiple

log = logging.getLogger(__name__)


MAX_PDF_PAGES = 5
VALID_CONFIDENCE_THRESHOLD = 0.7
DEFAULT_OCR_LANG = "eng"

PDF_EXTENSIONS = (".pdf",)
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".bmp", ".gif", ".tif", ".tiff", ".webp")


# ---------------------------------------------------------------------------
# PDF text layer
# ---------------------------------------------------------------------------

@dataclass
class TextExtractionResult:
    """Text read from a PDF's embedded text layer."""
    text: str
    page_count: int
    pages_read: int
    chars_per_page: list[int] = field(default_factory=list)


def _open_document(source: bytes | str | Path) -> pymupdf.Document:
    """Open a bill PDF given as a filesystem path or as uploaded bytes.

    Empty uploads are rejected before MuPDF sees them; any MuPDF failure is
    reported as RuntimeError naming where the document came from.
    """
    if isinstance(source, (bytes, bytearray)):
        if not source:
            raise ValueError("PDF bytes are empty")
        where = "uploaded bytes"
        open_args = {"stream": bytes(source), "filetype": "pdf"}
    elif isinstance(source, (str, Path)):
        where = f"'{source}'"
        open_args = {"filename": str(source)}
    else:
        raise TypeError(f"source must be str, Path or bytes, got {type(source).__name__}")

    try:
        return pymupdf.open(**open_args)
    except Exception as e:
        raise RuntimeError(f"Cannot open bill PDF from {where}: {e}") from e


def extract_pdf_text(
    source: bytes | str | Path,
    *,
    max_pages: int = MAX_PDF_PAGES,
) -> TextExtractionResult:
    """Read the text layer of at most *max_pages* leading pages.

    Raises:
        ValueError: If source is empty bytes.
        RuntimeError: If PyMuPDF cannot open the document.
        TypeError: If source is neither a path nor bytes.
    """
    doc = _open_document(source)

    try:
        page_texts: list[str] = []
        for page_idx in range(min(doc.page_count, max_pages)):
            page_texts.append(doc[page_idx].get_text())

        return TextExtractionResult(
            text="\n\n".join(page_texts),
            page_count=doc.page_count,
            pages_read=len(page_texts),
            chars_per_page=[len(t.strip()) for t in page_texts],
        )
    finally:
        doc.close()


# ---------------------------------------------------------------------------
# Image OCR
# ---------------------------------------------------------------------------

@dataclass
class OcrResult:
    """Tesseract output for one image."""
    text: str
    avg_confidence: float  # 0-100, mean over recognized words
    word_count: int


def _load_image(source: bytes | str | Path):
    from PIL import Image

    if isinstance(source, (str, Path)):
        return Image.open(source)
    if isinstance(source, (bytes, bytearray)):
        if not source:
            raise ValueError("Image bytes are empty")
        return Image.open(io.BytesIO(source))
    raise TypeError(f"source must be str, Path or bytes, got {type(source).__name__}")


def ocr_words_to_text(ocr_df: pd.DataFrame) -> str:
    """Reconstruct line text from a Tesseract word DataFrame."""
    if ocr_df.empty:
        return ""

    lines = []
    for _, group in ocr_df.groupby(["page_num", "block_num", "par_num", "line_num"], sort=True):
        words = group.sort_values("left")["text"].astype(str).tolist()
        lines.append(" ".join(words))
    return "\n".join(lines)


def ocr_image(source: bytes | str | Path, lang: str | None = None) -> OcrResult:
    """Run Tesseract over an image and return its text.

    ``TESSERACT_CMD`` overrides the tesseract binary, ``OCR_LANG`` the
    language (default ``eng``).
    """
    import pytesseract

    tesseract_cmd = os.environ.get("TESSERACT_CMD")
    if tesseract_cmd:
        pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
    lang = lang or os.environ.get("OCR_LANG", DEFAULT_OCR_LANG)

    image = _load_image(source)
    try:
        data = pytesseract.image_to_data(image, lang=lang, output_type=pytesseract.Output.DATAFRAME)
    finally:
        image.close()

    # Drop layout rows (conf == -1) and empty words
    words = data[(data["conf"] != -1) & data["text"].notna()].copy()
    words["text"] = words["text"].astype(str).str.strip()
    words = words[words["text"] != ""]

    avg_conf = float(words["conf"].mean()) if not words.empty else 0.0
    return OcrResult(
        text=ocr_words_to_text(words),
        avg_confidence=avg_conf,
        word_count=len(words),
    )


# ---------------------------------------------------------------------------
# Extraction entry points
# ---------------------------------------------------------------------------

def extract_from_pdf(source: bytes | str | Path) -> ExtractedBillData:
    """Extract bill data from a PDF; the default record on any read failure."""
    try:
        pdf = extract_pdf_text(source)
    except Exception as e:
        log.warning("PDF extraction failed: %s", e, exc_info=True)
        return default_bill_data()

    log.info(
        "Read %d of %d PDF pages (%d chars)",
        pdf.pages_read, pdf.page_count, sum(pdf.chars_per_page),
    )
    return extract_from_text(pdf.text)


def extract_from_image(source: bytes | str | Path) -> ExtractedBillData:
    """Extract bill data from an image; the default record on any OCR failure."""
    try:
        ocr = ocr_image(source)
    except Exception as e:
        log.warning("OCR extraction failed: %s", e, exc_info=True)
        return default_bill_data()

    log.info("OCR read %d words (avg confidence %.1f)", ocr.word_count, ocr.avg_confidence)
    log.debug("Extracted OCR text: %s", ocr.text)
    return extract_from_text(ocr.text)


def extract_from_pages(sources: list[bytes | str | Path]) -> ExtractedBillData:
    """OCR each page image in order and keep the most confident result."""
    results = [extract_from_image(src) for src in sources]
    return merge_multiple(results)


def _suffix(path: str | Path) -> str:
    return Path(path).suffix.lower()


def process_uploads(paths: list[str | Path]) -> ExtractedBillData:
    """Route a batch of uploaded files to the right extractor.

    The first PDF wins over any images; a single image is OCR'd directly;
    several images are treated as pages of one bill. Files with other
    extensions are skipped.
    """
    pdfs = [p for p in paths if _suffix(p) in PDF_EXTENSIONS]
    images = [p for p in paths if _suffix(p) in IMAGE_EXTENSIONS]
    for p in paths:
        if p not in pdfs and p not in images:
            log.warning("Skipping unsupported upload: %s", p)

    if pdfs:
        return extract_from_pdf(pdfs[0])
    if len(images) == 1:
        return extract_from_image(images[0])
    return extract_from_pages(images)


def is_valid_extraction(data: ExtractedBillData) -> bool:
    """Whether the record is complete enough to save without review."""
    return bool(
        data.energy_supplier
        and data.monthly_bill
        and data.units_consumed
        and data.confidence > VALID_CONFIDENCE_THRESHOLD
    )


def build_bill_payload(data: ExtractedBillData, user_id: int | None) -> dict:
    """Build the ``POST /api/bills`` body for *data* owned by *user_id*.

    The id comes from whatever authenticated the caller.

    Raises:
        ValueError: If no user id is given.
    """
    if user_id is None:
        raise ValueError("user_id is required to save a bill")
    return {"userId": user_id, **data.to_dict()}


# ===================================================================
# CLI
# ===================================================================

def _print_report(data: ExtractedBillData) -> None:
    print(f"Supplier:       {data.energy_supplier or '-'}")
    print(f"Billing month:  {data.billing_month}")
    print(f"Bill total:     {data.bill_total:.2f}")
    print(f"Units (kWh):    {data.units_consumed:g}")
    print(f"Tariff rate:    {data.tariff_rate:.2f}")
    print(f"Customer ID:    {data.customer_id or '-'}")
    print(f"Meter number:   {data.meter_number or '-'}")
    print(f"Name:           {data.user_name or '-'}")
    print(f"Confidence:     {round(data.confidence * 100)}%")
    if not is_valid_extraction(data):
        print("\nSome data may be missing. Please review and edit manually.")


USAGE = "usage: xener-extract FILE [FILE ...] [--json] [--user-id N]"


def main(argv: list[str] | None = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)

    as_json = "--json" in args
    user_id = None
    if "--user-id" in args:
        idx = args.index("--user-id")
        try:
            user_id = int(args[idx + 1])
        except (IndexError, ValueError):
            print("--user-id needs an integer argument", file=sys.stderr)
            return 2
        del args[idx:idx + 2]

    unknown = [a for a in args if a.startswith("--") and a != "--json"]
    if unknown:
        print(f"unrecognized option: {unknown[0]}", file=sys.stderr)
        print(USAGE, file=sys.stderr)
        return 2

    paths = [a for a in args if a != "--json"]
    if not paths:
        print(USAGE, file=sys.stderr)
        return 2

    data = process_uploads(paths)

    if user_id is not None:
        print(json.dumps(build_bill_payload(data, user_id), indent=2))
    elif as_json:
        print(data.to_json(indent=2))
    else:
        _print_report(data)

    return 0 if is_valid_extraction(data) else 1


def cli() -> None:
    """Console-script entry point."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    sys.exit(main())


if __name__ == "__main__":
    cli()
