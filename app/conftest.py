"""
Pytest configuration for the bill extraction test suite.

Tests marked ``ocr`` drive a real Tesseract binary. They only run when a
marker expression is given on the command line (``pytest -m ocr``) and a
``tesseract`` executable can be found, either via ``TESSERACT_CMD`` or on
PATH. Everything else stubs OCR out and runs by default.
"""
import os
import shutil

import pytest


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "ocr: test needs a real tesseract binary"
    )


def _tesseract_available() -> bool:
    cmd = os.environ.get("TESSERACT_CMD") or "tesseract"
    return shutil.which(cmd) is not None


def pytest_collection_modifyitems(config, items):
    ocr_items = [item for item in items if item.get_closest_marker("ocr")]
    if not ocr_items:
        return

    if not config.getoption("-m", default=""):
        reason = "OCR tests run only when selected: pytest -m ocr"
    elif not _tesseract_available():
        reason = "tesseract binary not found (set TESSERACT_CMD or install tesseract)"
    else:
        return

    for item in ocr_items:
        item.add_marker(pytest.mark.skip(reason=reason))
