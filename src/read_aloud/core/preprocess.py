"""OpenCV cleanup applied before classical OCR."""

from __future__ import annotations

import cv2
import numpy as np

from .imaging import RasterImage

_SHARPEN = np.array([[-1, -1, -1], [-1, 9, -1], [-1, -1, -1]], dtype=np.float32)


def preprocess_for_ocr(image: RasterImage) -> RasterImage:
    """Binarize a page for Tesseract.

    Gray conversion, top-hat boost of thin strokes, a blend of the image with
    a sharpened blur, adaptive Gaussian threshold and a small opening to drop
    speckles. Returns a new grayscale image; the input is untouched.
    """
    gray = cv2.cvtColor(image.pixels, cv2.COLOR_RGBA2GRAY)

    kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (15, 3))
    tophat = cv2.morphologyEx(gray, cv2.MORPH_TOPHAT, kernel)
    gray = cv2.add(gray, tophat)

    blurred = cv2.GaussianBlur(gray, (3, 3), 0)
    sharpened = cv2.filter2D(blurred, cv2.CV_8U, _SHARPEN)
    gray = cv2.addWeighted(gray, 0.5, sharpened, 0.5, 0)

    binary = cv2.adaptiveThreshold(
        gray, 255, cv2.ADAPTIVE_THRESH_GAUSSIAN_C, cv2.THRESH_BINARY, 15, 5
    )
    small = cv2.getStructuringElement(cv2.MORPH_RECT, (2, 2))
    binary = cv2.morphologyEx(binary, cv2.MORPH_OPEN, small)
    return RasterImage.from_array(binary)
