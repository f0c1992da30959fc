"""
Image cleanup applied to rasterized statement pages before OCR.
"""
import logging
from typing import List

import numpy as np

try:
    import cv2
    CV_AVAILABLE = True
except ImportError:
    CV_AVAILABLE = False

logger = logging.getLogger(__name__)

THRESHOLD = 128
MIN_CONTOUR_AREA = 100
MIN_SKEW_ANGLE = 0.5
MAX_SKEW_ANGLE = 45
ADAPTIVE_BLOCK_SIZE = 11
ADAPTIVE_C = 2


class ImagePreprocessor:
    """Base strategy: return the page image unchanged."""

    name = "identity"

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    def preprocess(self, image: np.ndarray) -> np.ndarray:
        return image


class BasicPreprocessor(ImagePreprocessor):
    """Grayscale plus a fixed global threshold, computed with numpy only."""

    name = "basic"

    def preprocess(self, image: np.ndarray) -> np.ndarray:
        try:
            if image.ndim != 3 or image.shape[2] < 3:
                gray = image.astype(np.float64)
                return np.where(np.floor(gray + 0.5) > THRESHOLD, 255, 0).astype(np.uint8)

            result = image.copy()
            rgb = image[..., :3].astype(np.float64)
            luma = np.floor(rgb[..., 0] * 0.3 + rgb[..., 1] * 0.59 + rgb[..., 2] * 0.11 + 0.5)
            binary = np.where(luma > THRESHOLD, 255, 0).astype(image.dtype)
            for channel in range(3):
                result[..., channel] = binary
            return result
        except Exception as e:
            self.logger.error(f"Basic image preprocessing failed: {e}")
            return image


class CvPreprocessor(ImagePreprocessor):
    """Deskew, denoise and adaptive thresholding with OpenCV."""

    name = "opencv"

    def preprocess(self, image: np.ndarray) -> np.ndarray:
        try:
            gray = self._to_gray(image)
            deskewed = self._deskew(gray)
            blurred = cv2.medianBlur(deskewed, 3)
            thresholded = cv2.adaptiveThreshold(
                blurred,
                255,
                cv2.ADAPTIVE_THRESH_GAUSSIAN_C,
                cv2.THRESH_BINARY,
                ADAPTIVE_BLOCK_SIZE,
                ADAPTIVE_C,
            )
            if image.ndim == 3 and image.shape[2] == 4:
                return cv2.cvtColor(thresholded, cv2.COLOR_GRAY2RGBA)
            if image.ndim == 3:
                return cv2.cvtColor(thresholded, cv2.COLOR_GRAY2RGB)
            return thresholded
        except Exception as e:
            self.logger.error(f"Error during OpenCV image preprocessing: {e}")
            return image

    @staticmethod
    def _to_gray(image: np.ndarray) -> np.ndarray:
        if image.ndim == 2:
            return image.astype(np.uint8)
        if image.shape[2] == 4:
            return cv2.cvtColor(image, cv2.COLOR_RGBA2GRAY)
        return cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)

    def detect_skew_angle(self, gray: np.ndarray) -> float:
        """Median minimum-area-rect angle of the foreground contours, 0.0 if none."""
        _, binary = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY_INV | cv2.THRESH_OTSU)
        contours = cv2.findContours(binary, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)[-2]

        angles: List[float] = []
        for contour in contours:
            (_, _), (width, height), angle = cv2.minAreaRect(contour)
            if width < height:
                angle += 90
            if width * height > MIN_CONTOUR_AREA:
                angles.append(angle)

        if not angles:
            return 0.0
        angles.sort()
        return float(angles[len(angles) // 2])

    def _deskew(self, gray: np.ndarray) -> np.ndarray:
        angle = self.detect_skew_angle(gray)
        if not (MIN_SKEW_ANGLE < abs(angle) < MAX_SKEW_ANGLE):
            return gray

        self.logger.info(f"Deskewing image by {angle:.2f} degrees.")
        rows, cols = gray.shape[:2]
        matrix = cv2.getRotationMatrix2D((cols / 2, rows / 2), angle, 1)
        return cv2.warpAffine(
            gray,
            matrix,
            (cols, rows),
            flags=cv2.INTER_LINEAR,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=0,
        )


def create_preprocessor(prefer_opencv: bool = True) -> ImagePreprocessor:
    """Pick the OpenCV strategy when the library is importable, else the basic one."""
    if prefer_opencv and CV_AVAILABLE:
        logger.info("OpenCV detected. Using advanced image preprocessing.")
        return CvPreprocessor()
    logger.info(
        "OpenCV not available. Using basic image preprocessing. "
        "Install opencv-python for deskewing and adaptive thresholding."
    )
    return BasicPreprocessor()
