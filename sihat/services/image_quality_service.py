"""
Image Quality Service
Scores a captured tongue, face or body photo before it is sent for analysis:
- Blur (Laplacian variance, Sobel and gradient magnitude)
- Lighting (brightness, contrast, dark/bright pixel ratios)
- Composition (detail in the region where the subject should be)
- Resolution (pixel count against per-mode minimums)
"""
import io
import logging
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Any

import numpy as np
from PIL import Image

logger = logging.getLogger(__name__)

# Centered region (width fraction, height fraction) where the subject should be
EXPECTED_REGIONS = {
    "tongue": (0.3, 0.2),
    "face": (0.4, 0.5),
    "body": (0.6, 0.6),
}

MIN_PIXELS = {
    "tongue": 300 * 300,
    "face": 400 * 400,
    "body": 500 * 500,
}

SCORE_WEIGHTS = {"blur": 0.3, "lighting": 0.25, "composition": 0.25, "resolution": 0.2}

LAPLACIAN_KERNEL = np.array([[-1, -1, -1], [-1, 8, -1], [-1, -1, -1]], dtype=np.float64)


@dataclass
class QualityIssue:
    type: str
    severity: str
    message: str
    suggestion: str


@dataclass
class ExposureReport:
    """Clipping and exposure problems from the luminance histogram"""
    overexposed: bool
    underexposed: bool
    clipped_highlights: float  # percent of pixels at 255
    blocked_shadows: float  # percent of pixels at 0


@dataclass
class QualityResult:
    overall: str
    score: int
    blur_score: float
    lighting_score: float
    composition_score: float
    resolution_score: float
    brightness: float
    is_acceptable: bool
    issues: List[QualityIssue] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    exposure: ExposureReport = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def luminance(rgb: np.ndarray) -> np.ndarray:
    """Per-pixel luminance of an HxWx3 array"""
    rgb = rgb.astype(np.float64)
    return 0.299 * rgb[..., 0] + 0.587 * rgb[..., 1] + 0.114 * rgb[..., 2]


def _convolve3x3(gray: np.ndarray, kernel: np.ndarray) -> np.ndarray:
    """Valid 3x3 convolution (interior pixels only)"""
    h, w = gray.shape
    out = np.zeros((h - 2, w - 2), dtype=np.float64)
    for dy in range(3):
        for dx in range(3):
            out += kernel[dy, dx] * gray[dy:dy + h - 2, dx:dx + w - 2]
    return out


def _histogram(gray: np.ndarray) -> np.ndarray:
    levels = np.clip(np.rint(gray), 0, 255).astype(np.int64)
    return np.bincount(levels.ravel(), minlength=256)


class ImageQualityService:
    """Heuristic quality scoring for diagnosis photos"""

    def load_image(self, image_bytes: bytes) -> np.ndarray:
        """Decode image bytes into an RGB array; raises ValueError on bad data"""
        try:
            img = Image.open(io.BytesIO(image_bytes))
            if img.mode != 'RGB':
                img = img.convert('RGB')
            return np.asarray(img)
        except (OSError, Image.DecompressionBombError) as e:
            raise ValueError(f"Could not read image: {e}")

    def blur_score(self, gray: np.ndarray) -> float:
        """0 (blurry) to 1 (sharp), combining three edge measures"""
        if gray.shape[0] < 3 or gray.shape[1] < 3:
            return 0.0

        laplacian = _convolve3x3(gray, LAPLACIAN_KERNEL)
        lap_score = min(float(np.mean(laplacian ** 2)) / 1000, 1.0)

        sobel_x = _convolve3x3(gray, np.array([[-1, 0, 1], [-2, 0, 2], [-1, 0, 1]], dtype=np.float64))
        sobel_y = _convolve3x3(gray, np.array([[-1, -2, -1], [0, 0, 0], [1, 2, 1]], dtype=np.float64))
        sobel_score = min(float(np.mean(np.hypot(sobel_x, sobel_y))) / 100, 1.0)

        dx = np.diff(gray, axis=1)[:-1, :]
        dy = np.diff(gray, axis=0)[:, :-1]
        gradient_score = min(float(np.mean(np.hypot(dx, dy))) / 50, 1.0)

        return lap_score * 0.5 + sobel_score * 0.3 + gradient_score * 0.2

    def lighting_score(self, gray: np.ndarray) -> float:
        histogram = _histogram(gray)
        total = gray.size
        brightness = float(np.mean(gray))
        contrast = float(np.std(gray)) / 128
        dark_ratio = histogram[0:51].sum() / total
        bright_ratio = histogram[200:256].sum() / total

        score = 1.0
        if brightness < 60:
            score *= brightness / 60
        elif brightness > 200:
            score *= 1 - (brightness - 200) / 55
        elif 80 <= brightness <= 180:
            score *= 1.1

        if contrast < 0.3:
            score *= contrast / 0.3
        elif contrast > 0.8:
            score *= 1 - (contrast - 0.8) / 0.2

        if dark_ratio > 0.3:
            score *= 1 - (dark_ratio - 0.3) / 0.7
        if bright_ratio > 0.1:
            score *= 1 - (bright_ratio - 0.1) / 0.9

        return max(0.0, min(1.0, score))

    def composition_score(self, gray: np.ndarray, mode: str) -> float:
        """Detail in the centered region where the subject is expected"""
        h, w = gray.shape
        frac_w, frac_h = EXPECTED_REGIONS.get(mode, EXPECTED_REGIONS["face"])
        x0 = max(0, int(np.floor(w / 2 - w * frac_w / 2)))
        x1 = min(w, int(np.ceil(w / 2 + w * frac_w / 2)))
        y0 = max(0, int(np.floor(h / 2 - h * frac_h / 2)))
        y1 = min(h, int(np.ceil(h / 2 + h * frac_h / 2)))
        region = gray[y0:y1, x0:x1]

        if region.shape[0] < 2 or region.shape[1] < 2:
            return 0.2

        diagonal = np.abs(region[1:, 1:] - region[:-1, :-1])
        detail = min(1.0, float(diagonal.sum()) / max(1, region.size - 1) / 50)
        return min(1.0, detail * 0.8 + 0.2)

    def resolution_score(self, width: int, height: int, mode: str) -> float:
        pixels = width * height
        minimum = MIN_PIXELS.get(mode, MIN_PIXELS["face"])
        optimal = minimum * 4

        if pixels >= optimal:
            return 1.0
        if pixels >= minimum:
            return 0.6 + 0.4 * (pixels - minimum) / (optimal - minimum)
        return max(0.1, pixels / minimum * 0.6)

    def exposure_report(self, gray: np.ndarray) -> ExposureReport:
        histogram = _histogram(gray)
        total = gray.size
        clipped = histogram[255] / total * 100
        blocked = histogram[0] / total * 100
        over_ratio = histogram[240:256].sum() / total
        under_ratio = histogram[0:16].sum() / total

        return ExposureReport(
            overexposed=bool(over_ratio > 0.05 or clipped > 1),
            underexposed=bool(under_ratio > 0.1 or blocked > 1),
            clipped_highlights=round(float(clipped), 2),
            blocked_shadows=round(float(blocked), 2)
        )

    def assess_array(self, rgb: np.ndarray, mode: str = "face") -> QualityResult:
        """Score an HxWx3 RGB array"""
        gray = luminance(rgb)
        height, width = gray.shape
        brightness = float(np.mean(gray))

        blur = self.blur_score(gray)
        lighting = self.lighting_score(gray)
        composition = self.composition_score(gray, mode)
        resolution = self.resolution_score(width, height, mode)

        issues = self._collect_issues(blur, lighting, composition, resolution, brightness)

        score = round(100 * (
            SCORE_WEIGHTS["blur"] * blur
            + SCORE_WEIGHTS["lighting"] * lighting
            + SCORE_WEIGHTS["composition"] * composition
            + SCORE_WEIGHTS["resolution"] * resolution
        ))

        return QualityResult(
            overall=self.band(score),
            score=score,
            blur_score=round(blur, 3),
            lighting_score=round(lighting, 3),
            composition_score=round(composition, 3),
            resolution_score=round(resolution, 3),
            brightness=round(brightness, 1),
            is_acceptable=score >= 50 and not any(i.severity == "high" for i in issues),
            issues=issues,
            suggestions=[i.suggestion for i in issues],
            exposure=self.exposure_report(gray)
        )

    def assess(self, image_bytes: bytes, mode: str = "face") -> QualityResult:
        """Score encoded image bytes; raises ValueError if they are not an image"""
        rgb = self.load_image(image_bytes)
        result = self.assess_array(rgb, mode)
        logger.info(f"Image quality ({mode}): {result.score} {result.overall}, {len(result.issues)} issues")
        return result

    @staticmethod
    def band(score: int) -> str:
        if score >= 85:
            return "excellent"
        if score >= 70:
            return "good"
        if score >= 50:
            return "fair"
        return "poor"

    @staticmethod
    def _collect_issues(
        blur: float,
        lighting: float,
        composition: float,
        resolution: float,
        brightness: float
    ) -> List[QualityIssue]:
        issues = []

        if blur < 0.3:
            issues.append(QualityIssue(
                type="blur",
                severity="high" if blur < 0.15 else "medium",
                message="Image appears blurry",
                suggestion="Hold the camera steady and ensure proper focus"
            ))

        if lighting < 0.4:
            issues.append(QualityIssue(
                type="lighting",
                severity="high" if lighting < 0.2 else "medium",
                message="Image is too dark" if lighting < 0.2 else "Lighting could be improved",
                suggestion="Move to better lighting or adjust camera position"
            ))
        elif lighting > 0.9 and brightness > 200:
            issues.append(QualityIssue(
                type="lighting",
                severity="medium",
                message="Image may be overexposed",
                suggestion="Reduce lighting or move away from bright light sources"
            ))

        if composition < 0.5:
            issues.append(QualityIssue(
                type="composition",
                severity="high" if composition < 0.3 else "medium",
                message="Subject positioning could be improved",
                suggestion="Center the subject and ensure proper framing"
            ))

        if resolution < 0.6:
            issues.append(QualityIssue(
                type="resolution",
                severity="high" if resolution < 0.3 else "medium",
                message="Image resolution is low",
                suggestion="Move closer or use higher camera resolution"
            ))

        return issues


image_quality_service = ImageQualityService()
