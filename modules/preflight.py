"""
Preflight engine.

Validates a print job against physical production constraints before any
money is spent: image resolution, margins, bleed, binding-specific geometry,
color space and file size.

All checks are pure functions over metadata that has already been measured
(DPI, margins, file size). Opening PDFs is the job of
modules.pdf_inspector.PDFInspector; its output feeds PreflightInput.

Aggregation rule: PreflightResult.passed is True iff no check produced an
error. Warnings never block submission.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

from core.exceptions import InvalidSpec
from models.preflight import DPIResult, PreflightIssue, PreflightResult, Severity
from models.print_spec import BindingType, ColorSpace, PrintSpec
from modules.spiral_preflight import (
    SpiralBindingConfig,
    run_spiral_checks,
    spiral_config_for_page_size,
)


# Resolution thresholds are global, never per provider
MIN_SAFE_DPI = 150
OPTIMAL_DPI = 300

MIN_MARGIN_IN = 0.5
RECOMMENDED_BLEED_IN = 0.125

FILE_SIZE_WARN_MB = 100
FILE_SIZE_LIMIT_MB = 500


@dataclass(frozen=True)
class ImagePlacement:
    """An image as placed on the page."""

    name: str
    pixel_width: int
    pixel_height: int
    print_width_in: float
    print_height_in: float
    page: Optional[int] = None

    @property
    def dpi(self) -> DPIResult:
        return calculate_dpi(
            self.pixel_width, self.pixel_height, self.print_width_in, self.print_height_in
        )


@dataclass(frozen=True)
class Margins:
    """Content margins in inches (inside = binding side)."""

    top: float
    bottom: float
    inside: float
    outside: float


@dataclass(frozen=True)
class PreflightInput:
    """Everything the engine needs, measured up front."""

    spec: PrintSpec
    images: Sequence[ImagePlacement] = field(default_factory=tuple)
    margins: Optional[Margins] = None
    bleed_in: Optional[float] = None
    file_size_bytes: Optional[int] = None
    wire_size: Optional[str] = None
    binding_edge: str = "left"
    check_files: bool = True


def calculate_dpi(
    pixel_width: int,
    pixel_height: int,
    print_width_in: float,
    print_height_in: float
) -> DPIResult:
    """
    Effective DPI of an image printed at the given size.

    The lower of the two axis resolutions wins, rounded half-up.

    Raises:
        InvalidSpec: If a print dimension is not positive
    """
    if print_width_in <= 0 or print_height_in <= 0:
        raise InvalidSpec(
            "Print dimensions must be positive",
            {"print_width_in": print_width_in, "print_height_in": print_height_in},
        )
    raw = min(pixel_width / print_width_in, pixel_height / print_height_in)
    dpi = int(math.floor(raw + 0.5))
    return DPIResult(
        dpi=dpi,
        is_print_safe=dpi >= MIN_SAFE_DPI,
        is_print_optimal=dpi >= OPTIMAL_DPI,
    )


def check_image_dpi(images: Iterable[ImagePlacement]) -> PreflightResult:
    errors: List[PreflightIssue] = []
    warnings: List[PreflightIssue] = []

    for image in images:
        result = image.dpi
        location = f"page {image.page}" if image.page is not None else image.name
        details = {"image": image.name, "dpi": result.dpi}
        if not result.is_print_safe:
            errors.append(PreflightIssue(
                code="IMAGE_DPI_LOW",
                message=f'Image "{image.name}" has very low DPI ({result.dpi}), print quality will be poor',
                severity=Severity.HIGH,
                location=location,
                details=details,
            ))
        elif not result.is_print_optimal:
            warnings.append(PreflightIssue(
                code="IMAGE_DPI_BELOW_RECOMMENDED",
                message=(
                    f'Image "{image.name}" has low DPI ({result.dpi}), '
                    f"recommended minimum is {OPTIMAL_DPI} DPI"
                ),
                severity=Severity.MEDIUM,
                location=location,
                details=details,
            ))

    return PreflightResult.from_issues(errors, warnings)


def check_margins(margins: Margins, binding: BindingType) -> PreflightResult:
    """
    Every margin must reach the generic minimum.

    The inside margin of spiral-type bindings is judged by the spiral safe
    zone check instead, which knows the hole geometry.
    """
    warnings: List[PreflightIssue] = []
    edges = [("top", margins.top), ("bottom", margins.bottom), ("outside", margins.outside)]
    if not binding.is_spiral:
        edges.insert(2, ("inside", margins.inside))

    for edge, value in edges:
        if value < MIN_MARGIN_IN:
            warnings.append(PreflightIssue(
                code="MARGIN_BELOW_MINIMUM",
                message=f'{edge.capitalize()} margin ({value}") is below recommended minimum ({MIN_MARGIN_IN}")',
                severity=Severity.MEDIUM,
                location=f"{edge} margin",
                details={"margin": edge, "value": value, "minimum": MIN_MARGIN_IN},
            ))

    return PreflightResult.from_issues((), warnings)


def check_bleed(bleed_in: Optional[float], binding: BindingType, binding_edge: str = "left") -> PreflightResult:
    """
    Bleed on the binding edge.

    Missing bleed is an error for spiral-type bindings (the holes would cut
    into content) and a warning for everything else.
    """
    bleed = bleed_in or 0.0
    if bleed >= RECOMMENDED_BLEED_IN:
        return PreflightResult.ok()

    details = {"bleed_in": bleed, "recommended_in": RECOMMENDED_BLEED_IN}
    if bleed <= 0 and binding.is_spiral:
        return PreflightResult.from_issues(errors=[PreflightIssue(
            code="BLEED_MISSING_BINDING_EDGE",
            message=f"Bleed is required on {binding_edge} edge for {binding.value} binding",
            severity=Severity.HIGH,
            location=f"{binding_edge} edge",
            details=details,
        )])

    return PreflightResult.from_issues(warnings=[PreflightIssue(
        code="BLEED_BELOW_RECOMMENDED",
        message=f'Bleed is not set or below recommended {RECOMMENDED_BLEED_IN}" (3mm)',
        severity=Severity.LOW,
        details=details,
    )])


def check_color_space(color_space: ColorSpace) -> PreflightResult:
    """RGB is accepted (vendors convert) but flagged."""
    if color_space is ColorSpace.RGB:
        return PreflightResult.from_issues(warnings=[PreflightIssue(
            code="COLOR_SPACE_RGB",
            message="Book is using RGB color space. CMYK is recommended for print",
            severity=Severity.LOW,
            details={"color_space": "RGB", "recommended": "CMYK"},
        )])
    return PreflightResult.ok()


def check_file_size(size_bytes: Optional[int]) -> PreflightResult:
    if not size_bytes:
        return PreflightResult.ok()

    size_mb = size_bytes / 1_000_000
    details = {"size_bytes": size_bytes, "size_mb": round(size_mb, 1)}

    if size_mb > FILE_SIZE_LIMIT_MB:
        return PreflightResult.from_issues(errors=[PreflightIssue(
            code="FILE_SIZE_EXCEEDS_LIMIT",
            message=f"PDF file size ({size_mb:.1f}MB) exceeds most POD provider limits ({FILE_SIZE_LIMIT_MB}MB)",
            severity=Severity.HIGH,
            details=details,
        )])
    if size_mb > FILE_SIZE_WARN_MB:
        return PreflightResult.from_issues(warnings=[PreflightIssue(
            code="FILE_SIZE_LARGE",
            message=f"PDF file size is large ({size_mb:.1f}MB). May be slow to upload/download",
            severity=Severity.LOW,
            details=details,
        )])
    return PreflightResult.ok()


def check_files_present(interior_url: Optional[str], cover_url: Optional[str]) -> PreflightResult:
    errors = [
        PreflightIssue(
            code="FILE_MISSING",
            message=f"{label} PDF has not been generated",
            severity=Severity.HIGH,
            location=label.lower(),
        )
        for label, url in (("Interior", interior_url), ("Cover", cover_url))
        if not url
    ]
    return PreflightResult.from_issues(errors)


def default_wire_size(page_count: int) -> str:
    return "3:1" if page_count <= 120 else "2:1"


def spiral_config_for(data: PreflightInput) -> SpiralBindingConfig:
    spec = data.spec
    return spiral_config_for_page_size(
        spec.trim_size.name,
        binding_type=spec.binding.value,
        wire_size=data.wire_size or default_wire_size(spec.page_count),
        binding_edge=data.binding_edge,
        page_count=spec.page_count,
        bleed_in=data.bleed_in or 0.0,
    )


def run_preflight(data: PreflightInput) -> PreflightResult:
    """
    Run every applicable check and aggregate.

    Args:
        data: Measured metadata for the job

    Returns:
        PreflightResult with passed == (no errors)
    """
    spec = data.spec
    results: List[PreflightResult] = []

    if data.check_files:
        results.append(check_files_present(spec.interior_pdf_url, spec.cover_pdf_url))

    results.append(check_image_dpi(data.images))
    results.append(check_color_space(spec.color_space))
    results.append(check_file_size(data.file_size_bytes))

    if data.margins is not None:
        results.append(check_margins(data.margins, spec.binding))

    if spec.binding.is_spiral:
        content_margins = None
        if data.margins is not None:
            content_margins = {
                "top": data.margins.top,
                "bottom": data.margins.bottom,
                "left": data.margins.inside,
                "right": data.margins.outside,
            }
        results.extend(run_spiral_checks(spiral_config_for(data), content_margins=content_margins))
    else:
        results.append(check_bleed(data.bleed_in, spec.binding, data.binding_edge))

    return PreflightResult.merge(*results)
