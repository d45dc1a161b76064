"""
Spiral binding preflight checks.

Spiral, coil and wire-o bindings punch holes along the binding edge, so they
have their own geometry rules: a wider binding margin, a safe zone clear of
the holes, bleed on the binding edge, and a wire pitch whose capacity limits
the page count.

Each check returns a PreflightResult; run_spiral_checks() runs the set.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence

from models.preflight import PreflightIssue, PreflightResult, Severity


CRITICAL_BINDING_MARGIN_IN = 0.375
RECOMMENDED_BLEED_IN = 0.125
MIN_SAFE_DPI = 150

# Wire pitch -> supported page range
WIRE_CAPACITY: Dict[str, Dict[str, object]] = {
    "3:1": {"min": 20, "max": 120, "diameter": '0.25"-0.5"'},
    "2:1": {"min": 80, "max": 250, "diameter": '0.5"-1"'},
}

# Page size -> (minimum binding margin, recommended margin), inches
_PAGE_SIZE_MARGINS: Dict[str, tuple] = {
    "5.5x8.5": (0.5, 0.625),
    "6x9": (0.5, 0.75),
    "8.5x11": (0.625, 0.875),
}

_STANDARD_SIZES: Dict[str, tuple] = {
    "a4": (8.27, 11.69),
    "a5": (5.83, 8.27),
    "letter": (8.5, 11.0),
    "legal": (8.5, 14.0),
}


@dataclass(frozen=True)
class SpiralBindingConfig:
    """Geometry and quality requirements for a spiral-type binding."""

    binding_type: str = "spiral"
    """'spiral', 'coil' or 'wire_o'."""

    wire_size: str = "3:1"
    """Wire pitch (holes per inch)."""

    binding_edge: str = "left"
    """'left', 'right' or 'top'."""

    page_size: str = "6x9"
    page_count: int = 100

    minimum_binding_margin: float = 0.5
    """Minimum distance from the binding edge, inches."""

    minimum_safe_zone: float = 0.625
    """Content closer than this to the binding edge risks the holes."""

    recommended_margin: float = 0.75
    """Margin recommended for best results."""

    minimum_dpi: int = 300
    bleed_in: float = 0.125


DEFAULT_SPIRAL_CONFIG = SpiralBindingConfig()


def spiral_config_for_page_size(
    page_size: str,
    binding_type: str = "spiral",
    **overrides
) -> SpiralBindingConfig:
    """
    Default spiral config for a page size.

    Larger pages get a wider binding margin because the wire diameter grows
    with the book.
    """
    config = replace(DEFAULT_SPIRAL_CONFIG, binding_type=binding_type, page_size=page_size)
    margins = _PAGE_SIZE_MARGINS.get(page_size)
    if margins:
        config = replace(
            config,
            minimum_binding_margin=margins[0],
            recommended_margin=margins[1],
        )
    if overrides:
        config = replace(config, **overrides)
    return config


def _page_dimensions(page_size: str) -> tuple:
    parts = page_size.lower().split("x")
    if len(parts) == 2:
        try:
            return float(parts[0]), float(parts[1])
        except ValueError:
            pass
    return _STANDARD_SIZES.get(page_size.lower(), (6.0, 9.0))


def check_binding_margin(config: SpiralBindingConfig) -> PreflightResult:
    errors: List[PreflightIssue] = []
    warnings: List[PreflightIssue] = []

    width, height = _page_dimensions(config.page_size)
    binding_dimension = height if config.binding_edge == "top" else width

    if binding_dimension < 5:
        warnings.append(PreflightIssue(
            code="PAGE_TOO_SMALL_FOR_SPIRAL",
            message=f"Page size {config.page_size} may be too small for spiral binding",
            severity=Severity.MEDIUM,
            details={"page_size": config.page_size, "dimension": binding_dimension},
        ))

    if config.minimum_binding_margin < config.recommended_margin:
        warnings.append(PreflightIssue(
            code="BINDING_MARGIN_BELOW_RECOMMENDED",
            message=(
                f'Binding margin ({config.minimum_binding_margin}") is less than '
                f'recommended ({config.recommended_margin}")'
            ),
            severity=Severity.LOW,
            location=f"{config.binding_edge} edge",
            details={
                "minimum": config.minimum_binding_margin,
                "recommended": config.recommended_margin,
            },
        ))

    if config.minimum_binding_margin < CRITICAL_BINDING_MARGIN_IN:
        errors.append(PreflightIssue(
            code="BINDING_MARGIN_TOO_SMALL",
            message=(
                f'Binding margin ({config.minimum_binding_margin}") is too small, '
                "content will be obscured by spiral holes"
            ),
            severity=Severity.HIGH,
            location=f"{config.binding_edge} edge",
            details={
                "minimum": config.minimum_binding_margin,
                "required": CRITICAL_BINDING_MARGIN_IN,
            },
        ))

    return PreflightResult.from_issues(errors, warnings)


def check_bleed_zones(config: SpiralBindingConfig) -> PreflightResult:
    errors: List[PreflightIssue] = []
    warnings: List[PreflightIssue] = []

    if config.bleed_in <= 0:
        errors.append(PreflightIssue(
            code="BLEED_MISSING_BINDING_EDGE",
            message=f"Bleed is required on {config.binding_edge} edge for spiral binding",
            severity=Severity.HIGH,
            location=f"{config.binding_edge} edge",
            details={"required_in": RECOMMENDED_BLEED_IN},
        ))
    elif config.bleed_in < RECOMMENDED_BLEED_IN:
        warnings.append(PreflightIssue(
            code="BLEED_BELOW_RECOMMENDED",
            message=f'Bleed size ({config.bleed_in}") is less than recommended ({RECOMMENDED_BLEED_IN}")',
            severity=Severity.MEDIUM,
            location=f"{config.binding_edge} edge",
            details={"current_in": config.bleed_in, "recommended_in": RECOMMENDED_BLEED_IN},
        ))

    return PreflightResult.from_issues(errors, warnings)


def check_dpi_requirements(config: SpiralBindingConfig, image_dpi: float) -> PreflightResult:
    errors: List[PreflightIssue] = []
    warnings: List[PreflightIssue] = []

    if image_dpi < MIN_SAFE_DPI:
        errors.append(PreflightIssue(
            code="IMAGE_DPI_LOW",
            message=f"Image DPI ({image_dpi:g}) is critically low, print quality will be very poor",
            severity=Severity.HIGH,
            details={"current_dpi": image_dpi, "minimum_dpi": config.minimum_dpi},
        ))
    elif image_dpi < config.minimum_dpi:
        warnings.append(PreflightIssue(
            code="IMAGE_DPI_BELOW_RECOMMENDED",
            message=f"Image DPI ({image_dpi:g}) is below recommended ({config.minimum_dpi})",
            severity=Severity.MEDIUM,
            details={"current_dpi": image_dpi, "minimum_dpi": config.minimum_dpi},
        ))

    return PreflightResult.from_issues(errors, warnings)


def check_wire_size_compatibility(config: SpiralBindingConfig) -> PreflightResult:
    """
    Page count must fit the wire pitch.

    Over the maximum is an error (the wire will not close); well under the
    minimum is only a warning (oversized hardware for a thin book).
    """
    errors: List[PreflightIssue] = []
    warnings: List[PreflightIssue] = []

    capacity = WIRE_CAPACITY.get(config.wire_size)
    if capacity is None:
        errors.append(PreflightIssue(
            code="WIRE_SIZE_UNKNOWN",
            message=f"Unknown wire size {config.wire_size!r}",
            severity=Severity.HIGH,
            details={"supported": sorted(WIRE_CAPACITY)},
        ))
        return PreflightResult.from_issues(errors, warnings)

    if config.page_count < capacity["min"]:
        warnings.append(PreflightIssue(
            code="WIRE_SIZE_OVERSIZED",
            message=(
                f"Page count ({config.page_count}) is low for {config.wire_size} wire, "
                "consider smaller wire"
            ),
            severity=Severity.LOW,
            details={"page_count": config.page_count, "minimum": capacity["min"]},
        ))

    if config.page_count > capacity["max"]:
        errors.append(PreflightIssue(
            code="WIRE_CAPACITY_EXCEEDED",
            message=(
                f"Page count ({config.page_count}) exceeds maximum for "
                f"{config.wire_size} wire ({capacity['max']})"
            ),
            severity=Severity.HIGH,
            details={
                "page_count": config.page_count,
                "maximum": capacity["max"],
                "suggestion": "Use larger wire size or reduce page count",
            },
        ))

    return PreflightResult.from_issues(errors, warnings)


def check_safe_zone(
    config: SpiralBindingConfig,
    content_margins: Mapping[str, float]
) -> PreflightResult:
    """
    Content on the binding edge must sit inside the safe zone.

    Args:
        config: Spiral config
        content_margins: Measured margins keyed 'top', 'bottom', 'left', 'right'
    """
    errors: List[PreflightIssue] = []
    warnings: List[PreflightIssue] = []

    edge = config.binding_edge if config.binding_edge in ("left", "right", "top") else "left"
    margin = float(content_margins.get(edge, 0.0))

    if margin < config.minimum_binding_margin:
        errors.append(PreflightIssue(
            code="CONTENT_IN_BINDING_ZONE",
            message=f'Content is too close to {edge} edge ({margin}"), will be obscured by spiral holes',
            severity=Severity.HIGH,
            location=f"{edge} margin",
            details={
                "current_margin": margin,
                "minimum_required": config.minimum_binding_margin,
                "safe_zone": config.minimum_safe_zone,
            },
        ))
    elif margin < config.minimum_safe_zone:
        warnings.append(PreflightIssue(
            code="CONTENT_NEAR_BINDING_EDGE",
            message=(
                f'Content is close to {edge} edge ({margin}"), recommend '
                f'{config.minimum_safe_zone}" for safe zone'
            ),
            severity=Severity.MEDIUM,
            location=f"{edge} margin",
            details={"current_margin": margin, "recommended_safe_zone": config.minimum_safe_zone},
        ))

    return PreflightResult.from_issues(errors, warnings)


def run_spiral_checks(
    config: SpiralBindingConfig,
    image_dpi: Optional[float] = None,
    content_margins: Optional[Mapping[str, float]] = None
) -> List[PreflightResult]:
    results = [
        check_binding_margin(config),
        check_bleed_zones(config),
        check_wire_size_compatibility(config),
    ]
    if image_dpi is not None:
        results.append(check_dpi_requirements(config, image_dpi))
    if content_margins is not None:
        results.append(check_safe_zone(config, content_margins))
    return results


def spiral_preflight_summary(results: Sequence[PreflightResult]) -> Dict[str, Any]:
    """Aggregate spiral check results into counts and the critical messages."""
    merged = PreflightResult.merge(*results)
    return {
        "passed": merged.passed,
        "total_errors": len(merged.errors),
        "total_warnings": len(merged.warnings),
        "critical_issues": merged.critical_issues,
    }
