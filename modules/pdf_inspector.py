"""PDF inspector that measures generated files for preflight."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from core.exceptions import InvalidSpec
from logging_config import get_logger


logger = get_logger(__name__)

POINTS_PER_INCH = 72


@dataclass(frozen=True)
class PageDimensions:
    width_in: float
    height_in: float

    def to_dict(self) -> Dict[str, float]:
        return {"width_in": self.width_in, "height_in": self.height_in}


@dataclass(frozen=True)
class FileMetadata:
    """What preflight needs to know about a PDF on disk."""

    path: str
    pages: int
    size_bytes: int
    page_dimensions: List[PageDimensions] = field(default_factory=list)

    @property
    def first_page(self) -> Optional[PageDimensions]:
        return self.page_dimensions[0] if self.page_dimensions else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "pages": self.pages,
            "size_bytes": self.size_bytes,
            "page_dimensions": [d.to_dict() for d in self.page_dimensions],
        }


class PDFInspector:
    """Extract page count, page size and file size from a PDF."""

    def __init__(self, sample_pages: int = 1):
        self.sample_pages = max(1, sample_pages)

    def inspect(self, pdf_path: str | Path) -> FileMetadata:
        """
        Raises:
            InvalidSpec: If the file is missing or is not a readable PDF
        """
        path = Path(pdf_path)
        if not path.exists():
            raise InvalidSpec(f"PDF not found: {path}", {"path": str(path)})

        size_bytes = path.stat().st_size
        try:
            reader = PdfReader(str(path))
            pages = len(reader.pages)
            dimensions = [
                PageDimensions(
                    width_in=round(float(page.mediabox.width) / POINTS_PER_INCH, 2),
                    height_in=round(float(page.mediabox.height) / POINTS_PER_INCH, 2),
                )
                for page in list(reader.pages)[:self.sample_pages]
            ]
        except (PdfReadError, ValueError, OSError) as exc:
            logger.error(f"PDF inspection failed for {path}: {exc}")
            raise InvalidSpec(f"PDF could not be read: {exc}", {"path": str(path)}) from exc

        logger.debug(f"Inspected {path.name}: {pages} pages, {size_bytes} bytes")
        return FileMetadata(
            path=str(path),
            pages=pages,
            size_bytes=size_bytes,
            page_dimensions=dimensions,
        )
