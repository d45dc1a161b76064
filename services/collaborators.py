"""
Interfaces to the systems the core depends on but does not implement.

    Renderer  - turns book content into PDF bytes (layout, typography)
    Storage   - persists rendered PDFs and hands back URLs
    Notifier  - tells users about shipped/delivered/cancelled orders and
                failed renditions

Default implementations (LocalFileStorage, LoggingNotifier) are enough to
run the service locally; production deployments inject their own.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

from logging_config import get_logger
from models.order import OrderStatus, PrintOrder
from models.rendition import JobType, Rendition


logger = get_logger(__name__)


@dataclass(frozen=True)
class RenderOutput:
    """Rendered PDF bytes plus the page count the renderer laid out."""

    pdf_bytes: bytes
    page_count: Optional[int] = None


class Renderer(ABC):
    @abstractmethod
    def render(self, book_id: str, version: int, job_type: JobType) -> RenderOutput:
        """Render the interior or cover PDF. Any exception is a job failure."""


class Storage(ABC):
    @abstractmethod
    def store(self, data: bytes, path: str) -> str:
        """Persist bytes under a relative path and return their URL."""

    def local_path(self, url: str) -> Optional[Path]:
        """Filesystem path for a stored URL, if the storage is local."""
        return None


class Notifier(ABC):
    @abstractmethod
    def order_status_changed(self, order: PrintOrder, status: OrderStatus) -> None:
        """Called for shipped (in_transit), delivered and cancelled."""

    @abstractmethod
    def rendition_failed(self, rendition: Rendition, reason: str) -> None:
        """Called when a rendition fails terminally."""


class LocalFileStorage(Storage):
    """Stores files under a root directory and returns file:// URLs."""

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()
        self._lock = threading.Lock()

    def store(self, data: bytes, path: str) -> str:
        target = (self.root / path).resolve()
        if self.root not in target.parents:
            raise ValueError(f"Storage path escapes root: {path}")
        with self._lock:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        logger.debug(f"Stored {len(data)} bytes at {target}")
        return target.as_uri()

    def local_path(self, url: str) -> Optional[Path]:
        parsed = urlparse(url)
        if parsed.scheme != "file":
            return None
        return Path(unquote(parsed.path))


class LoggingNotifier(Notifier):
    """Notifier that only logs; the core never sends email itself."""

    def order_status_changed(self, order: PrintOrder, status: OrderStatus) -> None:
        event = "shipped" if status is OrderStatus.IN_TRANSIT else status.value
        tracking = f" (tracking {order.tracking.tracking_number})" if order.tracking else ""
        logger.info(f"Notify: order {order.id} {event}{tracking}")

    def rendition_failed(self, rendition: Rendition, reason: str) -> None:
        logger.warning(f"Notify: rendition {rendition.id} for book {rendition.book_id} failed: {reason}")
