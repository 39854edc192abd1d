#===========================================================================
# labelflow/labels/artifacts.py
# Per-store artifact layout and atomic file writes.
#===========================================================================

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from labelflow.config import settings
from labelflow.errors import ArtifactWriteError

logger = logging.getLogger("uvicorn.error")


@dataclass(frozen=True)
class ArtifactSet:
    pdf_path: Path
    image_path: Path
    bitmap_path: Path


@dataclass(frozen=True)
class ArtifactLayout:
    """
    Where every derived file of an order lives:

      {labels_root}/{store}/{order}_transport.pdf   carrier label, as PDF
      {pdf_root}/{store}/{order}.pdf                slip + label composite
      {images_root}/{store}/{order}.jpg             rasterized composite
      {zpl_root}/{store}/{order}.zpl                ^GFA bitmap
    """

    labels_root: Path
    pdf_root: Path
    images_root: Path
    zpl_root: Path

    @classmethod
    def from_settings(cls) -> "ArtifactLayout":
        return cls(
            labels_root=Path(settings.LABELS_ROOT),
            pdf_root=Path(settings.PDF_ROOT),
            images_root=Path(settings.IMAGES_ROOT),
            zpl_root=Path(settings.ZPL_ROOT),
        )

    @classmethod
    def under(cls, base: Path) -> "ArtifactLayout":
        base = Path(base)
        return cls(
            labels_root=base / "saved_labels",
            pdf_root=base / "generated_pdf",
            images_root=base / "label_images",
            zpl_root=base / "generated_zpl",
        )

    def roots(self) -> list[Path]:
        return [self.labels_root, self.pdf_root, self.images_root, self.zpl_root]

    def ensure_roots(self) -> None:
        for d in self.roots():
            if not d.exists():
                d.mkdir(parents=True, exist_ok=True)
                logger.info("[FILES] created directory %s", d)

    def store_dir(self, root: Path, store_id) -> Path:
        return root / str(store_id)

    def transport_pdf(self, store_id, order_number: str) -> Path:
        return self.labels_root / str(store_id) / f"{order_number}_transport.pdf"

    def composite_pdf(self, store_id, order_number: str) -> Path:
        return self.pdf_root / str(store_id) / f"{order_number}.pdf"

    def image(self, store_id, order_number: str) -> Path:
        return self.images_root / str(store_id) / f"{order_number}.jpg"

    def bitmap(self, store_id, order_number: str) -> Path:
        return self.zpl_root / str(store_id) / f"{order_number}.zpl"

    def artifact_set(self, store_id, order_number: str) -> ArtifactSet:
        return ArtifactSet(
            pdf_path=self.composite_pdf(store_id, order_number),
            image_path=self.image(store_id, order_number),
            bitmap_path=self.bitmap(store_id, order_number),
        )


def write_bytes_atomic(path: Path, data: bytes) -> Path:
    """
    Write through a temp file and rename, so a failed write never leaves a
    truncated file that looks complete.
    """
    path = Path(path)
    tmp = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp, "wb") as f:
            f.write(data)
        os.replace(tmp, path)
    except OSError as e:
        try:
            tmp.unlink()
        except OSError:
            pass
        raise ArtifactWriteError(str(path), str(e)) from e
    return path


def write_text_atomic(path: Path, text: str) -> Path:
    return write_bytes_atomic(path, text.encode("utf-8"))
