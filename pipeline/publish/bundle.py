"""
Bundled multi-page document.

djvm joins the page documents, then one djvused pass restores page titles,
rotations and the document metadata, which djvm does not carry over.
"""

import threading
from pathlib import Path
from typing import Optional, Sequence

from infra.config import EncoderBinaries
from infra.external_tool import CancelToken, ExternalToolRunner
from infra.pipeline.logger import PipelineLogger

from .errors import ConfigurationError, FilesystemInconsistency
from .layout import OutputLayout
from .page_id import PageId
from .settings import ParameterStore
from .stages import djvused_quote

# only one bundle may be written at a time, process-wide
_bundle_guard = threading.Lock()

META_SEPARATOR = " " * 8


def bundle_script(pages: Sequence[PageId], store: ParameterStore) -> str:
    script = ""
    for page_no, page in enumerate(pages, start=1):
        settings = store.get(page).settings
        if settings.title:
            script += f'select {page_no}; set-page-title "{djvused_quote(settings.title)}"; '
        if settings.rotation:
            script += f'select {page_no}; set-rotation "{settings.rotation}"; '
    return script


def write_metadata(store: ParameterStore, meta_file: Path) -> bool:
    """Write document.meta; remove a stale one when there is no metadata."""
    if not store.metadata:
        if meta_file.exists():
            meta_file.unlink()
        return False

    meta_file.parent.mkdir(parents=True, exist_ok=True)
    with open(meta_file, "w") as f:
        for key, value in store.metadata.items():
            f.write(f"{key}{META_SEPARATOR}{value}\n")
    return True


class BundleBuilder:
    def __init__(self, store: ParameterStore, layout: OutputLayout, encoders: EncoderBinaries,
                 runner: ExternalToolRunner, logger: Optional[PipelineLogger] = None):
        self.store = store
        self.layout = layout
        self.encoders = encoders
        self.runner = runner
        self.logger = logger

    def build(self, pages: Sequence[PageId], target: Optional[Path] = None,
              cancel_token: Optional[CancelToken] = None) -> bool:
        """Write the bundled document; False if another build is running."""
        if not _bundle_guard.acquire(blocking=False):
            if self.logger:
                self.logger.info("Bundled document is already being built")
            return False

        try:
            self._build(list(pages), target, cancel_token or CancelToken())
            return True
        finally:
            _bundle_guard.release()

    def _build(self, pages, target, cancel_token) -> None:
        if target is not None:
            self.store.bundled.filename = str(target)
        if not self.store.bundled.filename:
            raise ConfigurationError("No file name for the bundled document")
        target = Path(self.store.bundled.filename)
        target.parent.mkdir(parents=True, exist_ok=True)

        page_files = self.store.djvu_filenames(pages)
        self.runner.run(self.encoders.resolve("djvm"), ["-c", str(target)] + page_files, cancel_token)
        if not target.exists():
            raise FilesystemInconsistency(target)

        script = bundle_script(pages, self.store)
        meta_file = self.layout.metadata_file()
        if write_metadata(self.store, meta_file):
            script += f'select ; set-meta "{djvused_quote(str(meta_file))}"'

        if script:
            self.runner.run(self.encoders.resolve("djvused"), [str(target), "-e", script, "-s"], cancel_token)

        self.store.bundled.refresh()
        if self.logger:
            self.logger.info(f"📚 Bundled {len(pages)} pages into {target.name}", pages=len(pages))
