from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from infra.config import PublisherConfig
from infra.pipeline.logger import PipelineLogger
from infra.pipeline.storage.metrics import MetricsManager

from .djbz import DictionaryRegistry
from .errors import ConfigurationError
from .layout import OutputLayout
from .page_id import PageId
from .schemas import ExportSuggestion
from .settings import ParameterStore


class PublishProject:
    """
    Everything a publishing run works on.

    pages is the project page sequence; its order decides dictionary
    assignment, text encoder input order and bundle order.
    """

    def __init__(
        self,
        name: str,
        out_dir: Path,
        pages: Sequence[PageId],
        suggestions: Optional[Dict[PageId, ExportSuggestion]] = None,
        config: Optional[PublisherConfig] = None,
        registry: Optional[DictionaryRegistry] = None,
        store: Optional[ParameterStore] = None,
        project_file: Optional[Path] = None,
    ):
        self.name = name
        self.config = config or PublisherConfig()
        self.out_dir = Path(out_dir)
        self.pages: List[PageId] = list(pages)
        _check_unique_stems(self.pages)
        self.suggestions: Dict[PageId, ExportSuggestion] = dict(suggestions or {})
        self.layout = OutputLayout(self.out_dir, self.config.pages_subfolder, self.config.layers_subfolder)
        self.registry = registry or DictionaryRegistry(self.config.dictionary_defaults)
        self.store = store or ParameterStore(self.config.page_defaults)
        self.project_file = Path(project_file) if project_file else None

    def page_by_number(self, number: int) -> PageId:
        """1-based page lookup in project order."""
        if number < 1 or number > len(self.pages):
            raise ConfigurationError(f"Page {number} is out of range 1..{len(self.pages)}")
        return self.pages[number - 1]

    def create_logger(self, stage: str, console_output: bool = False) -> PipelineLogger:
        return PipelineLogger(
            self.name,
            stage,
            self.layout.djvu_dir,
            console_output=console_output,
            level=self.config.log_level,
        )

    def metrics(self) -> MetricsManager:
        return MetricsManager(self.layout.djvu_dir / "metrics.json")

    def auto_assign(self) -> int:
        return self.registry.auto_assign(
            self.pages, self.suggestions, self.store, self.config.pages_per_dictionary
        )

    def reassign_all(self, pages_per_dictionary: Optional[int] = None) -> int:
        """Rebuild non-locked dictionaries; pages_per_dictionary overrides the config for this call."""
        if pages_per_dictionary is None:
            pages_per_dictionary = self.config.pages_per_dictionary
        return self.registry.reassign_all(self.pages, self.suggestions, self.store, pages_per_dictionary)

    def invalidate(self, pages: Iterable[PageId]) -> None:
        for page in pages:
            self.store.invalidate(page)

    def check_pages_ready(self) -> bool:
        return self.store.check_pages_ready(self.pages, self.registry)

    def default_bundle_path(self) -> Path:
        return self.out_dir / f"{self.name}.djvu"

    def filter_batch_pages(self, pages: Optional[Sequence[PageId]] = None) -> List[PageId]:
        """One page per shared dictionary is enough to rebuild it, sentinel pages stand alone."""
        selected = []
        seen = set()
        for page in (self.pages if pages is None else pages):
            params = self.store.get(page)
            if params is None or not params.djbz_id:
                selected.append(page)
                continue
            if self.registry.is_sentinel(params.djbz_id) or params.djbz_id not in seen:
                selected.append(page)
                seen.add(params.djbz_id)
        return selected


def _check_unique_stems(pages: Sequence[PageId]) -> None:
    # output files are named after the stem alone, so two pages may not share one
    seen: Dict[str, PageId] = {}
    for page in pages:
        other = seen.setdefault(page.stem, page)
        if other != page:
            raise ConfigurationError(
                f"Pages {other} and {page} would both be written as '{page.stem}'"
            )
