"""
Value types for the publishing stage.

Everything here compares by value. The staleness checks rely on that:
a page is rebuilt when the snapshot remembered from its last build no
longer equals what would be used now.
"""

from datetime import datetime, timedelta, timezone
from enum import IntEnum, IntFlag
from pathlib import Path
from typing import ClassVar, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


TIMESTAMP_FORMAT = "%d.%m.%Y %H:%M:%S"


def truncate_to_ms(value: datetime) -> datetime:
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def utc_now() -> datetime:
    """Naive UTC time with millisecond precision (what the project file can hold)."""
    return truncate_to_ms(datetime.now(timezone.utc).replace(tzinfo=None))


def next_revision(previous: Optional[datetime]) -> datetime:
    """Fresh revision stamp, strictly later than the previous one."""
    now = utc_now()
    if previous is not None and now <= previous:
        return previous + timedelta(milliseconds=1)
    return now


def format_timestamp(value: Optional[datetime]) -> str:
    """Render as dd.MM.yyyy hh:mm:ss.zzz."""
    if value is None:
        return ""
    return f"{value.strftime(TIMESTAMP_FORMAT)}.{value.microsecond // 1000:03d}"


def parse_timestamp(text: Optional[str]) -> Optional[datetime]:
    if not text:
        return None
    # the date part itself contains dots, milliseconds follow the last one
    date_part, _, rest = text.rpartition(".")
    try:
        parsed = datetime.strptime(date_part, TIMESTAMP_FORMAT)
        return parsed.replace(microsecond=int(rest) * 1000)
    except ValueError:
        try:
            return datetime.strptime(text, TIMESTAMP_FORMAT)
        except ValueError:
            return None


def file_mtime(path: Path) -> datetime:
    stat = path.stat()
    stamp = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).replace(tzinfo=None)
    return truncate_to_ms(stamp)


class ClassifierType(IntEnum):
    LEGACY = 1
    NORMAL = 2
    MAXIMAL = 3

    @classmethod
    def from_string(cls, value: str) -> "ClassifierType":
        if value == "legacy":
            return cls.LEGACY
        if value == "normal":
            return cls.NORMAL
        return cls.MAXIMAL

    def to_string(self) -> str:
        return self.name.lower()


class Regenerate(IntFlag):
    NONE = 0
    PAGE = 1
    THUMBNAIL = 2
    ALL = 3


class DjbzParams(BaseModel):
    """Encoder tuning for one shared dictionary."""
    model_config = ConfigDict(frozen=True)

    use_prototypes: bool = Field(True, description="Use prototypes when classifying symbols")
    use_averaging: bool = Field(False, description="Average symbols of one class")
    aggression: int = Field(100, ge=0, le=1000, description="Lossy matching aggression")
    use_erosion: bool = Field(False, description="Erode symbols before encoding")
    classifier: ClassifierType = Field(ClassifierType.MAXIMAL, description="Symbol classifier tier")
    extension: str = Field("djbz", min_length=1, description="Dictionary file extension")


class ExportSuggestion(BaseModel):
    """Upstream classification of a page's content."""
    model_config = ConfigDict(frozen=True)

    has_bw_layer: bool = False
    has_color_layer: bool = False
    is_valid: bool = False
    width: int = 0
    height: int = 0
    dpi: int = 0

    @property
    def is_layered(self) -> bool:
        return self.has_bw_layer and self.has_color_layer

    @property
    def is_blank(self) -> bool:
        return not self.has_bw_layer and not self.has_color_layer


class FileRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    filename: str = ""
    size: int = 0

    @property
    def is_set(self) -> bool:
        return bool(self.filename)


class FileStamp(BaseModel):
    """Recorded size and mtime of a produced artifact."""
    model_config = ConfigDict(frozen=True)

    path: str
    size: int = 0
    last_changed: Optional[datetime] = None

    @classmethod
    def from_disk(cls, path) -> "FileStamp":
        p = Path(path)
        if not p.exists():
            return cls(path=str(p), size=0, last_changed=None)
        return cls(path=str(p), size=p.stat().st_size, last_changed=file_mtime(p))

    def matches_disk(self) -> bool:
        if not self.path:
            return False
        p = Path(self.path)
        if not p.exists():
            return False
        return p.stat().st_size == self.size and file_mtime(p) == self.last_changed


class SourceImagesInfo(BaseModel):
    """Raw material of a page: the output image plus its exported layers and chunks."""
    model_config = ConfigDict(frozen=True)

    export_suggestion: ExportSuggestion = Field(default_factory=ExportSuggestion)
    output: FileRef = Field(default_factory=FileRef)
    foreground: FileRef = Field(default_factory=FileRef)
    background: FileRef = Field(default_factory=FileRef)
    bg44: FileRef = Field(default_factory=FileRef)
    jb2: FileRef = Field(default_factory=FileRef)

    @property
    def is_valid(self) -> bool:
        return self.output.is_set

    @property
    def is_layered(self) -> bool:
        return self.background.is_set

    def file_to_encode_as_text(self) -> str:
        return self.foreground.filename if self.foreground.is_set else self.output.filename

    def file_to_encode_as_raster(self) -> str:
        return self.background.filename if self.background.is_set else self.output.filename


class ColorRect(BaseModel):
    """Foreground colour override for a page region."""
    model_config = ConfigDict(frozen=True)

    color: str
    x: int
    y: int
    width: int
    height: int

    def to_fgbz(self) -> str:
        return f"{self.color}:{self.x},{self.y},{self.width},{self.height}"


class PageSettings(BaseModel):
    """
    User-facing output settings of one page.

    The field groups below decide which pipeline stages must run again
    after an edit. Keep them in sync when adding fields.
    """
    model_config = ConfigDict(frozen=True)

    RASTER_FIELDS: ClassVar[Tuple[str, ...]] = ("dpi", "bsf", "scale_method")
    TEXT_FIELDS: ClassVar[Tuple[str, ...]] = ("dpi", "clean", "erosion", "smooth")
    ASSEMBLY_FIELDS: ClassVar[Tuple[str, ...]] = ("dpi", "fg_color", "color_rects")
    POSTPROCESS_FIELDS: ClassVar[Tuple[str, ...]] = ("title", "rotation")

    dpi: int = Field(600, gt=0)
    bsf: int = Field(1, ge=1, le=12, description="Background subsample factor")
    scale_method: str = Field("lanczos3", description="Filter used when subsampling the background")
    clean: bool = False
    erosion: bool = False
    smooth: bool = False
    fg_color: str = Field("", description="FGbz options; empty means #black")
    color_rects: Tuple[ColorRect, ...] = ()
    rotation: int = Field(0, ge=0, le=3, description="Quarter turns")
    title: str = ""

    @field_validator("color_rects", mode="before")
    @classmethod
    def _rects_as_tuple(cls, v):
        return tuple(v) if isinstance(v, list) else v

    def _match(self, other: "PageSettings", fields: Tuple[str, ...]) -> bool:
        return all(getattr(self, f) == getattr(other, f) for f in fields)

    def matches_raster_part(self, other: "PageSettings") -> bool:
        return self._match(other, self.RASTER_FIELDS)

    def matches_text_part(self, other: "PageSettings") -> bool:
        return self._match(other, self.TEXT_FIELDS)

    def matches_assembly_part(self, other: "PageSettings") -> bool:
        return self._match(other, self.ASSEMBLY_FIELDS)

    def matches_postprocess_part(self, other: "PageSettings") -> bool:
        return self._match(other, self.POSTPROCESS_FIELDS)

    def fgbz_argument(self) -> str:
        base = self.fg_color or "#black"
        return base + "".join(rect.to_fgbz() for rect in self.color_rects)


class OutputParams(BaseModel):
    """Everything that was in effect the last time a page was fully produced."""
    model_config = ConfigDict(frozen=True)

    settings: PageSettings
    djbz_id: str
    djbz_revision: Optional[datetime] = None
    djbz_params: DjbzParams = Field(default_factory=DjbzParams)

    def matches(self, other: "OutputParams") -> bool:
        return self == other


class PageParams(BaseModel):
    """Persisted publishing state of one page."""

    djbz_id: str = ""
    settings: PageSettings = Field(default_factory=PageSettings)
    source_images: SourceImagesInfo = Field(default_factory=SourceImagesInfo)
    output_params: Optional[OutputParams] = None
    djvu: Optional[FileStamp] = None
    force_reprocess: int = 0

    @property
    def has_output_params(self) -> bool:
        return self.output_params is not None

    @property
    def regenerate(self) -> Regenerate:
        return Regenerate(self.force_reprocess)

    def is_djvu_cached(self) -> bool:
        return self.djvu is not None and self.djvu.matches_disk()

    def current_output_params(self, djbz_id: str, revision: Optional[datetime],
                              djbz_params: DjbzParams) -> OutputParams:
        return OutputParams(
            settings=self.settings,
            djbz_id=djbz_id,
            djbz_revision=revision,
            djbz_params=djbz_params,
        )
