from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path


class SubPage(IntEnum):
    SINGLE = 0
    LEFT = 1
    RIGHT = 2

    @classmethod
    def from_string(cls, value: str) -> "SubPage":
        try:
            return cls[value.upper()]
        except KeyError:
            raise ValueError(f"Unknown sub page: {value!r}") from None

    def to_string(self) -> str:
        return self.name.lower()


@dataclass(frozen=True, order=True)
class PageId:
    """A scanned page: source image path plus the half of it, if split."""
    path: str
    sub_page: SubPage = SubPage.SINGLE

    @property
    def stem(self) -> str:
        suffix = {SubPage.SINGLE: "", SubPage.LEFT: "_1L", SubPage.RIGHT: "_2R"}[self.sub_page]
        return Path(self.path).stem + suffix

    def __str__(self) -> str:
        if self.sub_page == SubPage.SINGLE:
            return self.path
        return f"{self.path} ({self.sub_page.to_string()})"
