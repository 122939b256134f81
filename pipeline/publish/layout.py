from pathlib import Path

from .page_id import PageId


class OutputLayout:
    """File naming for everything the publishing stage reads and writes.

    {out_dir}/{stem}.tif                     processed page image (input)
    {out_dir}/djvu/{stem}.bg44|.jb2|.djvu    encoded chunks and the page document
    {out_dir}/djvu/{dict_id}.{ext}           shared dictionary
    {out_dir}/djvu/layers/pic|txt/{stem}.tif exported background/foreground layers
    """

    IMAGE_EXTENSION = "tif"

    def __init__(self, out_dir: Path, pages_subfolder: str = "djvu", layers_subfolder: str = "layers"):
        self.out_dir = Path(out_dir)
        self.djvu_dir = self.out_dir / pages_subfolder
        self.layers_dir = self.djvu_dir / layers_subfolder

    def ensure_dirs(self) -> None:
        (self.layers_dir / "pic").mkdir(parents=True, exist_ok=True)
        (self.layers_dir / "txt").mkdir(parents=True, exist_ok=True)

    def file_name_for(self, page: PageId) -> str:
        return f"{page.stem}.{self.IMAGE_EXTENSION}"

    def output_image(self, page: PageId) -> Path:
        return self.out_dir / self.file_name_for(page)

    def background_layer(self, page: PageId) -> Path:
        return self.layers_dir / "pic" / self.file_name_for(page)

    def foreground_layer(self, page: PageId) -> Path:
        return self.layers_dir / "txt" / self.file_name_for(page)

    def bg44_chunk(self, page: PageId) -> Path:
        return self.djvu_dir / f"{page.stem}.bg44"

    def jb2_chunk(self, page: PageId) -> Path:
        return self.djvu_dir / f"{page.stem}.jb2"

    def djvu_page(self, page: PageId) -> Path:
        return self.djvu_dir / f"{page.stem}.djvu"

    def dictionary_file(self, dict_id: str, extension: str) -> Path:
        return self.djvu_dir / f"{dict_id}.{extension}"

    def dictionary_bundle(self, dict_id: str) -> Path:
        return self.djvu_dir / f"_djbz_{dict_id}.djvu"

    def metadata_file(self) -> Path:
        return self.djvu_dir / "document.meta"
