from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from tqdm import tqdm

from .convert.html_to_md import extract_title, html_to_markdown
from .manifest import ManifestWriter, relpath_posix
from .page import HtmlContent, Page, TextContent, WorkItem
from .urls import safe_filename_piece
from .visitors import SameSiteVisitor

logger = logging.getLogger(__name__)


class ExportVisitor(SameSiteVisitor):
    """Writes every visited page under ``out_dir/pages`` as Markdown.

    Several visitors (one per worker) may share one ``ManifestWriter`` and
    one progress bar.
    """

    def __init__(
        self,
        out_dir: Path,
        base_url: str,
        *,
        manifest: ManifestWriter | None = None,
        progress: tqdm | None = None,
    ) -> None:
        super().__init__(base_url)
        self.out_dir = Path(out_dir)
        self.pages_dir = self.out_dir / "pages"
        self.manifest = (
            manifest if manifest is not None else ManifestWriter(self.out_dir)
        )
        self.progress = progress

    def _page_path(self, item: WorkItem, title: str, suffix: str) -> Path:
        name = f"{item.docid:06d}-{safe_filename_piece(title, max_len=60)}{suffix}"
        return self.pages_dir / name

    def _event(self, page: Page, kind: str) -> dict[str, Any]:
        item = page.item
        return {
            "kind": kind,
            "url": item.url,
            "docid": item.docid,
            "depth": item.depth,
            "parent_url": item.parent_url,
            "anchor": item.anchor,
            "content_type": page.content_type,
        }

    def _write(self, path: Path, text: str) -> bool:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")
        except OSError as e:
            logger.error("Could not write %s: %s", path, e)
            return False
        return True

    def visit(self, page: Page) -> None:
        data = page.parse_data
        if isinstance(data, HtmlContent):
            title = data.title or extract_title(data.html, fallback=page.item.path)
            md_path = self._page_path(page.item, title, ".md")
            markdown = html_to_markdown(data.html, source_url=page.url, title=title)
            if not self._write(md_path, markdown):
                return
            event = self._event(page, "page")
            event["title"] = title
            event["links"] = len(data.outgoing_urls)
            event["path"] = relpath_posix(md_path, self.out_dir)
        elif isinstance(data, TextContent):
            txt_path = self._page_path(page.item, page.item.path, ".txt")
            if not self._write(txt_path, data.text):
                return
            event = self._event(page, "text")
            event["path"] = relpath_posix(txt_path, self.out_dir)
        else:
            event = self._event(page, "binary")
            event["bytes"] = len(page.content_data)

        self.manifest.append(event)
        if self.progress is not None:
            self.progress.update(1)

    def on_content_fetch_error(self, item: WorkItem) -> None:
        super().on_content_fetch_error(item)
        self.manifest.append({"kind": "fetch_error", "url": item.url})

    def on_parse_error(self, item: WorkItem) -> None:
        super().on_parse_error(item)
        self.manifest.append({"kind": "parse_error", "url": item.url})

    def handle_page_status_code(
        self, item: WorkItem, status_code: int, description: str
    ) -> None:
        if status_code != 200:
            self.manifest.append(
                {
                    "kind": "status",
                    "url": item.url,
                    "status": status_code,
                    "description": description,
                }
            )

    def on_before_exit(self) -> None:
        self.manifest.write_summary({"base_url": self.base_url})
