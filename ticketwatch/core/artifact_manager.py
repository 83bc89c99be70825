from __future__ import annotations

import hashlib
import json
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Optional

from playwright.async_api import Page


@dataclass(frozen=True)
class ArtifactRecord:
    artifact_id: str
    site_key: str
    kind: str
    path: str
    mime: str
    size: int
    sha256: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ArtifactManager:
    """Writes per-run captures under ``<root>/<site_key>/``."""

    def __init__(self, root_dir: str = ".session_data") -> None:
        self._root = Path(root_dir)
        self._root.mkdir(parents=True, exist_ok=True)
        self._records: dict[str, ArtifactRecord] = {}

    def site_dir(self, site_key: str) -> Path:
        safe = site_key.replace("/", "_") or "_"
        path = self._root / safe
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _sha256(self, path: Path) -> str:
        hasher = hashlib.sha256()
        with path.open("rb") as file_handle:
            for chunk in iter(lambda: file_handle.read(1024 * 1024), b""):
                hasher.update(chunk)
        return hasher.hexdigest()

    def _register(self, site_key: str, kind: str, path: Path, mime: str) -> ArtifactRecord:
        digest = self._sha256(path)
        record = ArtifactRecord(
            artifact_id=f"{kind}_{digest[:20]}",
            site_key=site_key,
            kind=kind,
            path=str(path),
            mime=mime,
            size=path.stat().st_size,
            sha256=digest,
        )
        self._records[record.artifact_id] = record
        return record

    @staticmethod
    def timestamp_ms() -> int:
        return int(time.time() * 1000)

    def write_text(self, site_key: str, kind: str, filename: str, text: str, mime: str = "text/html") -> ArtifactRecord:
        path = self.site_dir(site_key) / filename
        path.write_text(text, encoding="utf-8")
        return self._register(site_key, kind, path, mime)

    def write_json(self, site_key: str, kind: str, filename: str, payload: Any) -> ArtifactRecord:
        text = json.dumps(payload, indent=2, sort_keys=True, default=str)
        return self.write_text(site_key, kind, filename, text, mime="application/json")

    async def capture_page(
        self,
        page: Page,
        site_key: str,
        annotation: dict[str, Any],
        html: str | None = None,
        ts: int | None = None,
    ) -> list[ArtifactRecord]:
        """HTML, full-page screenshot, and the run annotation, sharing one timestamp."""
        stamp = ts or self.timestamp_ms()
        records: list[ArtifactRecord] = []

        if html is None:
            html = await page.content()
        records.append(self.write_text(site_key, "html", f"page_{stamp}.html", html))

        screenshot_path = self.site_dir(site_key) / f"screenshot_{stamp}.png"
        await page.screenshot(path=str(screenshot_path), full_page=True, type="png")
        records.append(self._register(site_key, "screenshot", screenshot_path, "image/png"))

        records.append(self.write_json(site_key, "annotation", f"run_{stamp}.json", annotation))
        return records

    def get_record(self, artifact_id: str) -> Optional[ArtifactRecord]:
        return self._records.get(artifact_id)

    def list_site_records(self, site_key: str) -> list[ArtifactRecord]:
        return [record for record in self._records.values() if record.site_key == site_key]
