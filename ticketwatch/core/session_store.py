from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping
from urllib.parse import urlparse

from playwright.async_api import BrowserContext, Page

from ticketwatch.core.contracts import PersistencePolicy
from ticketwatch.core.state_models import SessionSnapshot

logger = logging.getLogger("ticketwatch.session_store")

# Identity, security and anti-bot names. Never persisted under any policy.
DENY_PATTERN = re.compile(
    r"^(?:"
    r"forterToken|aws-?waf-?token|awswaf_token_refresh_timestamp|wsso(?:-session)?"
    r"|s|sid|ssid|auths|_rvt|lastRskxRun|rskxRunCookie|vmab_ptid|ulv-ed-event"
    r"|_ga(?:_.+)?|_gid|_fbp|_gcl_au|_uetsid|_uetvid"
    r")$"
    r"|session|sess_?id|csrf|xsrf|token|auth|jwt",
    re.IGNORECASE,
)

LIGHT_COOKIE_ALLOW = re.compile(
    r"^(?:locale|lang|country|currency|siteprefs|pref|ab|exp|variant)$",
    re.IGNORECASE,
)

LIGHT_STORAGE_ALLOW = re.compile(
    r"^(?:ui_|ux_|pref|locale|currency|country|feature_|toggle_)",
    re.IGNORECASE,
)

COLLECT_LOCAL_STORAGE_JS = """
() => {
    const out = {};
    try {
        for (let i = 0; i < localStorage.length; i++) {
            const key = localStorage.key(i);
            if (key) out[key] = localStorage.getItem(key);
        }
    } catch (_) {}
    return out;
}
"""

RESTORE_LOCAL_STORAGE_JS = """
(entries) => {
    let restored = 0;
    try {
        for (const [key, value] of Object.entries(entries)) {
            localStorage.setItem(key, value);
            restored += 1;
        }
    } catch (_) {}
    return restored;
}
"""


def site_key_from_url(url: str) -> str:
    """Naive registrable domain: the last two DNS labels of the host."""
    hostname = (urlparse(url).hostname or "").lower()
    parts = [part for part in hostname.split(".") if part]
    if len(parts) >= 2:
        return ".".join(parts[-2:])
    return hostname


def is_denied(name: str) -> bool:
    return bool(DENY_PATTERN.search(name or ""))


class SnapshotGate:
    """Persistence policy applied at both capture and restore time."""

    def __init__(self, policy: PersistencePolicy = PersistencePolicy.LIGHT) -> None:
        self._policy = policy

    @property
    def policy(self) -> PersistencePolicy:
        return self._policy

    def is_cookie_allowed(self, name: str) -> bool:
        if self._policy == PersistencePolicy.NONE or not name:
            return False
        if is_denied(name):
            return False
        if self._policy == PersistencePolicy.FULL:
            return True
        return bool(LIGHT_COOKIE_ALLOW.match(name))

    def is_storage_key_allowed(self, key: str) -> bool:
        if self._policy == PersistencePolicy.NONE or not key:
            return False
        if is_denied(key):
            return False
        if self._policy == PersistencePolicy.FULL:
            return True
        return bool(LIGHT_STORAGE_ALLOW.match(key))

    def filter_cookies(self, cookies: Iterable[Mapping[str, Any]], site_key: str | None = None) -> list[dict[str, Any]]:
        kept: list[dict[str, Any]] = []
        key = (site_key or "").lstrip(".").lower()
        for cookie in cookies:
            if not cookie or not isinstance(cookie, Mapping):
                continue
            domain = str(cookie.get("domain") or "").lstrip(".").lower()
            if key and not (domain == key or domain.endswith("." + key)):
                continue
            if not self.is_cookie_allowed(str(cookie.get("name") or "")):
                continue
            kept.append(dict(cookie))
        return kept

    def filter_local_storage(self, entries: Mapping[str, Any]) -> dict[str, str]:
        return {
            str(key): str(value)
            for key, value in (entries or {}).items()
            if value is not None and self.is_storage_key_allowed(str(key))
        }

    def snapshot(
        self,
        cookies: Iterable[Mapping[str, Any]],
        local_storage: Mapping[str, Any],
        site_key: str | None = None,
    ) -> SessionSnapshot:
        if self._policy == PersistencePolicy.NONE:
            return SessionSnapshot()
        return SessionSnapshot(
            cookies=self.filter_cookies(cookies, site_key=site_key),
            local_storage=self.filter_local_storage(local_storage),
        )


@dataclass(frozen=True)
class SitePaths:
    site_dir: Path
    cookies: Path
    local_storage: Path


class SnapshotStore:
    """Per-site JSON files: ``<root>/<site_key>/cookies.json`` and ``localstorage.json``."""

    def __init__(self, root_dir: str = ".session_data", gate: SnapshotGate | None = None) -> None:
        self._root = Path(root_dir)
        self._gate = gate or SnapshotGate()

    @property
    def gate(self) -> SnapshotGate:
        return self._gate

    def site_paths(self, site_key: str) -> SitePaths:
        safe = site_key.replace("/", "_") or "_"
        site_dir = self._root / safe
        site_dir.mkdir(parents=True, exist_ok=True)
        return SitePaths(
            site_dir=site_dir,
            cookies=site_dir / "cookies.json",
            local_storage=site_dir / "localstorage.json",
        )

    def _read_json(self, path: Path) -> Any:
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("[SessionStore] unreadable snapshot file %s", path)
            return None

    def _write_json(self, path: Path, payload: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    def load(self, site_key: str) -> SessionSnapshot:
        if self._gate.policy == PersistencePolicy.NONE:
            return SessionSnapshot()
        paths = self.site_paths(site_key)
        cookies = self._read_json(paths.cookies)
        storage = self._read_json(paths.local_storage)
        return self._gate.snapshot(
            cookies if isinstance(cookies, list) else [],
            storage if isinstance(storage, dict) else {},
            site_key=site_key,
        )

    def save(self, site_key: str, snapshot: SessionSnapshot) -> SessionSnapshot:
        if self._gate.policy == PersistencePolicy.NONE:
            return SessionSnapshot()
        filtered = self._gate.snapshot(snapshot.cookies, snapshot.local_storage, site_key=site_key)
        paths = self.site_paths(site_key)
        self._write_json(paths.cookies, filtered.cookies)
        self._write_json(paths.local_storage, filtered.local_storage)
        logger.info(
            "[SessionStore] saved %d cookies, %d storage keys for %s (level=%s)",
            len(filtered.cookies),
            len(filtered.local_storage),
            site_key,
            self._gate.policy.value,
        )
        return filtered

    async def restore_cookies(self, context: BrowserContext, site_key: str) -> int:
        snapshot = self.load(site_key)
        restored = 0
        for cookie in snapshot.cookies:
            try:
                await context.add_cookies([cookie])
                restored += 1
            except Exception as exc:
                logger.debug("[SessionStore] cookie %s rejected: %s", cookie.get("name"), exc)
        if restored:
            logger.info("[SessionStore] restored %d cookies for %s", restored, site_key)
        return restored

    async def restore_local_storage(self, page: Page, site_key: str) -> int:
        snapshot = self.load(site_key)
        if not snapshot.local_storage:
            return 0
        restored = int(await page.evaluate(RESTORE_LOCAL_STORAGE_JS, snapshot.local_storage) or 0)
        logger.info("[SessionStore] restored %d storage keys for %s", restored, site_key)
        return restored

    async def persist(self, page: Page, site_key: str) -> SessionSnapshot:
        if self._gate.policy == PersistencePolicy.NONE:
            return SessionSnapshot()
        cookies = await page.context.cookies()
        storage = await page.evaluate(COLLECT_LOCAL_STORAGE_JS) or {}
        return self.save(site_key, SessionSnapshot(cookies=list(cookies), local_storage=dict(storage)))
