"""Tab registry backed by a Chromium browser over the DevTools protocol."""

import asyncio
import logging
import zlib
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from ..errors import TabNotFoundError
from ..models import Tab
from .connector import ChromeConnectionError, ChromeConnector
from .registry import LifecycleKind, TabLifecycleEvent, TabRegistry

logger = logging.getLogger(__name__)

# Runs inside the page; CDP has no tab "active"/"audible" flags
PAGE_STATE_SCRIPT = """
(() => {
  const media = Array.from(document.querySelectorAll('video, audio'));
  return {
    visible: document.visibilityState === 'visible',
    audible: media.some(m => !m.paused && !m.muted && m.volume > 0),
  };
})()
"""

PAUSE_MEDIA_SCRIPT = """
(() => {
  let paused = 0;
  document.querySelectorAll('video, audio').forEach(m => {
    if (!m.paused) { m.pause(); paused++; }
  });
  return paused;
})()
"""

SessionHook = Callable[[int, str], Awaitable[None]]

MAX_TAB_ID = 0x7FFFFFFF


def tab_id_for_target(target_id: str) -> int:
    """Integer tab id derived from a CDP targetId.

    Independent of ``/json/list`` order, so a page keeps its id across
    processes (CLI invocations) for as long as the target lives.
    """
    return (zlib.crc32(target_id.encode("utf-8")) & MAX_TAB_ID) or 1


class ChromeTabRegistry(TabRegistry):
    """Expose Chrome page targets as tabs with stable integer ids.

    Page targets are listed through ``/json/list``; per-page state (visible,
    playing media) is read through a flattened session attached on demand.
    Session hooks let telemetry sources enable their CDP domains once per page.
    """

    def __init__(self, connector: ChromeConnector, read_state: bool = True,
                 state_timeout: float = 2.0):
        super().__init__()
        self.connector = connector
        self.read_state = read_state
        self.state_timeout = state_timeout

        self.tab_ids: Dict[str, int] = {}  # targetId -> tab id
        self.target_ids: Dict[int, str] = {}  # tab id -> targetId
        self.sessions: Dict[str, str] = {}  # targetId -> sessionId
        self.session_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self.session_hooks: List[SessionHook] = []

        self.known_tabs: Dict[int, Tab] = {}
        self.discarded: Set[int] = set()
        self.targets_lock = asyncio.Lock()
        self.listening = False

    # --- id mapping -------------------------------------------------------

    def _tab_id_for(self, target_id: str) -> int:
        tab_id = self.tab_ids.get(target_id)
        if tab_id is None:
            tab_id = tab_id_for_target(target_id)
            while tab_id in self.target_ids:
                logger.warning(f"Tab id {tab_id} collides for target {target_id}, trying next")
                tab_id = tab_id % MAX_TAB_ID + 1
            self.tab_ids[target_id] = tab_id
            self.target_ids[tab_id] = target_id
        return tab_id

    def _forget(self, target_id: str) -> Optional[int]:
        tab_id = self.tab_ids.pop(target_id, None)
        if tab_id is not None:
            self.target_ids.pop(tab_id, None)
            self.known_tabs.pop(tab_id, None)
            self.discarded.discard(tab_id)
        self.sessions.pop(target_id, None)
        self.session_locks.pop(target_id, None)
        return tab_id

    def tab_id_for_session(self, session_id: Optional[str]) -> Optional[int]:
        """Map a flattened CDP session back to its tab id."""
        if not session_id:
            return None
        for target_id, sid in self.sessions.items():
            if sid == session_id:
                return self.tab_ids.get(target_id)
        return None

    def _target_for(self, tab_id: int) -> str:
        target_id = self.target_ids.get(tab_id)
        if target_id is None:
            raise TabNotFoundError(tab_id)
        return target_id

    async def _resolve_target(self, tab_id: int) -> str:
        """Like _target_for, but assigns ids from a fresh listing first when unknown."""
        if tab_id not in self.target_ids:
            for target in await self.connector.list_page_targets():
                if target.get("id"):
                    self._tab_id_for(target["id"])
        return self._target_for(tab_id)

    # --- lifecycle --------------------------------------------------------

    async def start(self) -> None:
        """Subscribe to Target.* events and translate them to lifecycle events."""
        if self.listening:
            return
        self.listening = True

        await self.connector.set_discover_targets(True)
        self.connector.on_event("Target.targetCreated", self._on_target_created)
        self.connector.on_event("Target.targetDestroyed", self._on_target_destroyed)
        self.connector.on_event("Target.targetInfoChanged", self._on_target_info_changed)

    async def stop(self) -> None:
        if not self.listening:
            return
        self.listening = False

        self.connector.off_event("Target.targetCreated", self._on_target_created)
        self.connector.off_event("Target.targetDestroyed", self._on_target_destroyed)
        self.connector.off_event("Target.targetInfoChanged", self._on_target_info_changed)

        try:
            await self.connector.set_discover_targets(False)
        except Exception as e:
            logger.debug(f"Failed to disable target discovery: {e}")

        for session_id in list(self.sessions.values()):
            try:
                await self.connector.call("Target.detachFromTarget", {"sessionId": session_id},
                                          timeout=5.0)
            except Exception as e:
                logger.debug(f"Error detaching session {session_id}: {e}")
        self.sessions.clear()

    def add_session_hook(self, hook: SessionHook) -> None:
        """Run ``hook(tab_id, session_id)`` after each new page session is attached."""
        self.session_hooks.append(hook)

    async def ensure_session(self, tab_id: int) -> str:
        """Attach to the tab's page target once and return the flattened session id."""
        target_id = self._target_for(tab_id)
        async with self.session_locks[target_id]:
            session_id = self.sessions.get(target_id)
            if session_id:
                return session_id

            last_err: Optional[Exception] = None
            for attempt in range(3):
                try:
                    response = await self.connector.call(
                        "Target.attachToTarget",
                        {"targetId": target_id, "flatten": True},
                        timeout=20.0
                    )
                    session_id = response["sessionId"]
                    break
                except Exception as e:
                    last_err = e
                    await asyncio.sleep(0.3 * (attempt + 1))

            if not session_id:
                raise ChromeConnectionError(f"Failed to attach to tab {tab_id}: {last_err}")

            self.sessions[target_id] = session_id
            logger.debug(f"Attached to tab {tab_id} ({target_id}) with session {session_id}")

        for hook in list(self.session_hooks):
            try:
                await hook(tab_id, session_id)
            except Exception as e:
                logger.debug(f"Session hook failed for tab {tab_id}: {e}")
        return session_id

    # --- TabRegistry ------------------------------------------------------

    async def list_tabs(self) -> List[Tab]:
        targets = await self.connector.list_page_targets()

        removed: List[int] = []
        async with self.targets_lock:
            current = {target["id"] for target in targets if target.get("id")}
            for stale_id in set(self.tab_ids) - current:
                logger.debug(f"Removed stale target {stale_id} via listing")
                tab_id = self._forget(stale_id)
                if tab_id is not None:
                    removed.append(tab_id)

        # Missed Target.targetDestroyed events surface here
        for tab_id in removed:
            await self._fire_event(TabLifecycleEvent(
                LifecycleKind.REMOVED, tab_id, change_info={"isWindowClosing": False}
            ))

        tabs = await asyncio.gather(*(
            self._build_tab(target) for target in targets if target.get("id")
        ))
        return list(tabs)

    async def get_tab(self, tab_id: int) -> Tab:
        target_id = await self._resolve_target(tab_id)
        for target in await self.connector.list_page_targets():
            if target.get("id") == target_id:
                return await self._build_tab(target)
        raise TabNotFoundError(tab_id)

    async def mutate_tab(self, tab_id: int, action: str) -> bool:
        target_id = await self._resolve_target(tab_id)

        if action == "close":
            result = await self.connector.call("Target.closeTarget", {"targetId": target_id})
            return bool(result.get("success", True))

        session_id = await self.ensure_session(tab_id)
        if action == "discard":
            await self.connector.call(
                "Page.setWebLifecycleState", {"state": "frozen"}, session_id=session_id
            )
            self.discarded.add(tab_id)
            return True

        if action == "pause_media":
            result = await self.connector.call(
                "Runtime.evaluate",
                {"expression": PAUSE_MEDIA_SCRIPT, "returnByValue": True},
                session_id=session_id
            )
            logger.debug(f"Paused {result.get('result', {}).get('value', 0)} media elements in tab {tab_id}")
            return True

        raise ValueError(f"Unsupported host action: {action}")

    # --- tab construction -------------------------------------------------

    async def _build_tab(self, target: Dict[str, Any]) -> Tab:
        tab_id = self._tab_id_for(target["id"])
        discarded = tab_id in self.discarded
        if discarded:
            # Frozen pages do not run scripts
            active, audible = False, False
        else:
            active, audible = await self._read_state(tab_id)

        tab = Tab(
            id=tab_id,
            title=target.get("title", ""),
            url=target.get("url", ""),
            fav_icon_url=target.get("faviconUrl"),
            active=active,
            pinned=False,  # not exposed by CDP
            audible=audible,
            discarded=discarded,
        )
        self.known_tabs[tab_id] = tab
        return tab

    async def _read_state(self, tab_id: int) -> Tuple[bool, bool]:
        """Return (visible, playing audible media); (False, False) if unknown."""
        if not self.read_state:
            return False, False
        try:
            session_id = await self.ensure_session(tab_id)
            result = await self.connector.call(
                "Runtime.evaluate",
                {"expression": PAGE_STATE_SCRIPT, "returnByValue": True},
                session_id=session_id,
                timeout=self.state_timeout
            )
            value = result.get("result", {}).get("value") or {}
            return bool(value.get("visible")), bool(value.get("audible"))
        except Exception as e:
            logger.debug(f"State read failed for tab {tab_id}: {e}")
            return False, False

    # --- Target.* event handlers ------------------------------------------

    async def _on_target_created(self, params: Dict[str, Any]) -> None:
        target_info = params.get("targetInfo", {})
        if target_info.get("type") != "page" or not target_info.get("targetId"):
            return

        async with self.targets_lock:
            tab_id = self._tab_id_for(target_info["targetId"])
            tab = Tab(id=tab_id, title=target_info.get("title", ""), url=target_info.get("url", ""))
            self.known_tabs[tab_id] = tab

        await self._fire_event(TabLifecycleEvent(LifecycleKind.CREATED, tab_id, tab=tab))

    async def _on_target_destroyed(self, params: Dict[str, Any]) -> None:
        target_id = params.get("targetId")
        if not target_id:
            return

        async with self.targets_lock:
            tab_id = self._forget(target_id)
        if tab_id is None:
            return

        await self._fire_event(TabLifecycleEvent(
            LifecycleKind.REMOVED, tab_id, change_info={"isWindowClosing": False}
        ))

    async def _on_target_info_changed(self, params: Dict[str, Any]) -> None:
        target_info = params.get("targetInfo", {})
        if target_info.get("type") != "page" or not target_info.get("targetId"):
            return

        async with self.targets_lock:
            tab_id = self._tab_id_for(target_info["targetId"])
            old_tab = self.known_tabs.get(tab_id)

        new_url = target_info.get("url", "")
        new_title = target_info.get("title", "")
        change_info: Dict[str, Any] = {}
        if old_tab is None or old_tab.url != new_url:
            change_info["url"] = new_url
            change_info["status"] = "complete"
            # A navigation thaws a frozen page
            self.discarded.discard(tab_id)
        if old_tab is None or old_tab.title != new_title:
            change_info["title"] = new_title

        active, audible = await self._read_state(tab_id)
        was_active = old_tab.active if old_tab else False
        was_audible = old_tab.audible if old_tab else False
        if active != was_active:
            change_info["active"] = active
        if audible != was_audible:
            change_info["audible"] = audible

        tab = Tab(
            id=tab_id,
            title=new_title,
            url=new_url,
            fav_icon_url=old_tab.fav_icon_url if old_tab else None,
            active=active,
            audible=audible,
            discarded=tab_id in self.discarded,
        )
        self.known_tabs[tab_id] = tab

        if not change_info:
            return
        await self._fire_event(TabLifecycleEvent(
            LifecycleKind.UPDATED, tab_id, tab=tab, change_info=change_info
        ))
        if active and not was_active:
            await self._fire_event(TabLifecycleEvent(LifecycleKind.ACTIVATED, tab_id, tab=tab))
