# courier_bot/workflows/conversation_workflow.py

from __future__ import annotations

import asyncio
import functools
import re
import time
from collections.abc import Awaitable, Callable, Coroutine
from pathlib import Path
from typing import Any

from telegram.error import TelegramError

from ..config import SEARCH_RESULTS_LIMIT, BotSettings, logger
from ..errors import DeliveryError, InvalidSelection, MediaToolError
from ..services import download_manager, media_downloader, media_tools
from ..services.link_data import ResolvedLink, SearchCandidate, TransferResult
from ..services.scraping_service import resolve_download_links, search_titles
from ..services.transport import AttachmentKind, ChatTransport, InboundEvent
from ..ui import messages
from ..utils import format_bytes, parse_selection
from .label_parser import normalize_link_label
from .search_session import ConversationSession, ConversationStage, SessionStore

SEARCH_COMMAND_PATTERN = re.compile(r"^/?search(?:\s+(?P<query>.*))?$", re.I | re.S)
STICKER_CAPTIONS = {"sticker", "s"}
BACKGROUND_CAPTIONS = {"removebg", "rmbg", "nobg"}

SearchFn = Callable[[str], Awaitable[list[SearchCandidate]]]
ResolveFn = Callable[[str], Awaitable[list[ResolvedLink]]]
TransferFn = Callable[..., Awaitable[TransferResult]]


def parse_search_command(text: str) -> str | None:
    """
    Returns the query of a ``search <query>`` message, ``""`` for a bare
    ``search``, or ``None`` when the text is not a search command.
    """
    match = SEARCH_COMMAND_PATTERN.match(text.strip())
    if not match:
        return None
    return (match.group("query") or "").strip()


def _log_task_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning(f"[WORKFLOW] Background task {task.get_name()} failed: {exc}")


class DialogueController:
    """
    Routes inbound chat events through the search-to-delivery state machine.

    One conversation's events are handled strictly in arrival order: each
    call holds that conversation's lock from session read to session write.
    File transfers run as background tasks tracked in ``active_transfers`` so
    the lock is released while a large download is in flight.
    """

    def __init__(
        self,
        store: SessionStore,
        transport: ChatTransport,
        settings: BotSettings,
        *,
        search: SearchFn = search_titles,
        resolve: ResolveFn = resolve_download_links,
        transfer: TransferFn | None = None,
        convert_to_sticker=media_tools.convert_to_sticker,
        remove_background=media_tools.remove_background,
        download_media=media_downloader.download_media,
        site_name: str = "TheNkiri",
    ):
        self.store = store
        self.transport = transport
        self.settings = settings
        self.search = search
        self.resolve = resolve
        self.transfer = transfer or functools.partial(
            download_manager.transfer,
            staging_dir=settings.staging_dir,
            max_bytes=settings.max_upload_bytes,
        )
        self.convert_to_sticker = convert_to_sticker
        self.remove_background = remove_background
        self.download_media = download_media
        self.site_name = site_name
        self.active_transfers: set[asyncio.Task] = set()
        self._notifications: set[asyncio.Task] = set()

    @property
    def staging_dir(self) -> Path:
        return self.settings.staging_dir

    async def handle_event(self, event: InboundEvent) -> None:
        async with self.store.lock_for(event.conversation_id):
            await self._dispatch(event)

    async def _dispatch(self, event: InboundEvent) -> None:
        cid = event.conversation_id
        text = (event.text or "").strip()

        if event.has_attachment and await self._handle_media_intent(event, text):
            return

        query = parse_search_command(text)
        if query is not None:
            await self._handle_search(cid, query)
            return

        selection = parse_selection(text)
        if selection is not None:
            session = self.store.get(cid)
            if session is not None:
                await self._handle_selection(cid, session, selection)
                return

        media = media_downloader.extract_media_url(text)
        if media is not None:
            url, platform = media
            await self._handle_media_fetch(
                cid, url, platform, media_downloader.wants_audio_only(text)
            )
            return

        if not event.has_attachment:
            await self.transport.send_text(cid, messages.get_help_message_text())

    # --- Search flow ---

    async def _handle_search(self, cid: int | str, query: str) -> None:
        if not query:
            await self.transport.send_text(cid, messages.SEARCH_USAGE)
            return

        logger.info(f"[WORKFLOW] Chat {cid} searching for '{query}'")
        await self.transport.send_text(
            cid, messages.format_searching(query, self.site_name)
        )
        results = await self.search(query)
        if not results:
            await self.transport.send_text(cid, messages.NO_RESULTS)
            return

        candidates = results[:SEARCH_RESULTS_LIMIT]
        self.store.put(
            cid, ConversationSession.from_search(candidates, now=self.store.now())
        )
        await self.transport.send_text(cid, messages.format_results_menu(candidates))

    async def _handle_selection(
        self, cid: int | str, session: ConversationSession, selection: int
    ) -> None:
        if session.stage is ConversationStage.AWAITING_TITLE_SELECTION:
            await self._select_title(cid, session, selection)
        elif session.stage is ConversationStage.AWAITING_LINK_SELECTION:
            await self._select_link(cid, session, selection)
        else:
            await self._select_delivery(cid, session, selection)

    async def _select_title(
        self, cid: int | str, session: ConversationSession, selection: int
    ) -> None:
        try:
            candidate = session.pick_candidate(selection)
        except InvalidSelection:
            await self.transport.send_text(cid, messages.INVALID_SELECTION)
            return

        await self.transport.send_text(cid, messages.format_opening(candidate.title))
        links = await self.resolve(candidate.detail_url)
        if not links:
            await self.transport.send_text(cid, messages.NO_LINKS)
            return

        session.selected_candidate = candidate
        session.resolved_links = list(links)
        session.advance(ConversationStage.AWAITING_LINK_SELECTION, now=self.store.now())

        labels = [
            normalize_link_label(link.label, i, candidate.title)
            for i, link in enumerate(session.resolved_links)
        ]
        await self.transport.send_text(
            cid, messages.format_links_menu(candidate.title, labels)
        )

    async def _select_link(
        self, cid: int | str, session: ConversationSession, selection: int
    ) -> None:
        try:
            link = session.pick_link(selection)
        except InvalidSelection:
            await self.transport.send_text(cid, messages.INVALID_SELECTION)
            return

        session.selected_link = link
        session.advance(ConversationStage.AWAITING_DELIVERY_CHOICE, now=self.store.now())
        await self.transport.send_text(
            cid, messages.format_delivery_menu(self._display_label(session, link))
        )

    async def _select_delivery(
        self, cid: int | str, session: ConversationSession, selection: int
    ) -> None:
        link = session.selected_link
        if link is None or selection not in (1, 2):
            await self.transport.send_text(cid, messages.DELIVERY_CHOICE_REMINDER)
            return

        label = self._display_label(session, link)
        self.store.delete(cid)
        if selection == 1:
            await self.transport.send_text(cid, messages.format_direct_link(link.url))
            return
        self.start_transfer(cid, link, label)

    def _display_label(self, session: ConversationSession, link: ResolvedLink) -> str:
        parent = session.selected_candidate.title if session.selected_candidate else ""
        return normalize_link_label(
            link.label, session.resolved_links.index(link), parent
        )

    # --- File delivery ---

    def start_transfer(
        self, cid: int | str, link: ResolvedLink, label: str
    ) -> asyncio.Task:
        task = asyncio.create_task(
            self._deliver_file(cid, link, label), name=f"transfer-{cid}-{time.time_ns()}"
        )
        self.active_transfers.add(task)
        task.add_done_callback(self.active_transfers.discard)
        task.add_done_callback(_log_task_failure)
        return task

    def _notify_in_background(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._notifications.add(task)
        task.add_done_callback(self._notifications.discard)
        task.add_done_callback(_log_task_failure)

    async def _deliver_file(self, cid: int | str, link: ResolvedLink, label: str) -> None:
        await self.transport.send_text(cid, messages.format_transfer_started(label))

        def on_progress(percent: int) -> None:
            self._notify_in_background(
                self.transport.send_text(cid, messages.format_transfer_progress(percent))
            )

        try:
            result = await self.transfer(link.url, label, on_progress)
        except asyncio.CancelledError:
            logger.info(f"[WORKFLOW] Transfer for chat {cid} cancelled.")
            raise

        if result.too_large:
            await self._send_link_instead(cid, link, result.bytes_total or 0)
            return

        if not result.ok or result.local_path is None:
            logger.error(f"[WORKFLOW] Transfer for chat {cid} failed: {result.error}")
            await self.transport.send_text(cid, messages.TRANSFER_FAILED)
            return

        try:
            size = result.bytes_total or result.local_path.stat().st_size
            if size > self.settings.max_upload_bytes:
                await self._send_link_instead(cid, link, size)
                return

            await self.transport.send_text(cid, messages.TRANSFER_COMPLETE)
            await self.send_with_document_fallback(
                cid,
                result.local_path,
                kind=AttachmentKind.VIDEO,
                filename=result.filename,
                caption=messages.format_file_caption(label),
            )
        except DeliveryError as e:
            logger.error(f"[WORKFLOW] Delivery to chat {cid} failed: {e}")
            await self.transport.send_text(cid, messages.TRANSFER_FAILED)
        finally:
            result.local_path.unlink(missing_ok=True)

    async def _send_link_instead(self, cid: int | str, link: ResolvedLink, size: int) -> None:
        logger.info(
            f"[WORKFLOW] {link.url} is {format_bytes(size)}; sending the link instead."
        )
        await self.transport.send_text(
            cid,
            messages.format_too_large(
                format_bytes(size),
                format_bytes(self.settings.max_upload_bytes),
                link.url,
            ),
        )

    async def send_with_document_fallback(
        self,
        cid: int | str,
        path: Path,
        *,
        kind: AttachmentKind,
        filename: str | None = None,
        caption: str | None = None,
    ) -> None:
        """
        Sends ``path`` as ``kind`` and retries once in document mode.

        Raises:
            DeliveryError: both attempts failed.
        """
        try:
            await self.transport.send_attachment(
                cid, path, kind=kind, filename=filename, caption=caption
            )
            return
        except (TelegramError, OSError) as e:
            logger.warning(
                f"[WORKFLOW] Sending {path.name} as {kind.value} failed ({e}); "
                "retrying as document."
            )

        try:
            await self.transport.send_attachment(
                cid, path, kind=kind, filename=filename, caption=caption, as_document=True
            )
        except (TelegramError, OSError) as e:
            raise DeliveryError(f"Could not send {path.name}: {e}") from e

    # --- Media tools ---

    async def _handle_media_intent(self, event: InboundEvent, caption: str) -> bool:
        data = event.attachment_bytes
        if data is None:
            return False

        wanted = caption.lower()
        if event.attachment_kind is AttachmentKind.ANIMATION:
            await self._make_sticker(event.conversation_id, data, animated=True)
        elif event.attachment_kind is AttachmentKind.IMAGE and wanted in STICKER_CAPTIONS:
            await self._make_sticker(event.conversation_id, data, animated=False)
        elif event.attachment_kind is AttachmentKind.IMAGE and wanted in BACKGROUND_CAPTIONS:
            await self._strip_background(event.conversation_id, data)
        else:
            return False
        return True

    async def _make_sticker(self, cid: int | str, data: bytes, *, animated: bool) -> None:
        await self.transport.send_text(cid, messages.STICKER_CONVERTING)
        try:
            sticker = await self.convert_to_sticker(
                data, animated, staging_dir=self.staging_dir
            )
        except MediaToolError as e:
            logger.error(f"[WORKFLOW] Sticker conversion for chat {cid} failed: {e}")
            await self.transport.send_text(cid, messages.STICKER_FAILED)
            return
        await self.transport.send_attachment(cid, sticker, kind=AttachmentKind.STICKER)

    async def _strip_background(self, cid: int | str, data: bytes) -> None:
        await self.transport.send_text(cid, messages.BACKGROUND_REMOVING)
        input_path = self.staging_dir / f"bg_input_{time.time_ns()}.png"
        output_path: Path | None = None
        try:
            self.staging_dir.mkdir(parents=True, exist_ok=True)
            input_path.write_bytes(data)
            result = await self.remove_background(input_path, staging_dir=self.staging_dir)
            output_path = result.file_path
            if not result.success or output_path is None:
                await self.transport.send_text(
                    cid,
                    messages.format_tool_error(result.error, "Failed to remove background"),
                )
                return
            await self.transport.send_attachment(
                cid,
                output_path,
                kind=AttachmentKind.IMAGE,
                filename="no_background.png",
                caption=messages.BACKGROUND_REMOVED_CAPTION,
            )
        except OSError as e:
            logger.error(f"[WORKFLOW] Background removal for chat {cid} failed: {e}")
            await self.transport.send_text(
                cid, messages.format_tool_error(None, "Failed to remove background")
            )
        finally:
            input_path.unlink(missing_ok=True)
            if output_path is not None:
                output_path.unlink(missing_ok=True)

    async def _handle_media_fetch(
        self,
        cid: int | str,
        url: str,
        platform: media_downloader.Platform,
        audio_only: bool,
    ) -> None:
        await self.transport.send_text(
            cid,
            messages.format_media_fetching(
                media_downloader.platform_emoji(platform),
                platform.value.capitalize(),
                audio_only,
            ),
        )
        result = await self.download_media(
            url,
            audio_only,
            staging_dir=self.staging_dir,
            max_bytes=self.settings.max_media_bytes,
        )
        if not result.success or result.file_path is None:
            await self.transport.send_text(
                cid, messages.format_tool_error(result.error, "Failed to download")
            )
            return

        try:
            size_label = f"{result.file_path.stat().st_size / (1024 * 1024):.2f}MB"
            await self.transport.send_text(
                cid, messages.format_media_ready(result.title or url, size_label)
            )
            await self.send_with_document_fallback(
                cid,
                result.file_path,
                kind=AttachmentKind.AUDIO if result.is_audio else AttachmentKind.VIDEO,
                filename=result.file_path.name,
                caption=result.title,
            )
        except DeliveryError as e:
            logger.error(f"[WORKFLOW] Media delivery to chat {cid} failed: {e}")
            await self.transport.send_text(
                cid, messages.format_tool_error(str(e), "Failed to send")
            )
        finally:
            result.file_path.unlink(missing_ok=True)

    async def shutdown(self) -> None:
        """Cancels in-flight transfers and pending notices and waits for them."""
        pending = [*self.active_transfers, *self._notifications]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info(f"[WORKFLOW] Cancelled {len(pending)} background task(s).")
