"""
Messaging between workers and employers.

Each pair of profiles shares one unified conversation. Messages are sent
optimistically: a local entry appears at once under a ``temp-`` correlation
id and is then either confirmed with the stored row or rolled back, with
the compose text restored, if the insert fails.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from laborhire.errors import NotFoundError, ValidationError
from laborhire.logging_config import log_message_event
from laborhire.platform.base import (
    Backend,
    BackendError,
    Binding,
    ChangeEvent,
    between,
    eq,
    in_,
    is_null,
    or_,
)
from laborhire.realtime import ChangeBus
from laborhire.session import SessionContext
from laborhire.types import Conversation, Message, Profile, utc_now

logger = logging.getLogger(__name__)

TEMP_PREFIX = "temp-"


class EntryState(str, Enum):
    """Lifecycle of a message entry in an open thread."""
    PENDING_LOCAL = "pending_local"  # Shown, insert in flight
    CONFIRMED = "confirmed"          # Backed by a stored row
    ROLLED_BACK = "rolled_back"      # Insert failed, removed from view


@dataclass
class ThreadEntry:
    correlation_id: str
    message: Message
    state: EntryState


class ThreadState:
    """Reducer over the messages of one open conversation.

    Entries are keyed by correlation id: the ``temp-<uuid>`` id for local
    sends, the server id for everything else. Remote merges are idempotent
    by server id, so a realtime echo never duplicates a confirmed entry.
    """

    def __init__(self, conversation_id: Optional[str] = None):
        self.conversation_id = conversation_id
        self._entries: List[ThreadEntry] = []

    def load(self, conversation_id: str, messages: List[Message]) -> None:
        self.conversation_id = conversation_id
        self._entries = [ThreadEntry(m.id, m, EntryState.CONFIRMED) for m in messages]

    def clear(self) -> None:
        self.conversation_id = None
        self._entries = []

    def _find(self, correlation_id: str) -> Optional[ThreadEntry]:
        for entry in self._entries:
            if entry.correlation_id == correlation_id:
                return entry
        return None

    def _has_server_id(self, message_id: str) -> bool:
        return any(
            e.state is EntryState.CONFIRMED and e.message.id == message_id for e in self._entries
        )

    def add_local(
        self, sender_id: str, receiver_id: str, text: str, job_id: Optional[str] = None
    ) -> ThreadEntry:
        correlation_id = f"{TEMP_PREFIX}{uuid4()}"
        message = Message(
            id=correlation_id,
            conversation_id=self.conversation_id or "",
            sender_id=sender_id,
            receiver_id=receiver_id,
            message_text=text,
            job_id=job_id,
            created_at=utc_now(),
        )
        entry = ThreadEntry(correlation_id, message, EntryState.PENDING_LOCAL)
        self._entries.append(entry)
        return entry

    def confirm(self, correlation_id: str, stored: Message) -> bool:
        """Swap a pending entry for the stored row; False if it is gone."""
        entry = self._find(correlation_id)
        if entry is None or entry.state is not EntryState.PENDING_LOCAL:
            return False
        if self._has_server_id(stored.id):
            # The row already arrived another way
            self._entries.remove(entry)
            return True
        entry.message = stored
        entry.state = EntryState.CONFIRMED
        return True

    def roll_back(self, correlation_id: str) -> Optional[ThreadEntry]:
        entry = self._find(correlation_id)
        if entry is None or entry.state is not EntryState.PENDING_LOCAL:
            return None
        self._entries.remove(entry)
        entry.state = EntryState.ROLLED_BACK
        return entry

    def merge_remote(self, message: Message) -> bool:
        if message.conversation_id != self.conversation_id or self._has_server_id(message.id):
            return False
        self._entries.append(ThreadEntry(message.id, message, EntryState.CONFIRMED))
        return True

    def apply_update(self, message: Message) -> bool:
        for entry in self._entries:
            if entry.state is EntryState.CONFIRMED and entry.message.id == message.id:
                entry.message = message
                return True
        return False

    @property
    def pending(self) -> List[ThreadEntry]:
        return [e for e in self._entries if e.state is EntryState.PENDING_LOCAL]

    def visible(self) -> List[Message]:
        return [e.message for e in self._entries]


class MessagingSystem:
    """Conversation list, open thread and compose box for the current profile."""

    def __init__(self, backend: Backend, session: SessionContext, bus: ChangeBus):
        self.backend = backend
        self.session = session
        self.bus = bus
        self.conversations: List[Conversation] = []
        self.selected_id: Optional[str] = None
        self.thread = ThreadState()
        self.compose = ""
        self.job_titles: Dict[str, str] = {}
        self.error: Optional[str] = None
        self._profile_id: Optional[str] = None

    @property
    def channel(self) -> str:
        return f"messages-realtime-{self._profile_id}"

    async def start(self) -> List[Conversation]:
        self._profile_id = self.session.require_profile().id
        await self.load_conversations()
        await self.bus.listen(
            self.channel,
            [
                Binding("messages", "INSERT"),
                Binding("messages", "UPDATE"),
                Binding("conversations", "UPDATE"),
            ],
            self.handle_change,
        )
        return self.conversations

    async def stop(self) -> None:
        if self._profile_id is not None:
            await self.bus.close(self.channel)

    def _me(self) -> str:
        if self._profile_id is None:
            self._profile_id = self.session.require_profile().id
        return self._profile_id

    # === Conversations ===

    async def load_conversations(self) -> List[Conversation]:
        """Reload the conversation list with participant, unread count and last message.

        A conversation whose other participant can't be loaded is skipped.
        """
        me = self._me()
        try:
            rows = await self.backend.select(
                "conversations",
                [or_(eq("participant_1", me), eq("participant_2", me))],
                order="last_message_at",
                desc=True,
            )
        except BackendError as e:
            self.error = "Failed to load conversations."
            logger.error(f"Error fetching conversations | profile_id={me} | error={e.message}")
            return self.conversations

        detailed = await asyncio.gather(*(self._with_details(row, me) for row in rows))
        self.error = None
        self.conversations = [c for c in detailed if c is not None]
        return self.conversations

    async def _with_details(self, row: Dict[str, Any], me: str) -> Optional[Conversation]:
        conversation = Conversation.from_dict(row)
        other_id = conversation.other_participant(me)
        try:
            profiles = await self.backend.select(
                "profiles",
                [eq("id", other_id)],
                columns="id,full_name,profile_photo_url,company_name",
                limit=1,
            )
            if not profiles:
                logger.warning(f"Skipping conversation, participant not found | id={conversation.id}")
                return None
            conversation.participant_profile = Profile.from_dict(profiles[0])
            conversation.unread_count = await self.backend.count(
                "messages",
                [eq("conversation_id", conversation.id), eq("receiver_id", me), eq("is_read", False)],
            )
            last = await self.backend.select(
                "messages",
                [eq("conversation_id", conversation.id)],
                columns="message_text",
                order="created_at",
                desc=True,
                limit=1,
            )
        except BackendError as e:
            logger.error(f"Skipping conversation {conversation.id} | error={e.message}")
            return None
        conversation.last_message_text = last[0].get("message_text") if last else None
        return conversation

    def _conversation(self, conversation_id: Optional[str]) -> Optional[Conversation]:
        for conversation in self.conversations:
            if conversation.id == conversation_id:
                return conversation
        return None

    async def start_conversation(self, other_id: str) -> str:
        """Open the single unified conversation with ``other_id``.

        Reuses the job-less conversation if there is one, otherwise turns an
        existing job conversation into the unified one, otherwise creates it.
        """
        me = self._me()
        if other_id == me:
            raise ValidationError("You cannot start a conversation with yourself")
        pair = between("participant_1", "participant_2", me, other_id)

        general = await self.backend.select("conversations", [pair, is_null("job_id")], limit=1)
        if general:
            conversation_id = general[0]["id"]
            if self._conversation(conversation_id) is None:
                await self.load_conversations()
        else:
            existing = await self.backend.select(
                "conversations", [pair], order="last_message_at", desc=True, limit=1
            )
            if existing:
                conversation_id = existing[0]["id"]
                await self.backend.update("conversations", {"job_id": None}, [eq("id", conversation_id)])
                log_message_event("conversation_unified", conversation=conversation_id)
            else:
                created = await self.backend.insert(
                    "conversations", {"participant_1": me, "participant_2": other_id, "job_id": None}
                )
                conversation_id = created["id"]
                log_message_event("conversation_created", conversation=conversation_id)
            await self.load_conversations()

        await self.open(conversation_id)
        return conversation_id

    async def open(self, conversation_id: str) -> List[Message]:
        """Select a conversation, load its thread and mark it read."""
        self.selected_id = conversation_id
        rows = await self.backend.select(
            "messages", [eq("conversation_id", conversation_id)], order="created_at"
        )
        messages = [Message.from_dict(r) for r in rows]
        self.thread.load(conversation_id, messages)
        await self.mark_read(conversation_id)
        await self._load_job_titles(messages)
        return self.thread.visible()

    async def _load_job_titles(self, messages: List[Message]) -> None:
        job_ids = sorted({m.job_id for m in messages if m.job_id})
        if not job_ids:
            return
        try:
            jobs = await self.backend.select("jobs", [in_("id", job_ids)], columns="id,title")
        except BackendError as e:
            logger.error(f"Error fetching job titles | error={e.message}")
            return
        self.job_titles.update({j["id"]: j["title"] for j in jobs})

    async def mark_read(self, conversation_id: str) -> None:
        me = self._me()
        try:
            await self.backend.update(
                "messages",
                {"is_read": True},
                [eq("conversation_id", conversation_id), eq("receiver_id", me), eq("is_read", False)],
            )
        except BackendError as e:
            logger.error(f"Error marking messages as read | conversation={conversation_id} | error={e.message}")
            return
        conversation = self._conversation(conversation_id)
        if conversation is not None:
            conversation.unread_count = 0

    # === Sending ===

    async def send(self, text: Optional[str] = None, job_id: Optional[str] = None) -> Optional[Message]:
        """Send ``text`` (or the compose box) to the open conversation.

        Returns None when there is nothing to send. On a backend failure the
        optimistic entry is removed, the compose text restored and the error
        re-raised.
        """
        me = self._me()
        text = (self.compose if text is None else text).strip()
        conversation = self._conversation(self.selected_id)
        if not text or conversation is None:
            return None

        receiver_id = conversation.other_participant(me)
        entry = self.thread.add_local(me, receiver_id, text, job_id)
        self.compose = ""
        try:
            row = await self.backend.insert(
                "messages",
                {
                    "conversation_id": conversation.id,
                    "sender_id": me,
                    "receiver_id": receiver_id,
                    "message_text": text,
                    "job_id": job_id,
                },
            )
        except BackendError as e:
            self.thread.roll_back(entry.correlation_id)
            self.compose = text
            log_message_event("rolled_back", conversation=conversation.id, error=e.message)
            raise

        stored = Message.from_dict(row)
        self.thread.confirm(entry.correlation_id, stored)
        conversation.last_message_text = text
        conversation.last_message_at = stored.created_at
        log_message_event("sent", id=stored.id, conversation=conversation.id)
        return stored

    # === Realtime ===

    async def handle_change(self, event: ChangeEvent) -> None:
        me = self._me()
        row = event.record
        if event.table == "conversations":
            if me in (row.get("participant_1"), row.get("participant_2")):
                await self.load_conversations()
            return

        if me not in (row.get("sender_id"), row.get("receiver_id")):
            return
        message = Message.from_dict(event.new)

        if event.event_type == "INSERT":
            if message.sender_id == me:
                return
            is_open = message.conversation_id == self.selected_id
            if is_open:
                self.thread.merge_remote(message)
            conversation = self._conversation(message.conversation_id)
            if conversation is not None:
                conversation.last_message_text = message.message_text
                conversation.last_message_at = message.created_at
                conversation.unread_count = 0 if is_open else conversation.unread_count + 1
            if is_open:
                await self.mark_read(message.conversation_id)
        elif event.event_type == "UPDATE":
            if message.conversation_id == self.selected_id:
                self.thread.apply_update(message)
            await self.load_conversations()

    def search(self, term: str) -> List[Conversation]:
        term = (term or "").lower()
        if not term:
            return list(self.conversations)
        results = []
        for conversation in self.conversations:
            profile = conversation.participant_profile
            if profile is None:
                continue
            if term in profile.full_name.lower() or term in (profile.company_name or "").lower():
                results.append(conversation)
        return results

    @property
    def messages(self) -> List[Message]:
        return self.thread.visible()

    def conversation(self, conversation_id: str) -> Conversation:
        conversation = self._conversation(conversation_id)
        if conversation is None:
            raise NotFoundError(f"Conversation {conversation_id} not loaded")
        return conversation
