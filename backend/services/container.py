"""Wire repositories and services for one database handle."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from backend.db.factory import (
    get_chat_repository,
    get_integrity_report_repository,
    get_message_repository,
    get_space_repository,
    get_user_repository,
)
from backend.db.repositories.base import (
    ChatRepository,
    IntegrityReportRepository,
    MessageRepository,
    SpaceRepository,
    UserRepository,
)
from backend.services.access_guard import AccessGuard
from backend.services.consolidation import ConsolidationJobs
from backend.services.conversation_resolver import ConversationResolver
from backend.services.integrity import IntegrityReporter
from backend.services.membership import MembershipService
from backend.services.messages import MessageService
from backend.services.notifications import NotificationSink, build_notification_sink
from backend.services.unread_tracker import UnreadTracker


@dataclass
class ChatServices:
    users: UserRepository
    spaces: SpaceRepository
    chats: ChatRepository
    messages: MessageRepository
    reports: IntegrityReportRepository
    guard: AccessGuard
    resolver: ConversationResolver
    membership: MembershipService
    message_service: MessageService
    unread: UnreadTracker
    consolidation: ConsolidationJobs
    notifier: NotificationSink


def build_services(db: Any, notifier: NotificationSink | None = None) -> ChatServices:
    users = get_user_repository(db)
    spaces = get_space_repository(db)
    chats = get_chat_repository(db)
    messages = get_message_repository(db)
    reports = get_integrity_report_repository(db)
    notifier = notifier or build_notification_sink()

    guard = AccessGuard(users, spaces, chats)
    resolver = ConversationResolver(users, spaces, chats, messages, guard, IntegrityReporter(reports))
    return ChatServices(
        users=users,
        spaces=spaces,
        chats=chats,
        messages=messages,
        reports=reports,
        guard=guard,
        resolver=resolver,
        membership=MembershipService(users, spaces, chats, guard, resolver),
        message_service=MessageService(users, chats, messages, notifier),
        unread=UnreadTracker(chats, messages),
        consolidation=ConsolidationJobs(chats, messages, guard, reports),
        notifier=notifier,
    )
