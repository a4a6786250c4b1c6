from fastapi import Depends, Request

from college_attendance.communication.base import MessageSender
from college_attendance.services.notification_service import NotificationDispatcher
from college_attendance.storage.partition_store import PartitionStore


def get_partition_store(request: Request) -> PartitionStore:
    return request.app.state.partition_store


def get_message_sender(request: Request) -> MessageSender:
    return request.app.state.message_sender


def get_dispatcher(
    store: PartitionStore = Depends(get_partition_store),
    sender: MessageSender = Depends(get_message_sender),
) -> NotificationDispatcher:
    return NotificationDispatcher(store, sender)
