"""Chat service backends."""

from chat_client_kit.backends.base import ChatService
from chat_client_kit.backends.local import LocalChatClient, create_local_client
from chat_client_kit.backends.ondevice import OnDeviceChatClient, create_ondevice_client
from chat_client_kit.backends.remote import (
    RemoteChatClient,
    RemoteChatRequestBuilder,
    create_remote_client,
)

__all__ = [
    "ChatService",
    "LocalChatClient",
    "create_local_client",
    "OnDeviceChatClient",
    "create_ondevice_client",
    "RemoteChatClient",
    "RemoteChatRequestBuilder",
    "create_remote_client",
]
