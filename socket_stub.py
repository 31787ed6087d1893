# socket_stub.py - Stand-in for the annotation service's realtime notification socket

import json
import logging
from typing import Callable, List, Optional

from synthetic_api import OFFLINE_USER

logger = logging.getLogger('socket_stub')

NOTIFICATION_SOCKET_URL = 'wss://h-websocket.hypothes.is/ws'


class NotificationSocketStub:
    """
    Answers whatever the client sends with an identity handshake.

    The embedded client only needs to learn who it is; there are no other
    users to receive realtime updates from while offline.
    """

    def __init__(self, url: str = NOTIFICATION_SOCKET_URL, userid: str = OFFLINE_USER):
        self.url = url
        self.userid = userid
        self.connections = 0
        self._senders: List[Callable[[str], None]] = []

    def handles(self, url: str) -> bool:
        return url == self.url

    def on_connection(self, send: Callable[[str], None]) -> None:
        self.connections += 1
        self._senders.append(send)
        logger.debug(f"Socket client connected ({self.connections} total)")

    def reply_for(self, message: Optional[str]) -> str:
        return json.dumps({'type': 'whoyouare', 'userid': self.userid, 'ok': True, 'reply_to': 1})

    def on_message(self, message: str) -> str:
        """Reply to a client frame, pushing the reply to every connected client."""
        reply = self.reply_for(message)
        for send in self._senders:
            send(reply)
        return reply
