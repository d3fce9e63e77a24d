"""Receive mining messages published by ckpool over a ZMQ SUB socket."""

from __future__ import annotations

import json
import logging
import queue as queue_module
import time
from dataclasses import dataclass
from typing import Any, Callable, Protocol

import zmq

logger = logging.getLogger(__name__)

RECONNECT_DELAY = 1.0
"""Initial delay in seconds between reconnect attempts."""

MAX_RECONNECT_DELAY = 60.0
"""Upper bound in seconds for the delay between reconnect attempts."""


@dataclass
class CkPoolConfig:
    """Where ckpool publishes its mining messages."""

    host: str
    port: int

    @property
    def endpoint(self) -> str:
        """The ZMQ endpoint for this host and port."""
        return f"tcp://{self.host}:{self.port}"


class _ZmqSocketLike(Protocol):
    def connect(self, endpoint: str) -> Any: ...

    def subscribe(self, topic: bytes) -> Any: ...

    def recv_string(self, flags: int = 0) -> str: ...


class _StringReceiver(Protocol):
    def recv_string(self) -> str: ...


def create_zmq_socket() -> zmq.Socket:
    """A new ZMQ SUB socket."""
    return zmq.Context.instance().socket(zmq.SUB)


class CkPoolSocket:
    """A subscriber socket connected to ckpool."""

    def __init__(
        self,
        config: CkPoolConfig,
        socket: _ZmqSocketLike,
        sleep: Callable[[float], Any] = time.sleep,
    ) -> None:
        self.config = config
        self._socket = socket
        self._sleep = sleep

    def connect(self) -> None:
        """Connect, retrying with exponential backoff capped at 60 seconds, then subscribe.

        Raises zmq.ZMQError if subscribing fails.
        """
        retry_delay = RECONNECT_DELAY
        endpoint = self.config.endpoint
        while True:
            try:
                self._socket.connect(endpoint)
            except zmq.ZMQError as exc:
                logger.info(
                    "Failed to connect to ckpool at %s:%s: %s. Retrying in %ss...",
                    self.config.host,
                    self.config.port,
                    exc,
                    retry_delay,
                )
                self._sleep(retry_delay)
                retry_delay = min(retry_delay * 2, MAX_RECONNECT_DELAY)
            else:
                logger.info("Connected to ckpool at %s", endpoint)
                break
        self._socket.subscribe(b"")

    def recv_string(self) -> str:
        """Block until a message arrives and return it as text.

        Raises zmq.ZMQError on socket errors and UnicodeDecodeError on
        messages that are not UTF-8.
        """
        return self._socket.recv_string(0)


def receive_shares(socket: _StringReceiver, queue: queue_module.Queue) -> None:
    """Receive one message and put its decoded JSON on ``queue``.

    Receive errors and malformed JSON are logged and dropped; ZMQ
    reconnects by itself, so nothing else is needed here.
    """
    try:
        json_str = socket.recv_string()
    except (zmq.ZMQError, UnicodeDecodeError) as exc:
        logger.debug("Failed to receive mining message: %s", exc)
        return
    logger.info("Mining message received. Length %d", len(json_str))
    try:
        value = json.loads(json_str)
    except json.JSONDecodeError as exc:
        logger.debug("Failed to parse JSON: %s. JSON content: %r", exc, json_str)
        return
    queue.put(value)


def start_receiving_from_ckpool(socket: _StringReceiver, queue: queue_module.Queue) -> None:
    """Receive messages from ``socket`` forever, putting each on ``queue``."""
    while True:
        receive_shares(socket, queue)