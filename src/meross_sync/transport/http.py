"""
Local HTTP transport for Meross devices.

Devices on the LAN accept signed JSON requests on http://<host>/config.
Each request carries a header with a random message id, a unix timestamp and
an md5 signature of messageId + key + timestamp.
"""

from __future__ import annotations

import errno
import hashlib
import json
import time
import uuid
from collections.abc import Mapping
from typing import Any, cast

import aiohttp

from meross_sync.const import MEROSS_HTTP_TIMEOUT
from meross_sync.exceptions import CommandTimeoutError, TransportError
from meross_sync.instrumentation import timed_async
from meross_sync.logging_abstraction import get_logger
from meross_sync.structs import DeviceIdentity, TransportResponse

__all__ = ["LocalHTTPTransport", "build_header", "sign_message"]

logger = get_logger(__name__)


def sign_message(message_id: str, key: str, timestamp: int) -> str:
    """md5 hex digest the device uses to authenticate a request."""
    return hashlib.md5(f"{message_id}{key}{timestamp}".encode()).hexdigest()  # noqa: S324


def build_header(identity: DeviceIdentity, namespace: str, method: str, timestamp: int | None = None) -> dict[str, Any]:
    message_id = uuid.uuid4().hex
    ts = int(time.time()) if timestamp is None else timestamp
    return {
        "from": f"http://{identity.host}/config",
        "messageId": message_id,
        "method": method,
        "namespace": namespace,
        "payloadVersion": 1,
        "sign": sign_message(message_id, identity.key, ts),
        "timestamp": ts,
    }


class LocalHTTPTransport:
    """CommandTransport over the device's local /config endpoint.

    An empty payload is sent as a GET, anything else as a SET.
    """

    lp: str = "LocalHTTPTransport:"

    def __init__(self, timeout: float = MEROSS_HTTP_TIMEOUT, session: aiohttp.ClientSession | None = None) -> None:
        self.timeout: float = timeout
        self.http_session: aiohttp.ClientSession | None = session

    async def close(self) -> None:
        """Close the aiohttp session if it exists and is not closed."""
        if self.http_session and not self.http_session.closed:
            logger.debug("%s Closing aiohttp ClientSession", self.lp)
            await self.http_session.close()
        self.http_session = None

    def _check_session(self) -> aiohttp.ClientSession:
        if not self.http_session or self.http_session.closed:
            logger.debug("%s Creating new aiohttp ClientSession", self.lp)
            self.http_session = aiohttp.ClientSession()
        return self.http_session

    @timed_async("http_send")
    async def send(self, identity: DeviceIdentity, namespace: str, payload: Mapping[str, Any]) -> TransportResponse:
        if not identity.host:
            msg = f"{identity.name} has no host configured"
            raise TransportError(msg)

        method = "SET" if payload else "GET"
        body = {"header": build_header(identity, namespace, method), "payload": dict(payload)}
        url = f"http://{identity.host}/config"
        sesh = self._check_session()
        logger.debug(
            "%s sending %s %s",
            self.lp,
            method,
            namespace,
            extra={"device": identity.name, "host": identity.host},
        )

        try:
            async with sesh.post(url, json=body, timeout=aiohttp.ClientTimeout(total=self.timeout)) as r:
                r.raise_for_status()
                data: object = cast("object", await r.json(content_type=None))
        except TimeoutError as e:
            raise CommandTimeoutError(namespace, self.timeout) from e
        except aiohttp.ClientConnectorError as e:
            raise TransportError(self._describe_os_error(e, identity.host)) from e
        except aiohttp.ClientResponseError as e:
            msg = f"HTTP {e.status} from {identity.host}"
            raise TransportError(msg) from e
        except aiohttp.ClientError as e:
            raise TransportError(str(e) or type(e).__name__) from e
        except json.JSONDecodeError as e:
            msg = f"invalid JSON from {identity.host}: {e}"
            raise TransportError(msg) from e

        if not isinstance(data, dict):
            msg = f"unexpected response type {type(data).__name__} from {identity.host}"
            raise TransportError(msg)

        response = TransportResponse.model_validate(data)
        if response.header.get("method") == "ERROR":
            msg = f"device rejected {namespace}: {response.payload.get('error', response.payload)}"
            raise TransportError(msg)
        return response

    @staticmethod
    def _describe_os_error(exc: aiohttp.ClientConnectorError, host: str) -> str:
        """Prefix the errno name so connectivity classification can match it."""
        code = exc.os_error.errno
        if code is not None and code in errno.errorcode:
            return f"{errno.errorcode[code]} {host}"
        return str(exc)
