"""Display-ready view of pending requests and approved clients.

A read-side projection: each store notification replaces the local rows with a
mapping of the full snapshot. Nothing here writes to either store.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from .locales import DEFAULT_LOCALE, format_date, translate, validate_locale
from .protocols import AsyncDocumentStore
from .stores.common import Unsubscribe
from .types import CLIENTS_COLLECTION, REQUESTS_COLLECTION, CollectionSnapshot, RequestStatus

_logger = logging.getLogger(__name__)

_BADGES: dict[str, str] = {
    RequestStatus.PENDING.value: "warning",
    RequestStatus.APPROVED.value: "success",
}


@dataclass(frozen=True, slots=True)
class RequestRow:
    request_id: str
    cin: str
    name: str
    email: str
    phone: str
    request_type: str
    date: str
    status: str
    status_label: str
    status_badge: str
    auth_uid: str
    ec: int


@dataclass(frozen=True, slots=True)
class ClientRow:
    auth_uid: str
    cin: str
    name: str
    email: str
    phone: str
    request_type: str
    date_accepted: str
    ec: int


def status_badge(status: str) -> str:
    return _BADGES.get(status.lower(), "error")


def _text(data: Mapping[str, Any], key: str, fallback: str) -> str:
    value = data.get(key)
    if isinstance(value, str) and value.strip():
        return value
    return fallback


def _number(data: Mapping[str, Any], key: str) -> int:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return int(value)


def request_row(doc_id: str, data: Mapping[str, Any], locale: str = DEFAULT_LOCALE) -> RequestRow:
    not_available = translate(locale, "not_available")
    status = _text(data, "status", RequestStatus.PENDING.value)
    return RequestRow(
        request_id=doc_id,
        cin=_text(data, "cin", doc_id),
        name=_text(data, "name", translate(locale, "unknown_name")),
        email=_text(data, "email", not_available),
        phone=_text(data, "phone", not_available),
        request_type=_text(data, "requestType", translate(locale, "unknown_kind")),
        date=format_date(locale, _text(data, "date", "")),
        status=status,
        status_label=translate(locale, f"status.{status.lower()}"),
        status_badge=status_badge(status),
        auth_uid=_text(data, "authUid", ""),
        ec=_number(data, "ec"),
    )


def client_row(doc_id: str, data: Mapping[str, Any], locale: str = DEFAULT_LOCALE) -> ClientRow:
    not_available = translate(locale, "not_available")
    return ClientRow(
        auth_uid=doc_id,
        cin=_text(data, "cin", not_available),
        name=_text(data, "name", translate(locale, "unknown_name")),
        email=_text(data, "email", not_available),
        phone=_text(data, "phone", not_available),
        request_type=_text(data, "requestType", translate(locale, "unknown_kind")),
        date_accepted=format_date(locale, _text(data, "dateAccepted", "")),
        ec=_number(data, "ec"),
    )


class RosterProjection:
    """Live lists of request and client rows for the presentation layer.

    Usage:
        roster = RosterProjection(documents, locale="fr")
        await roster.start()
        rows = roster.requests
        roster.stop()
    """

    def __init__(self, documents: AsyncDocumentStore, *, locale: str = DEFAULT_LOCALE) -> None:
        self._documents = documents
        self._locale = validate_locale(locale)
        self._lock = threading.Lock()
        self._requests: list[RequestRow] = []
        self._clients: list[ClientRow] = []
        self._unsubscribes: list[Unsubscribe] = []
        self._listeners: list[Callable[["RosterProjection"], None]] = []

    @property
    def locale(self) -> str:
        return self._locale

    @property
    def requests(self) -> list[RequestRow]:
        with self._lock:
            return list(self._requests)

    @property
    def clients(self) -> list[ClientRow]:
        with self._lock:
            return list(self._clients)

    @property
    def running(self) -> bool:
        return bool(self._unsubscribes)

    async def start(self) -> None:
        """Subscribe to both collections; rows are populated before this returns."""
        if self._unsubscribes:
            return
        self._unsubscribes.append(
            await self._documents.subscribe(REQUESTS_COLLECTION, self._apply_requests)
        )
        self._unsubscribes.append(
            await self._documents.subscribe(CLIENTS_COLLECTION, self._apply_clients)
        )

    def stop(self) -> None:
        while self._unsubscribes:
            self._unsubscribes.pop()()

    def on_change(self, callback: Callable[["RosterProjection"], None]) -> Unsubscribe:
        """Call ``callback`` after every rebuild."""
        self._listeners.append(callback)

        def _remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _remove

    def _apply_requests(self, snapshot: CollectionSnapshot) -> None:
        rows = [request_row(doc_id, data, self._locale) for doc_id, data in snapshot.documents.items()]
        with self._lock:
            self._requests = rows
        self._changed(snapshot)

    def _apply_clients(self, snapshot: CollectionSnapshot) -> None:
        rows = [client_row(doc_id, data, self._locale) for doc_id, data in snapshot.documents.items()]
        with self._lock:
            self._clients = rows
        self._changed(snapshot)

    def _changed(self, snapshot: CollectionSnapshot) -> None:
        _logger.debug(
            "Roster rebuilt from %s snapshot (%d changes)", snapshot.collection, len(snapshot.changes)
        )
        for callback in list(self._listeners):
            try:
                callback(self)
            except Exception as exc:
                _logger.warning("Roster listener failed: %s", exc)
