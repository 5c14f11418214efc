"""Display strings and date formatting, applied only at the presentation boundary."""

from __future__ import annotations

from datetime import datetime
from typing import Mapping

DEFAULT_LOCALE = "en"

_MONTHS: dict[str, tuple[str, ...]] = {
    "en": (
        "January", "February", "March", "April", "May", "June",
        "July", "August", "September", "October", "November", "December",
    ),
    "fr": (
        "janvier", "février", "mars", "avril", "mai", "juin",
        "juillet", "août", "septembre", "octobre", "novembre", "décembre",
    ),
}

MESSAGES: dict[str, dict[str, str]] = {
    "en": {
        "unknown_name": "Unknown",
        "unknown_kind": "Unknown",
        "not_available": "N/A",
        "status.pending": "Pending",
        "status.approved": "Approved",
        "status.declined": "Declined",
        "approved": "Request approved for {auth_uid}",
        "declined": "Request {request_id} declined",
        "provisioned": "Device state provisioned for {auth_uid}",
        "edited": "Client {auth_uid} updated",
        "decommissioned": "Client {auth_uid} removed",
        "submitted": "Request {request_id} submitted",
        "already_handled": "Request {request_id} was already handled",
        "error.InvalidRequest": "Invalid request: missing authUid or CIN",
        "error.AlreadyApproved": "A client already exists for {auth_uid}",
        "error.NotFound": "Not found: {target}",
        "error.ProvisioningFailed": "Client created but device state could not be written for {auth_uid}",
        "error.ProvisioningUnverified": "Client created but device state could not be verified for {auth_uid}",
        "error.StoreError": "Store unavailable: {message}",
        "reconcile.none": "All clients have verified device state",
    },
    "fr": {
        "unknown_name": "Inconnu",
        "unknown_kind": "Inconnu",
        "not_available": "N/D",
        "status.pending": "En attente",
        "status.approved": "Approuvée",
        "status.declined": "Refusée",
        "approved": "Demande approuvée pour {auth_uid}",
        "declined": "Demande {request_id} refusée",
        "provisioned": "État de l'appareil initialisé pour {auth_uid}",
        "edited": "Client {auth_uid} mis à jour",
        "decommissioned": "Client {auth_uid} supprimé avec succès",
        "submitted": "Demande {request_id} enregistrée",
        "already_handled": "La demande {request_id} a déjà été traitée",
        "error.InvalidRequest": "Demande invalide : authUid ou CIN manquant",
        "error.AlreadyApproved": "Un client existe déjà pour {auth_uid}",
        "error.NotFound": "Introuvable : {target}",
        "error.ProvisioningFailed": "Client créé mais l'état de l'appareil n'a pas pu être écrit pour {auth_uid}",
        "error.ProvisioningUnverified": "Client créé mais l'état de l'appareil n'a pas pu être vérifié pour {auth_uid}",
        "error.StoreError": "Stockage indisponible : {message}",
        "reconcile.none": "Tous les clients ont un état d'appareil vérifié",
    },
}

SUPPORTED_LOCALES: frozenset[str] = frozenset(MESSAGES)


def validate_locale(locale: str) -> str:
    if locale not in SUPPORTED_LOCALES:
        raise ValueError(f"locale must be one of {sorted(SUPPORTED_LOCALES)}")
    return locale


def translate(locale: str, key: str, params: Mapping[str, object] | None = None) -> str:
    """Look up ``key`` for ``locale``, falling back to English, then the key itself."""
    catalog = MESSAGES.get(locale, MESSAGES[DEFAULT_LOCALE])
    template = catalog.get(key) or MESSAGES[DEFAULT_LOCALE].get(key) or key
    if not params:
        return template
    try:
        return template.format(**params)
    except (KeyError, IndexError):
        return template


def format_date(locale: str, value: str) -> str:
    """Render an ISO-8601 timestamp like ``October 19, 2026, 09:30``.

    Values that do not parse are returned unchanged; empty values become the
    locale's "not available" marker.
    """
    not_available = translate(locale, "not_available")
    if not value or value in ("N/A", not_available):
        return not_available
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return value
    months = _MONTHS.get(locale, _MONTHS[DEFAULT_LOCALE])
    month = months[parsed.month - 1]
    clock = parsed.strftime("%H:%M")
    if locale == "fr":
        return f"{parsed.day} {month} {parsed.year} à {clock}"
    return f"{month} {parsed.day}, {parsed.year}, {clock}"
