"""Command-line interface for greenlight."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from .adapters import SyncAuditLoggerAdapter, SyncDocumentStoreAdapter, SyncTreeStoreAdapter
from .config import GreenlightConfig
from .coordinator import ApprovalCoordinator
from .errors import GreenlightError, NotFound
from .locales import SUPPORTED_LOCALES, translate
from .loggers import JsonlAuditLogger
from .provisioning import device_state_path
from .roster import RosterProjection
from .stores import SQLiteDocumentStore, SQLiteTreeStore
from .types import REQUESTS_COLLECTION, OnboardingRequest, RequestKind, format_timestamp


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="greenlight", add_help=True)
    parser.add_argument("--documents-db", dest="documents_path", help="Path to document store SQLite file")
    parser.add_argument("--tree-db", dest="tree_path", help="Path to tree store SQLite file")
    parser.add_argument("--audit-log", dest="audit_path", help="Path to audit JSONL file ('' disables)")
    parser.add_argument("--locale", choices=sorted(SUPPORTED_LOCALES), help="Display locale")
    parser.add_argument("--attempts", dest="provision_attempts", type=int, help="Provisioning attempts")
    parser.add_argument("--timeout", dest="timeout_seconds", type=float, help="Overall deadline in seconds")
    parser.add_argument("--json", action="store_true", help="Output JSON")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    submit_parser = subparsers.add_parser("submit", help="Record a pending onboarding request")
    submit_parser.add_argument("--id", dest="request_id", help="Request id (default: random)")
    submit_parser.add_argument("--cin", required=True, help="National ID")
    submit_parser.add_argument("--auth-uid", dest="auth_uid", required=True, help="Owning principal")
    submit_parser.add_argument("--name", default="", help="Display name")
    submit_parser.add_argument("--email", default="", help="Email address")
    submit_parser.add_argument("--phone", default="", help="Phone number")
    submit_parser.add_argument(
        "--type",
        dest="request_type",
        choices=[kind.value for kind in RequestKind],
        default=RequestKind.SIGNUP.value,
        help="Request kind",
    )
    submit_parser.add_argument("--ec", type=int, default=0, help="Configuration seed")

    subparsers.add_parser("requests", help="List pending requests")
    subparsers.add_parser("clients", help="List approved clients")

    approve_parser = subparsers.add_parser("approve", help="Approve a pending request")
    approve_parser.add_argument("request_id", help="Request id")

    decline_parser = subparsers.add_parser("decline", help="Decline a pending request")
    decline_parser.add_argument("request_id", help="Request id")

    provision_parser = subparsers.add_parser("provision", help="Re-provision device state for a client")
    provision_parser.add_argument("auth_uid", help="Owning principal")

    subparsers.add_parser("reconcile", help="Provision every client missing device state")

    edit_parser = subparsers.add_parser("edit-client", help="Update a client's name or email")
    edit_parser.add_argument("auth_uid", help="Owning principal")
    edit_parser.add_argument("--name", help="New display name")
    edit_parser.add_argument("--email", help="New email address")

    decommission_parser = subparsers.add_parser("decommission", help="Remove a client and its device state")
    decommission_parser.add_argument("auth_uid", help="Owning principal")

    show_parser = subparsers.add_parser("device", help="Show a client's device state")
    show_parser.add_argument("auth_uid", help="Owning principal")

    return parser.parse_args(argv)


class _Runtime:
    """Stores, coordinator and output settings for one CLI invocation."""

    def __init__(self, config: GreenlightConfig, *, json_output: bool) -> None:
        self.config = config
        self.json_output = json_output
        self.documents = SyncDocumentStoreAdapter(SQLiteDocumentStore(config.documents_path))
        self.tree = SyncTreeStoreAdapter(SQLiteTreeStore(config.tree_path))
        audit = None
        if config.audit_path is not None:
            audit = SyncAuditLoggerAdapter(JsonlAuditLogger(config.audit_path))
        self.coordinator = ApprovalCoordinator(
            documents=self.documents, tree=self.tree, audit_logger=audit, config=config
        )
        self.console = Console(highlight=False)

    def message(self, key: str, **params: object) -> str:
        return translate(self.config.locale, key, params)

    def emit(self, payload: dict[str, Any], text: str, *, error: bool = False) -> None:
        if self.json_output:
            print(json.dumps(payload, ensure_ascii=False))
        else:
            print(text, file=sys.stderr if error else sys.stdout)

    def fail(self, exc: GreenlightError) -> int:
        params = {
            "auth_uid": getattr(exc, "auth_uid", ""),
            "target": f"{getattr(exc, 'collection', '')}/{getattr(exc, 'doc_id', '')}",
            "message": str(exc),
        }
        text = self.message(f"error.{exc.code}", **params)
        self.emit(exc.as_response(), f"{text} ({exc})", error=True)
        return 1


async def _cmd_submit(rt: _Runtime, args: argparse.Namespace) -> int:
    request_id = args.request_id or uuid.uuid4().hex
    request = OnboardingRequest(
        request_id=request_id,
        cin=args.cin,
        name=args.name,
        email=args.email,
        phone=args.phone,
        request_type=args.request_type,
        date=format_timestamp(datetime.now(timezone.utc)),
        auth_uid=args.auth_uid,
        ec=args.ec,
    )
    await rt.documents.set(REQUESTS_COLLECTION, request_id, request.to_document())
    rt.emit(
        {"success": True, "requestId": request_id},
        rt.message("submitted", request_id=request_id),
    )
    return 0


async def _cmd_list(rt: _Runtime, kind: str) -> int:
    roster = RosterProjection(rt.documents, locale=rt.config.locale)
    await roster.start()
    roster.stop()
    if kind == "requests":
        rows: list[Any] = roster.requests
        columns = ("request_id", "name", "email", "cin", "request_type", "date", "status_label")
    else:
        rows = roster.clients
        columns = ("auth_uid", "name", "email", "cin", "date_accepted", "ec")
    if rt.json_output:
        print(json.dumps([{col: getattr(row, col) for col in columns} for row in rows], ensure_ascii=False))
        return 0
    table = Table(*columns)
    for row in rows:
        table.add_row(*(str(getattr(row, col)) for col in columns))
    rt.console.print(table)
    return 0


async def _cmd_approve(rt: _Runtime, request_id: str) -> int:
    try:
        report = await rt.coordinator.approve(request_id)
    except GreenlightError as exc:
        return rt.fail(exc)
    rt.emit(report.as_response(), rt.message("approved", auth_uid=report.auth_uid))
    return 0


async def _cmd_decline(rt: _Runtime, request_id: str) -> int:
    try:
        await rt.coordinator.decline(request_id)
    except NotFound as exc:
        # Another approver got there first; nothing left to do.
        rt.emit(exc.as_response(), rt.message("already_handled", request_id=request_id))
        return 0
    except GreenlightError as exc:
        return rt.fail(exc)
    rt.emit({"success": True}, rt.message("declined", request_id=request_id))
    return 0


async def _cmd_provision(rt: _Runtime, auth_uid: str) -> int:
    try:
        report = await rt.coordinator.provision(auth_uid)
    except GreenlightError as exc:
        return rt.fail(exc)
    rt.emit(report.as_response(), rt.message("provisioned", auth_uid=auth_uid))
    return 0


async def _cmd_reconcile(rt: _Runtime) -> int:
    try:
        reports = await rt.coordinator.reconcile()
    except GreenlightError as exc:
        return rt.fail(exc)
    failed = [report for report in reports if not report.success]
    if rt.json_output:
        print(json.dumps([report.as_response() for report in reports]))
    elif not reports:
        print(rt.message("reconcile.none"))
    else:
        for report in reports:
            key = "provisioned" if report.success else "error.ProvisioningFailed"
            print(rt.message(key, auth_uid=report.auth_uid))
    return 1 if failed else 0


async def _cmd_edit(rt: _Runtime, auth_uid: str, name: str | None, email: str | None) -> int:
    try:
        client = await rt.coordinator.edit_client(auth_uid, name=name, email=email)
    except GreenlightError as exc:
        return rt.fail(exc)
    rt.emit(
        {"success": True, "client": client.to_document()},
        rt.message("edited", auth_uid=auth_uid),
    )
    return 0


async def _cmd_decommission(rt: _Runtime, auth_uid: str) -> int:
    try:
        await rt.coordinator.decommission(auth_uid)
    except GreenlightError as exc:
        return rt.fail(exc)
    rt.emit({"success": True}, rt.message("decommissioned", auth_uid=auth_uid))
    return 0


async def _cmd_device(rt: _Runtime, auth_uid: str) -> int:
    state = await rt.tree.get(device_state_path(auth_uid))
    if state is None:
        return rt.fail(NotFound("users", auth_uid))
    if rt.json_output:
        print(json.dumps(state, ensure_ascii=False))
    else:
        rt.console.print_json(data=state)
    return 0


async def _dispatch(rt: _Runtime, args: argparse.Namespace) -> int:
    if args.command == "submit":
        return await _cmd_submit(rt, args)
    if args.command in ("requests", "clients"):
        return await _cmd_list(rt, args.command)
    if args.command == "approve":
        return await _cmd_approve(rt, args.request_id)
    if args.command == "decline":
        return await _cmd_decline(rt, args.request_id)
    if args.command == "provision":
        return await _cmd_provision(rt, args.auth_uid)
    if args.command == "reconcile":
        return await _cmd_reconcile(rt)
    if args.command == "edit-client":
        return await _cmd_edit(rt, args.auth_uid, args.name, args.email)
    if args.command == "decommission":
        return await _cmd_decommission(rt, args.auth_uid)
    if args.command == "device":
        return await _cmd_device(rt, args.auth_uid)
    print("unknown command", file=sys.stderr)
    return 1


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv if argv is not None else sys.argv[1:])
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        config = GreenlightConfig.from_env(
            documents_path=args.documents_path,
            tree_path=args.tree_path,
            audit_path=args.audit_path,
            locale=args.locale,
            provision_attempts=args.provision_attempts,
            timeout_seconds=args.timeout_seconds,
        )
    except ValidationError as exc:
        print(f"invalid configuration: {exc}", file=sys.stderr)
        return 2
    try:
        rt = _Runtime(config, json_output=args.json)
        return asyncio.run(_dispatch(rt, args))
    except ValueError as exc:
        print(f"invalid argument: {exc}", file=sys.stderr)
        return 2
    except GreenlightError as exc:
        print(f"{args.command} failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
