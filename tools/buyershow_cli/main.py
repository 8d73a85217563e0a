from __future__ import annotations

import argparse
import datetime as dt
import json
import os
import sys
from dataclasses import asdict
from typing import Any

import httpx

from modules.persistence.db import Database
from modules.persistence.records import GenerationRecord, GenerationStatus
from modules.persistence.store import GenerationStore, build_store
from services.api.config import Settings

from .api import ApiError, BuyerShowApi
from .flow import ClientFlowController, FileSnapshotStore


DEFAULT_API_URL = "http://127.0.0.1:8000"
DEFAULT_STATE = os.path.join(".buyershow", "flow.json")


def _iso(dtobj: dt.datetime | None) -> str | None:
    if dtobj is None:
        return None
    if dtobj.tzinfo is None:
        dtobj = dtobj.replace(tzinfo=dt.timezone.utc)
    return dtobj.isoformat().replace("+00:00", "Z")


def _print(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False))


def _error(code: str, message: str, exit_code: int = 2) -> int:
    _print({"error": {"code": code, "message": message}})
    return exit_code


# --- history (straight from the store) ---


def _store() -> GenerationStore:
    settings = Settings.from_env()
    db = Database(settings.db_url) if settings.store_backend == "sql" else None
    return build_store(settings.store_backend, db)


def _record_summary(g: GenerationRecord) -> dict[str, Any]:
    return {
        "id": g.id,
        "status": g.status.value,
        "user_description": g.user_description,
        "created_at": _iso(g.created_at),
        "completed_at": _iso(g.completed_at),
        "total_tokens": g.total_tokens,
        "error_code": g.error_code,
        "images": len(g.generated_images),
    }


def cmd_history_list(args: argparse.Namespace) -> int:
    rows, total = _store().list_generations(
        user_id=args.user, status=args.status, limit=int(args.limit), offset=int(args.offset)
    )
    _print({"generations": [_record_summary(g) for g in rows], "total": total})
    return 0


def cmd_history_get(args: argparse.Namespace) -> int:
    store = _store()
    g = store.get_generation(args.id, user_id=args.user)
    if g is None:
        return _error("NOT_FOUND", "generation not found")
    payload = _record_summary(g)
    payload.update(
        {
            "enhanced_prompt": g.enhanced_prompt,
            "ai_model": g.ai_model,
            "temperature": g.temperature,
            "retry_count": g.retry_count,
            "error_message": g.error_message,
            "events": [
                {"ts": _iso(e.ts), "level": e.level, "code": e.code, "payload": e.payload} for e in store.list_events(g.id)
            ],
        }
    )
    _print(payload)
    return 0


def cmd_history_stats(args: argparse.Namespace) -> int:
    stats = _store().generation_stats(user_id=args.user)
    _print(asdict(stats))
    return 0


# --- flow (through the HTTP API) ---


def _api_client(base_url: str) -> httpx.Client:
    return httpx.Client(base_url=base_url, timeout=httpx.Timeout(180.0))


def _flow_command(fn):
    def run(args: argparse.Namespace) -> int:
        with _api_client(args.api_url) as http:
            ctl = ClientFlowController(BuyerShowApi(http, user_id=args.user), FileSnapshotStore(args.state))
            try:
                out = fn(ctl, args)
            except ApiError as exc:
                _print({"error": exc.to_dict()})
                return 2
            except (RuntimeError, ValueError, OSError) as exc:
                return _error("FLOW_ERROR", str(exc), 3)
            _print(out if out is not None else ctl.summary())
        return 0

    return run


def _moved(ctl: ClientFlowController, ok: bool) -> dict[str, Any]:
    return {"moved": ok, "current_step": ctl.state.current_step}


@_flow_command
def cmd_flow_show(ctl: ClientFlowController, args: argparse.Namespace) -> Any:
    return ctl.summary()


@_flow_command
def cmd_flow_upload_scene(ctl: ClientFlowController, args: argparse.Namespace) -> Any:
    return ctl.upload_scene_image(args.path, args.mime_type)


@_flow_command
def cmd_flow_upload_product(ctl: ClientFlowController, args: argparse.Namespace) -> Any:
    return ctl.upload_product_image(args.path, args.mime_type, name=args.name)


@_flow_command
def cmd_flow_select_product(ctl: ClientFlowController, args: argparse.Namespace) -> Any:
    return ctl.select_product(args.id)


@_flow_command
def cmd_flow_generate(ctl: ClientFlowController, args: argparse.Namespace) -> Any:
    ctl.generate_image(
        args.description,
        product_description=args.product_description,
        placement_description=args.placement_description,
        style_description=args.style_description,
        temperature=args.temperature,
    )
    return None


@_flow_command
def cmd_flow_regenerate(ctl: ClientFlowController, args: argparse.Namespace) -> Any:
    ctl.regenerate_image(args.temperature)
    return None


@_flow_command
def cmd_flow_refresh(ctl: ClientFlowController, args: argparse.Namespace) -> Any:
    ctl.refresh_status()
    return None


@_flow_command
def cmd_flow_goto(ctl: ClientFlowController, args: argparse.Namespace) -> Any:
    return _moved(ctl, ctl.go_to_step(int(args.step), force=args.force))


@_flow_command
def cmd_flow_next(ctl: ClientFlowController, args: argparse.Namespace) -> Any:
    return _moved(ctl, ctl.next_step())


@_flow_command
def cmd_flow_back(ctl: ClientFlowController, args: argparse.Namespace) -> Any:
    return _moved(ctl, ctl.previous_step())


@_flow_command
def cmd_flow_reset(ctl: ClientFlowController, args: argparse.Namespace) -> Any:
    ctl.reset()
    return None


@_flow_command
def cmd_flow_save_image(ctl: ClientFlowController, args: argparse.Namespace) -> Any:
    return {"saved": str(ctl.save_image(args.out))}


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="buyershow", description="Buyer show generation CLI")
    p.add_argument("--user", default=os.getenv("BS_USER_ID", "local-user"), help="User id sent as X-User-Id")
    sp = p.add_subparsers(dest="cmd")

    # history
    p_hist = sp.add_parser("history", help="Browse generation history from the store")
    sph = p_hist.add_subparsers(dest="subcmd")

    p_hl = sph.add_parser("list", help="List recent generations")
    p_hl.add_argument("--status", choices=[s.value for s in GenerationStatus], default=None)
    p_hl.add_argument("--limit", default=20, help="Number of generations (1..100)")
    p_hl.add_argument("--offset", default=0, help="Rows to skip")
    p_hl.set_defaults(func=cmd_history_list)

    p_hg = sph.add_parser("get", help="Get a generation with its event log")
    p_hg.add_argument("id", help="Generation UUID")
    p_hg.set_defaults(func=cmd_history_get)

    p_hs = sph.add_parser("stats", help="Totals and average processing time")
    p_hs.set_defaults(func=cmd_history_stats)

    # flow
    p_flow = sp.add_parser("flow", help="Drive the four-step generation flow against the API")
    p_flow.add_argument("--api-url", default=os.getenv("BS_API_URL", DEFAULT_API_URL))
    p_flow.add_argument("--state", default=os.getenv("BS_FLOW_STATE", DEFAULT_STATE), help="Snapshot file")
    spf = p_flow.add_subparsers(dest="subcmd")

    spf.add_parser("show", help="Print the current flow state").set_defaults(func=cmd_flow_show)

    p_us = spf.add_parser("upload-scene", help="Upload the scene photo (step 1)")
    p_us.add_argument("path")
    p_us.add_argument("--mime-type", default=None)
    p_us.set_defaults(func=cmd_flow_upload_scene)

    p_up = spf.add_parser("upload-product", help="Upload a product photo and select it (step 2)")
    p_up.add_argument("path")
    p_up.add_argument("--mime-type", default=None)
    p_up.add_argument("--name", default=None, help="Product name")
    p_up.set_defaults(func=cmd_flow_upload_product)

    p_sel = spf.add_parser("select-product", help="Select an existing product (step 2)")
    p_sel.add_argument("id", help="Product UUID")
    p_sel.set_defaults(func=cmd_flow_select_product)

    p_gen = spf.add_parser("generate", help="Describe the style and generate (step 3)")
    p_gen.add_argument("description", help="What the buyer show should look like")
    p_gen.add_argument("--product-description", default=None)
    p_gen.add_argument("--placement-description", default=None)
    p_gen.add_argument("--style-description", default=None)
    p_gen.add_argument("--temperature", type=float, default=None)
    p_gen.set_defaults(func=cmd_flow_generate)

    p_regen = spf.add_parser("regenerate", help="Generate again from the last request")
    p_regen.add_argument("--temperature", type=float, default=None)
    p_regen.set_defaults(func=cmd_flow_regenerate)

    spf.add_parser("refresh", help="Poll a pending generation").set_defaults(func=cmd_flow_refresh)

    p_goto = spf.add_parser("goto", help="Jump to a step if its prerequisites are met")
    p_goto.add_argument("step", type=int, choices=[1, 2, 3, 4])
    p_goto.add_argument("--force", action="store_true", help="Skip the prerequisite check")
    p_goto.set_defaults(func=cmd_flow_goto)

    spf.add_parser("next", help="Advance one step").set_defaults(func=cmd_flow_next)
    spf.add_parser("back", help="Go back one step").set_defaults(func=cmd_flow_back)
    spf.add_parser("reset", help="Start over").set_defaults(func=cmd_flow_reset)

    p_save = spf.add_parser("save-image", help="Write the generated image to a file")
    p_save.add_argument("out")
    p_save.set_defaults(func=cmd_flow_save_image)

    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    ns = parser.parse_args(argv)
    if not hasattr(ns, "func"):
        parser.print_help()
        return 1
    return int(ns.func(ns))


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
