"""Four-step generation wizard driven from the command line.

Steps: 1 upload scene, 2 pick or upload a product, 3 describe the style,
4 view the result. A step is reachable only when every artifact the steps before
it produce is present. The state is written to a snapshot after every change and
read back once when the controller is built; snapshots older than 24 hours are
discarded.
"""
from __future__ import annotations

import base64
import json
import logging
import mimetypes
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Protocol

from pydantic import BaseModel, ValidationError

from .api import ApiError, BuyerShowApi


logger = logging.getLogger(__name__)

TOTAL_STEPS = 4
SNAPSHOT_MAX_AGE = timedelta(hours=24)
PENDING_STATUSES = frozenset({"PENDING", "IN_PROGRESS"})

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FlowState(BaseModel):
    current_step: int = 1
    scene_image: dict[str, Any] | None = None
    selected_product: dict[str, Any] | None = None
    generation_request: dict[str, Any] | None = None
    generation_result: dict[str, Any] | None = None
    is_generating: bool = False
    error: str | None = None


class Snapshot(BaseModel):
    state: FlowState
    saved_at: datetime


class SnapshotStore(Protocol):
    def save(self, state: FlowState) -> None: ...

    def restore(self) -> FlowState | None: ...


class FileSnapshotStore:
    def __init__(self, path: str | Path, *, max_age: timedelta = SNAPSHOT_MAX_AGE, clock: Clock = _utcnow) -> None:
        self.path = Path(path)
        self.max_age = max_age
        self.clock = clock

    def save(self, state: FlowState) -> None:
        snap = Snapshot(state=state, saved_at=self.clock())
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(snap.model_dump_json(), encoding="utf-8")

    def restore(self) -> FlowState | None:
        if not self.path.exists():
            return None
        try:
            snap = Snapshot.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (ValidationError, ValueError, OSError) as exc:
            logger.warning("ignoring unreadable flow snapshot path=%s error=%s", self.path, exc)
            return None
        saved_at = snap.saved_at if snap.saved_at.tzinfo else snap.saved_at.replace(tzinfo=timezone.utc)
        age = self.clock() - saved_at
        if age > self.max_age:
            logger.info("discarding stale flow snapshot age=%s", age)
            self.path.unlink(missing_ok=True)
            return None
        return snap.state


def encode_file(path: str | Path, mime_type: str | None = None) -> dict[str, Any]:
    """Upload body for a local image file, with the data URL encoding browsers send."""
    p = Path(path)
    data = p.read_bytes()
    mime = mime_type or mimetypes.guess_type(p.name)[0] or "application/octet-stream"
    return {
        "file_data": f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}",
        "file_name": p.name,
        "mime_type": mime,
        "file_size": len(data),
    }


class ClientFlowController:
    def __init__(self, api: BuyerShowApi, snapshots: SnapshotStore) -> None:
        self.api = api
        self.snapshots = snapshots
        restored = snapshots.restore()
        self.state = restored or FlowState()
        if restored is not None:
            logger.info("restored flow at step %d", self.state.current_step)

    def _commit(self) -> None:
        self.snapshots.save(self.state)

    # --- gating ---

    def can_proceed_to_step(self, step: int) -> bool:
        if step == 1:
            return True
        if step == 2:
            return self.state.scene_image is not None
        if step == 3:
            return self.can_proceed_to_step(2) and self.state.selected_product is not None
        if step == 4:
            return self.can_proceed_to_step(3) and self.state.generation_request is not None
        return False

    def next_step(self) -> bool:
        target = self.state.current_step + 1
        if target > TOTAL_STEPS or not self.can_proceed_to_step(target):
            return False
        self.state.current_step = target
        self._commit()
        return True

    def previous_step(self) -> bool:
        if self.state.current_step <= 1:
            return False
        self.state.current_step -= 1
        self._commit()
        return True

    def go_to_step(self, step: int, *, force: bool = False) -> bool:
        if not 1 <= step <= TOTAL_STEPS:
            raise ValueError(f"step must be between 1 and {TOTAL_STEPS}")
        if not force and not self.can_proceed_to_step(step):
            return False
        self.state.current_step = step
        self._commit()
        return True

    # --- artifacts ---

    def _fail(self, exc: ApiError) -> None:
        self.state.error = exc.message or exc.code
        self.state.is_generating = False
        self._commit()

    def upload_scene_image(self, path: str | Path, mime_type: str | None = None) -> dict[str, Any]:
        body = encode_file(path, mime_type)
        self.state.error = None
        try:
            descriptor = self.api.upload_scene(**body)
        except ApiError as exc:
            self._fail(exc)
            raise
        self.state.scene_image = descriptor
        self._commit()
        return descriptor

    def upload_product_image(self, path: str | Path, mime_type: str | None = None, *, name: str | None = None) -> dict[str, Any]:
        body = encode_file(path, mime_type)
        self.state.error = None
        try:
            descriptor = self.api.upload_product(**body, name=name)
        except ApiError as exc:
            self._fail(exc)
            raise
        self.state.selected_product = {
            "id": descriptor["id"],
            "name": name or descriptor["originalName"],
            "imageUrl": descriptor["url"],
        }
        self._commit()
        return descriptor

    def select_product(self, product_id: str) -> dict[str, Any]:
        try:
            product = self.api.get_product(product_id)
        except ApiError as exc:
            self._fail(exc)
            raise
        self.state.selected_product = product
        self.state.error = None
        self._commit()
        return product

    # --- generation ---

    def _store_result(self, result: dict[str, Any]) -> None:
        self.state.generation_result = result
        self.state.is_generating = result.get("status") in PENDING_STATUSES
        self.state.error = None
        if result.get("status") == "COMPLETED" and self.can_proceed_to_step(TOTAL_STEPS):
            self.state.current_step = TOTAL_STEPS
        self._commit()

    def generate_image(
        self,
        user_description: str,
        *,
        product_description: str | None = None,
        placement_description: str | None = None,
        style_description: str | None = None,
        temperature: float | None = None,
    ) -> dict[str, Any]:
        request: dict[str, Any] = {"userDescription": user_description, "temperature": 0.7 if temperature is None else temperature}
        optional = {
            "productDescription": product_description,
            "placementDescription": placement_description,
            "styleDescription": style_description,
            "sceneImageId": (self.state.scene_image or {}).get("id"),
            "productId": (self.state.selected_product or {}).get("id"),
        }
        request.update({k: v for k, v in optional.items() if v})
        self.state.generation_request = request
        self.state.is_generating = True
        self.state.error = None
        self._commit()
        try:
            result = self.api.generate_image(request)
        except ApiError as exc:
            self._fail(exc)
            raise
        self._store_result(result)
        return result

    def regenerate_image(self, temperature: float | None = None) -> dict[str, Any]:
        prior = self.state.generation_result
        if prior is None and self.state.generation_request is None:
            raise RuntimeError("nothing to regenerate: no request has been submitted")
        # Drop the old image before the new call so it is never shown as the new result
        self.state.generation_result = None
        self.state.is_generating = True
        self.state.error = None
        self._commit()
        try:
            if prior is not None:
                result = self.api.regenerate_image(prior["id"], temperature)
            else:
                result = self.api.generate_image(dict(self.state.generation_request or {}))
        except ApiError as exc:
            self._fail(exc)
            raise
        self._store_result(result)
        return result

    def refresh_status(self) -> dict[str, Any] | None:
        result = self.state.generation_result
        if result is None or result.get("status") not in PENDING_STATUSES:
            return result
        try:
            fresh = self.api.get_generation_status(result["id"])
        except ApiError as exc:
            self._fail(exc)
            raise
        self._store_result(fresh)
        return fresh

    def reset(self) -> None:
        self.state = FlowState()
        self._commit()

    def save_image(self, out: str | Path) -> Path:
        image = (self.state.generation_result or {}).get("generatedImage")
        if not image:
            raise RuntimeError("no generated image in the current flow")
        path = Path(out)
        path.write_bytes(base64.b64decode(image["imageData"]))
        return path

    def summary(self) -> dict[str, Any]:
        data = json.loads(self.state.model_dump_json())
        image = (data.get("generation_result") or {}).get("generatedImage")
        if image and image.get("imageData"):
            image["imageData"] = f"<{len(image['imageData'])} base64 chars>"
        data["reachable_steps"] = [s for s in range(1, TOTAL_STEPS + 1) if self.can_proceed_to_step(s)]
        return data
