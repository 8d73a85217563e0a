from __future__ import annotations

import base64
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from fastapi.testclient import TestClient

from conftest import make_png
from tools.buyershow_cli.api import ApiError, BuyerShowApi
from tools.buyershow_cli.flow import ClientFlowController, FileSnapshotStore, FlowState


class MemorySnapshots:
    def __init__(self, state: FlowState | None = None) -> None:
        self.state = state
        self.saves = 0

    def save(self, state: FlowState) -> None:
        self.state = state.model_copy(deep=True)
        self.saves += 1

    def restore(self) -> FlowState | None:
        return self.state


class FakeApi:
    def __init__(self) -> None:
        self.statuses: list[dict[str, Any]] = []
        self.calls: list[tuple[str, Any]] = []
        self.fail_with: ApiError | None = None

    def _maybe_fail(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    def upload_scene(self, **body: Any) -> dict[str, Any]:
        self.calls.append(("upload_scene", body["file_name"]))
        self._maybe_fail()
        return {"id": "scene-1", "filename": "scene_1.png", "originalName": body["file_name"], "url": "/uploads/scene/scene_1.png"}

    def get_product(self, product_id: str) -> dict[str, Any]:
        self.calls.append(("get_product", product_id))
        self._maybe_fail()
        return {"id": product_id, "name": "Mug"}

    def generate_image(self, request: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("generate", dict(request)))
        self._maybe_fail()
        return {"id": "gen-1", "status": "IN_PROGRESS", "enhancedPrompt": "p"}

    def regenerate_image(self, generation_id: str, temperature: float | None = None) -> dict[str, Any]:
        self.calls.append(("regenerate", (generation_id, temperature)))
        self._maybe_fail()
        return {"id": "gen-2", "status": "COMPLETED", "enhancedPrompt": "p"}

    def get_generation_status(self, generation_id: str) -> dict[str, Any]:
        self.calls.append(("status", generation_id))
        return self.statuses.pop(0)


@pytest.fixture()
def scene_file(tmp_path):
    path = tmp_path / "room.png"
    path.write_bytes(make_png())
    return path


def test_steps_are_gated_on_prior_artifacts(scene_file) -> None:
    flow = ClientFlowController(FakeApi(), MemorySnapshots())
    assert flow.state.current_step == 1
    assert [flow.can_proceed_to_step(s) for s in (1, 2, 3, 4)] == [True, False, False, False]
    assert flow.next_step() is False

    flow.upload_scene_image(scene_file)
    assert flow.can_proceed_to_step(2) is True
    assert flow.can_proceed_to_step(3) is False
    assert flow.next_step() is True and flow.state.current_step == 2
    assert flow.go_to_step(4) is False

    flow.select_product("prod-1")
    assert flow.can_proceed_to_step(3) is True
    assert flow.can_proceed_to_step(4) is False

    flow.generate_image("a sunny balcony")
    assert flow.can_proceed_to_step(4) is True
    assert flow.summary()["reachable_steps"] == [1, 2, 3, 4]


def test_product_without_scene_does_not_open_later_steps() -> None:
    flow = ClientFlowController(FakeApi(), MemorySnapshots())
    flow.select_product("prod-1")
    assert flow.can_proceed_to_step(3) is False
    assert flow.summary()["reachable_steps"] == [1]


def test_go_to_step_bounds_and_force() -> None:
    flow = ClientFlowController(FakeApi(), MemorySnapshots())
    with pytest.raises(ValueError):
        flow.go_to_step(0)
    with pytest.raises(ValueError):
        flow.go_to_step(5)
    assert flow.go_to_step(3, force=True) is True
    assert flow.state.current_step == 3
    assert flow.previous_step() is True
    assert flow.state.current_step == 2
    flow.go_to_step(1)
    assert flow.previous_step() is False


def test_generate_records_request_before_the_call(scene_file) -> None:
    api = FakeApi()
    snaps = MemorySnapshots()
    flow = ClientFlowController(api, snaps)
    flow.upload_scene_image(scene_file)
    flow.select_product("prod-1")

    api.fail_with = ApiError(500, "INTERNAL_ERROR", "server exploded")
    with pytest.raises(ApiError):
        flow.generate_image("a sunny balcony", style_description="warm", temperature=None)

    assert flow.state.generation_request == {
        "userDescription": "a sunny balcony",
        "temperature": 0.7,
        "styleDescription": "warm",
        "sceneImageId": "scene-1",
        "productId": "prod-1",
    }
    assert flow.state.is_generating is False
    assert flow.state.error == "server exploded"
    assert snaps.state is not None and snaps.state.error == "server exploded"


def test_regenerate_without_prior_result_resubmits_stored_request(scene_file) -> None:
    api = FakeApi()
    flow = ClientFlowController(api, MemorySnapshots())
    with pytest.raises(RuntimeError):
        flow.regenerate_image()

    flow.upload_scene_image(scene_file)
    flow.select_product("prod-1")
    api.fail_with = ApiError(0, "NETWORK_ERROR", "connection refused")
    with pytest.raises(ApiError):
        flow.generate_image("a sunny balcony")
    api.fail_with = None

    result = flow.regenerate_image()
    assert result["id"] == "gen-1"
    assert api.calls[-1] == ("generate", flow.state.generation_request)


def test_regenerate_clears_previous_result_and_advances(scene_file) -> None:
    api = FakeApi()
    flow = ClientFlowController(api, MemorySnapshots())
    flow.upload_scene_image(scene_file)
    flow.select_product("prod-1")
    flow.generate_image("a sunny balcony")
    assert flow.state.is_generating is True

    api.fail_with = ApiError(404, "NOT_FOUND", "Generation request not found")
    with pytest.raises(ApiError):
        flow.regenerate_image(temperature=0.3)
    assert flow.state.generation_result is None

    api.fail_with = None
    flow.state.generation_result = {"id": "gen-1", "status": "FAILED"}
    result = flow.regenerate_image(temperature=0.3)
    assert api.calls[-1] == ("regenerate", ("gen-1", 0.3))
    assert result["status"] == "COMPLETED"
    assert flow.state.current_step == 4
    assert flow.state.is_generating is False


def test_refresh_status_polls_until_terminal(scene_file) -> None:
    api = FakeApi()
    flow = ClientFlowController(api, MemorySnapshots())
    flow.upload_scene_image(scene_file)
    flow.select_product("prod-1")
    flow.generate_image("a sunny balcony")

    api.statuses = [
        {"id": "gen-1", "status": "IN_PROGRESS"},
        {"id": "gen-1", "status": "COMPLETED", "generatedImage": {"imageData": "aGk=", "mimeType": "image/png"}},
    ]
    assert flow.refresh_status()["status"] == "IN_PROGRESS"
    assert flow.state.current_step == 1
    assert flow.refresh_status()["status"] == "COMPLETED"
    assert flow.state.current_step == 4

    # Terminal results are not polled again
    n = len(api.calls)
    assert flow.refresh_status()["status"] == "COMPLETED"
    assert len(api.calls) == n


def test_state_survives_a_new_controller(tmp_path, scene_file) -> None:
    path = tmp_path / "flow.json"
    flow = ClientFlowController(FakeApi(), FileSnapshotStore(path))
    flow.upload_scene_image(scene_file)
    flow.next_step()

    again = ClientFlowController(FakeApi(), FileSnapshotStore(path))
    assert again.state.current_step == 2
    assert again.state.scene_image is not None and again.state.scene_image["id"] == "scene-1"

    again.reset()
    assert ClientFlowController(FakeApi(), FileSnapshotStore(path)).state == FlowState()


def test_stale_snapshot_is_discarded(tmp_path) -> None:
    path = tmp_path / "flow.json"
    saved = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    FileSnapshotStore(path, clock=lambda: saved).save(FlowState(current_step=3))

    fresh = FileSnapshotStore(path, clock=lambda: saved + timedelta(hours=23))
    restored = fresh.restore()
    assert restored is not None and restored.current_step == 3

    stale = FileSnapshotStore(path, clock=lambda: saved + timedelta(hours=24, seconds=1))
    assert stale.restore() is None
    assert not path.exists()


def test_unreadable_snapshot_starts_fresh(tmp_path) -> None:
    path = tmp_path / "flow.json"
    path.write_text("{not json", encoding="utf-8")
    assert FileSnapshotStore(path).restore() is None
    assert ClientFlowController(FakeApi(), FileSnapshotStore(path)).state.current_step == 1


def test_summary_masks_image_bytes() -> None:
    state = FlowState(generation_result={"id": "g", "status": "COMPLETED", "generatedImage": {"imageData": "A" * 40}})
    flow = ClientFlowController(FakeApi(), MemorySnapshots(state))
    summary = flow.summary()
    assert summary["generation_result"]["generatedImage"]["imageData"] == "<40 base64 chars>"
    assert flow.state.generation_result["generatedImage"]["imageData"] == "A" * 40


def test_end_to_end_against_the_api(app, tmp_path, scene_file) -> None:
    product_file = tmp_path / "mug.png"
    product_file.write_bytes(make_png(color="blue"))
    api = BuyerShowApi(TestClient(app), "user-a")
    flow = ClientFlowController(api, FileSnapshotStore(tmp_path / "flow.json"))

    flow.upload_scene_image(scene_file)
    flow.next_step()
    flow.upload_product_image(product_file, name="Mug")
    flow.next_step()
    result = flow.generate_image("a sunny balcony with the mug on a table", placement_description="on the table")

    assert result["status"] == "COMPLETED"
    assert flow.state.current_step == 4
    assert flow.state.selected_product["name"] == "Mug"

    out = flow.save_image(tmp_path / "result.png")
    assert out.read_bytes() == base64.b64decode(result["generatedImage"]["imageData"])

    again = flow.regenerate_image(temperature=0.2)
    assert again["id"] != result["id"]
    assert again["status"] == "COMPLETED"

    with pytest.raises(ApiError) as info:
        BuyerShowApi(TestClient(app), "user-b").get_generation_status(result["id"])
    assert info.value.status_code == 404
    assert info.value.code == "NOT_FOUND"
