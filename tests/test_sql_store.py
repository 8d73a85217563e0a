from __future__ import annotations

import pytest

from conftest import FakeImageGenerator, make_png
from modules.generation.orchestrator import GenerationOrchestrator, GenerationParams
from modules.persistence.db import Database
from modules.persistence.records import GenerationStatus, InvalidTransition
from modules.persistence.store import SqlGenerationStore, build_store
from modules.persistence.memory import InMemoryGenerationStore


@pytest.fixture()
def sql_store(tmp_path):
    db = Database(f"sqlite+pysqlite:///{tmp_path / 'bs.sqlite3'}")
    yield SqlGenerationStore(db)
    db.dispose()


def _scene(store, uploads, user_id: str = "user-a"):
    stored = uploads.store(make_png(), kind="scene", original_name="room.png", mime_type="image/png")
    return store.create_scene_image(
        user_id=user_id,
        filename=stored.filename,
        original_name=stored.original_name,
        mime_type=stored.mime_type,
        size=stored.size,
        storage_key=stored.key,
        url=stored.url,
    )


@pytest.mark.asyncio
async def test_sql_store_full_lifecycle(sql_store, uploads) -> None:
    gen = FakeImageGenerator(FakeImageGenerator.ok(), FakeImageGenerator.failed())
    orch = GenerationOrchestrator(sql_store, uploads, gen)
    scene = _scene(sql_store, uploads)
    product = sql_store.create_product(user_id="user-a", name="Lamp", description="brass desk lamp")

    done = await orch.create_and_run(
        "user-a",
        GenerationParams(user_description="a calm reading corner", scene_image_id=scene.id, product_id=product.id),
    )
    failed = await orch.create_and_run("user-a", GenerationParams(user_description="a calm reading corner"))

    assert done.status is GenerationStatus.COMPLETED
    assert done.scene_image is not None and done.scene_image.id == scene.id
    assert done.product is not None and done.product.name == "Lamp"
    assert len(done.generated_images) == 1
    assert failed.status is GenerationStatus.FAILED and failed.retry_count == 1

    rows, total = sql_store.list_generations(user_id="user-a")
    assert total == 2
    assert {r.id for r in rows} == {done.id, failed.id}
    only_failed, n_failed = sql_store.list_generations(user_id="user-a", status="FAILED")
    assert n_failed == 1 and only_failed[0].id == failed.id

    stats = sql_store.generation_stats(user_id="user-a")
    assert stats.total_generations == 2
    assert stats.completed_generations == 1
    assert stats.failed_generations == 1
    assert stats.pending_generations == 0
    assert stats.total_tokens_used == 1390
    assert stats.average_processing_time is not None and stats.average_processing_time >= 0

    events = sql_store.list_events(done.id)
    assert [e.code for e in events] == ["generation.created", "generation.started", "generation.completed"]

    assert sql_store.get_generation(done.id, user_id="user-b") is None
    assert sql_store.delete_generation(done.id, user_id="user-b") is False
    assert sql_store.delete_generation(done.id, user_id="user-a") is True
    assert sql_store.get_generation(done.id, user_id="user-a") is None
    assert sql_store.list_events(done.id) == []


def test_sql_store_rejects_backward_transitions(sql_store) -> None:
    rec = sql_store.create_generation(
        user_id="user-a",
        enhanced_prompt="Create a photorealistic image: a calm corner",
        user_description="a calm corner",
        ai_model="fake",
        temperature=0.5,
    )
    assert rec.status is GenerationStatus.PENDING
    with pytest.raises(InvalidTransition):
        sql_store.update_generation(rec.id, status=GenerationStatus.COMPLETED)
    sql_store.update_generation(rec.id, status=GenerationStatus.IN_PROGRESS)
    sql_store.update_generation(rec.id, status=GenerationStatus.FAILED, retry_count=1)
    with pytest.raises(InvalidTransition):
        sql_store.update_generation(rec.id, status=GenerationStatus.IN_PROGRESS)
    with pytest.raises(ValueError):
        sql_store.update_generation(rec.id, retry_count=0)


def test_products_are_owner_scoped_and_soft_deleted(sql_store) -> None:
    p = sql_store.create_product(user_id="user-a", name="Vase")
    assert p.currency == "CNY" and p.is_active is True
    assert sql_store.get_product(p.id, user_id="user-b") is None
    assert [x.id for x in sql_store.list_products(user_id="user-a")] == [p.id]

    assert sql_store.deactivate_product(p.id, user_id="user-a") is True
    assert sql_store.get_product(p.id, user_id="user-a") is None
    assert sql_store.list_products(user_id="user-a") == []
    assert sql_store.deactivate_product(p.id, user_id="user-a") is False


def test_build_store_selects_backend(tmp_path) -> None:
    assert isinstance(build_store("memory"), InMemoryGenerationStore)
    db = Database(f"sqlite+pysqlite:///{tmp_path / 'x.sqlite3'}")
    try:
        assert isinstance(build_store("sql", db), SqlGenerationStore)
    finally:
        db.dispose()
    with pytest.raises(ValueError):
        build_store("sql")
    with pytest.raises(ValueError):
        build_store("redis")
