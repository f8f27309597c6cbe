# tests/test_extraction.py

import pytest

from kg_pipeline.errors import ReferentialIntegrityError, TransientExternalError
from kg_pipeline.graph.schema import EdgeType
from kg_pipeline.models.entities import Concept, EntityKind
from kg_pipeline.pipeline.extraction import ExtractionPipeline

from conftest import ScriptedOracle, concept, make_paper

GS_PAYLOAD = {
    "concepts": [
        concept("3D Gaussian Splatting", confidence=0.95),
        concept("Tile Rasterizer", description="Short one.", confidence=0.9),
        concept("Vague Idea", confidence=0.3),
        concept("No Description", description=""),
    ],
    "methods": [
        {
            "name": "Adaptive Density Control",
            "description": "Clones and splits Gaussians during optimization.",
            "category": "optimization",
            "confidence": 0.8,
        },
        {"name": "", "description": "nameless", "confidence": 0.9},
    ],
    "datasets": [
        {"name": "Mip-NeRF 360", "description": "Unbounded scenes."},
        {"name": "Tanks and Temples", "description": ""},
    ],
    "metrics": [{"name": "PSNR", "value": 27.21, "unit": "dB"}],
}


def _pipeline(store, extraction):
    return ExtractionPipeline(ScriptedOracle(extraction=extraction), store)


def _gs_paper(store, paper_id="gs", title="Gaussian Splatting"):
    return store.ensure_paper(make_paper(paper_id, title=title))


@pytest.mark.asyncio
async def test_filters_and_scores(store):
    paper = _gs_paper(store)
    result = await _pipeline(store, {"Gaussian Splatting": GS_PAYLOAD}).extract(paper)

    names = {c.name: c for c in result.concepts}
    assert set(names) == {"3D Gaussian Splatting", "Tile Rasterizer"}
    assert names["3D Gaussian Splatting"].confidence == pytest.approx(0.95)
    # descriptions under 20 characters cost 20% confidence
    assert names["Tile Rasterizer"].confidence == pytest.approx(0.72)

    assert [m.name for m in result.methods] == ["Adaptive Density Control"]
    assert [d.name for d in result.datasets] == ["Mip-NeRF 360"]
    assert [m.name for m in result.metrics] == ["PSNR"]

    for item in result.items():
        assert 0.0 <= item.confidence <= 1.0
        assert item.entity_id is not None


@pytest.mark.asyncio
async def test_persists_entities_and_links(store):
    paper = _gs_paper(store)
    result = await _pipeline(store, {"Gaussian Splatting": GS_PAYLOAD}).extract(paper)

    assert result.entities_created == 4
    assert result.edges_created == 4
    assert result.failures == []

    gs = store.get_by_normalized_key(EntityKind.CONCEPT, "3d-gaussian-splatting")
    assert gs.introduced_by == "gs"
    assert store.get_by_normalized_key(EntityKind.DATASET, "Mip-NeRF 360") is not None
    assert store.get_by_normalized_key(EntityKind.DATASET, "mip-nerf-360") is None

    links = store.edges_for_paper("gs", EdgeType.PAPER_INTRODUCES_CONCEPT)
    assert sorted(e.confidence for e in links) == pytest.approx([0.72, 0.95])
    assert len(store.edges_for_paper("gs", EdgeType.PAPER_USES_METHOD)) == 1
    assert len(store.edges_for_paper("gs", EdgeType.PAPER_EVALUATES_ON_DATASET)) == 1


@pytest.mark.asyncio
async def test_reextraction_is_idempotent(store):
    paper = _gs_paper(store)
    pipeline = _pipeline(store, {"Gaussian Splatting": GS_PAYLOAD})

    await pipeline.extract(paper)
    before = store.stats()
    again = await pipeline.extract(paper)

    assert again.entities_created == 0
    assert again.edges_created == 0
    assert store.stats() == before


@pytest.mark.asyncio
async def test_shared_concepts_reuse_canonical_entity(store):
    first = _gs_paper(store)
    second = _gs_paper(store, paper_id="follow", title="Follow Up")
    pipeline = _pipeline(
        store,
        {
            "Gaussian Splatting": {"concepts": [concept("3D Gaussian Splatting")]},
            "Follow Up": {"concepts": [concept("3d gaussian-splatting!", confidence=0.6)]},
        },
    )

    await pipeline.extract(first)
    result = await pipeline.extract(second)

    assert result.entities_created == 0
    assert result.edges_created == 1
    assert result.concepts[0].reused
    assert result.concepts[0].name == "3D Gaussian Splatting"
    assert len(store.list_all(EntityKind.CONCEPT)) == 1
    assert store.get_by_normalized_key(EntityKind.CONCEPT, "3d-gaussian-splatting").introduced_by == "gs"


@pytest.mark.asyncio
async def test_repeated_key_in_one_response_is_collapsed(store):
    paper = _gs_paper(store)
    result = await _pipeline(
        store,
        {"Gaussian Splatting": {"concepts": [concept("NeRF"), concept("nerf")]}},
    ).extract(paper)

    assert len(result.concepts) == 1
    assert result.entities_created == 1


@pytest.mark.asyncio
async def test_invalid_first_item_does_not_hide_valid_repeat(store):
    paper = _gs_paper(store)
    result = await _pipeline(
        store,
        {
            "Gaussian Splatting": {
                "concepts": [
                    concept("NeRF", description=""),
                    concept("Radiance Field", confidence=0.2),
                    concept("nerf", description="Neural radiance fields, a long description."),
                    concept("radiance field"),
                ]
            }
        },
    ).extract(paper)

    assert sorted(c.normalized_key for c in result.concepts) == ["nerf", "radiance-field"]
    assert result.entities_created == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [TransientExternalError("timeout"), "this is not json", {"concepts": "nope"}],
)
async def test_oracle_failure_yields_empty_result(store, response):
    paper = _gs_paper(store)
    result = await _pipeline(store, {"Gaussian Splatting": response}).extract(paper)

    assert result.is_empty
    assert result.oracle_error
    assert result.entities_created == 0
    assert store.stats()["concepts"] == 0


@pytest.mark.asyncio
async def test_insert_race_resolved_by_reread(store, monkeypatch):
    paper = _gs_paper(store)
    winner = Concept(name="NeRF", normalized_key="nerf", introduced_by="other")
    real_insert = store.insert

    def racing_insert(kind, entity):
        # another worker lands the same key between our lookup and insert
        if store.get_by_normalized_key(kind, entity.normalized_key) is None:
            real_insert(kind, winner)
        return real_insert(kind, entity)

    monkeypatch.setattr(store, "insert", racing_insert)

    result = await _pipeline(
        store, {"Gaussian Splatting": {"concepts": [concept("NeRF")]}}
    ).extract(paper)

    assert result.failures == []
    assert result.entities_created == 0
    assert result.concepts[0].entity_id == winner.entity_id
    assert store.has_edge(EdgeType.PAPER_INTRODUCES_CONCEPT, "gs", winner.entity_id)


@pytest.mark.asyncio
async def test_store_failure_on_one_item_does_not_stop_others(store, monkeypatch):
    paper = _gs_paper(store)
    real_link = store.link

    def flaky_link(edge_kind, source_id, target_id, **attrs):
        if edge_kind is EdgeType.PAPER_USES_METHOD:
            raise ReferentialIntegrityError("method node vanished")
        return real_link(edge_kind, source_id, target_id, **attrs)

    monkeypatch.setattr(store, "link", flaky_link)

    result = await _pipeline(store, {"Gaussian Splatting": GS_PAYLOAD}).extract(paper)

    assert [f.kind for f in result.failures] == [EntityKind.METHOD]
    assert result.edges_created == 3


@pytest.mark.asyncio
async def test_unexpected_errors_propagate(store, monkeypatch):
    paper = _gs_paper(store)

    def broken(*args, **kwargs):
        raise RuntimeError("store unreachable")

    monkeypatch.setattr(store, "get_by_normalized_key", broken)

    with pytest.raises(RuntimeError):
        await _pipeline(store, {"Gaussian Splatting": GS_PAYLOAD}).extract(paper)


@pytest.mark.asyncio
async def test_prompt_truncates_full_text(store):
    paper = store.ensure_paper(make_paper("gs", title="Gaussian Splatting", full_text="word " * 5000))
    oracle = ScriptedOracle()

    await ExtractionPipeline(oracle, store, max_fulltext_chars=100).extract(paper)

    prompt = oracle.calls[0]
    assert "Full text (excerpt)" in prompt
    assert "word " * 30 not in prompt
