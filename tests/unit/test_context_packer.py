"""
Tests for the context packer pipeline: per-document cap, answerability
bonus, novelty selection and token budget.
"""

import pytest

from conftest import fused_result, make_tokenizer, quiet_context_config
from src.services.context_packer import (
    DROP_MMR,
    DROP_PER_DOC_CAP,
    DROP_TOKEN_BUDGET,
    ContextPacker,
    apply_per_doc_cap,
)
from src.shared.config import AnswerabilityBonusConfig, NoveltyConfig, TokenBudgetConfig


def sample_results():
    return [
        fused_result("a", 0.9, "alpha bravo charlie delta", doc_id="doc1"),
        fused_result("b", 0.8, "echo foxtrot golf hotel", doc_id="doc1"),
        fused_result("c", 0.7, "india juliet kilo lima", doc_id="doc1"),
        fused_result("d", 0.6, "mike november oscar papa", doc_id="doc2"),
        fused_result("e", 0.5, "quebec romeo sierra tango", doc_id="doc3"),
    ]


def packer(token_budget=1000, **overrides):
    config = quiet_context_config(
        budget=TokenBudgetConfig(token_budget=token_budget, safety_margin=0), **overrides
    )
    return ContextPacker(config, tokenizer=make_tokenizer())


class TestApplyPerDocCap:
    def test_keeps_first_chunks_per_document(self):
        kept, dropped = apply_per_doc_cap(sample_results(), cap=2)

        assert [r.id for r in kept] == ["a", "b", "d", "e"]
        assert dropped == ["c"]

    def test_results_without_doc_id_use_their_own_id(self):
        results = [fused_result("x", 0.5), fused_result("y", 0.4)]
        kept, dropped = apply_per_doc_cap(results, cap=1)

        assert [r.id for r in kept] == ["x", "y"]
        assert dropped == []


class TestContextPacker:
    @pytest.mark.asyncio
    async def test_pack_with_truncation(self):
        packed = await packer(token_budget=14).pack("overview", sample_results())
        trace = packed.trace

        assert [r.id for r in packed.results] == ["a", "b", "d", "e"]
        assert [r.rank for r in packed.results] == [1, 2, 3, 4]
        assert trace.dropped == {"c": DROP_PER_DOC_CAP}
        assert trace.truncated_ids == ["e"]
        assert trace.token_counts == {"a": 4, "b": 4, "d": 4, "e": 2}
        assert trace.total_tokens == 14
        assert trace.similarity == "jaccard"
        assert packed.results[-1].content == "quebec romeo"

    @pytest.mark.asyncio
    async def test_max_results_drops_by_novelty_selection(self):
        packed = await packer().pack("overview", sample_results(), max_results=2)

        assert packed.trace.selected_ids == ["a", "b"]
        assert packed.trace.dropped == {
            "c": DROP_PER_DOC_CAP,
            "d": DROP_MMR,
            "e": DROP_MMR,
        }

    @pytest.mark.asyncio
    async def test_token_budget_drops(self):
        packed = await packer(token_budget=6).pack("overview", sample_results())

        assert packed.trace.selected_ids == ["a", "b"]
        assert packed.trace.truncated_ids == ["b"]
        assert packed.trace.dropped["d"] == DROP_TOKEN_BUDGET
        assert packed.trace.dropped["e"] == DROP_TOKEN_BUDGET

    @pytest.mark.asyncio
    async def test_answerability_bonus_promotes_answer_bearing_chunk(self):
        results = [
            fused_result("plain", 0.5, "general background notes", doc_id="d1"),
            fused_result("answer", 0.45, "a stripe is sixteen blocks", doc_id="d2"),
        ]
        p = packer(answerability=AnswerabilityBonusConfig(enabled=True))

        packed = await p.pack("what is a stripe", results)

        assert [r.id for r in packed.results] == ["answer", "plain"]
        assert packed.trace.scores["answer"] > packed.trace.scores["plain"]

    @pytest.mark.asyncio
    async def test_near_duplicates_suppressed(self):
        results = [
            fused_result("dup1", 0.9, "erasure coding protects data across nodes", doc_id="d1"),
            fused_result("dup2", 0.88, "erasure coding protects data across all nodes", doc_id="d2"),
            fused_result("other", 0.5, "snapshots capture filesystem state", doc_id="d3"),
        ]

        packed = await packer(novelty=NoveltyConfig(use_embeddings=False)).pack(
            "erasure coding", results, max_results=2
        )

        assert [r.id for r in packed.results] == ["dup1", "other"]
        assert packed.trace.dropped == {"dup2": DROP_MMR}

    @pytest.mark.asyncio
    async def test_text_and_trace_serialization(self):
        packed = await packer().pack("overview", sample_results()[:2])

        assert packed.text == "alpha bravo charlie delta\n\necho foxtrot golf hotel"
        trace = packed.trace.to_dict()
        assert trace["selected_ids"] == ["a", "b"]
        assert trace["total_tokens"] == 8

    @pytest.mark.asyncio
    async def test_empty_input(self):
        packed = await packer().pack("overview", [])

        assert packed.results == []
        assert packed.trace.total_tokens == 0
