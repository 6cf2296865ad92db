"""Generation orchestrator tests with a scripted gateway."""

import asyncio

import pytest

from conftest import FakeCrawl, make_crawl_result
from repodocs.errors import (
    GatewayError,
    GenerationCancelledError,
    NotFoundError,
    ParseError,
    RateLimitedError,
    ValidationError,
)
from repodocs.generation.models import Abstraction, ProjectAnalysis, Relationship
from repodocs.generation.orchestrator import (
    GenerationOrchestrator,
    GenerationProgress,
    GenerationRequest,
    GenerationStage,
    clean_chapter_content,
    context_reducer,
    progress_for_chapter,
)
from repodocs.repo.crawler import CrawlResult

REPO_URL = "https://github.com/acme/tiny"


def make_request(**kwargs) -> GenerationRequest:
    return GenerationRequest(
        repo_url=REPO_URL, llm_provider="openai", llm_model="gpt-4o-mini", **kwargs
    )


@pytest.fixture
def events():
    return []


@pytest.fixture
def record(events):
    async def callback(progress: GenerationProgress) -> None:
        events.append(progress)

    return callback


@pytest.fixture
def orchestrator(fake_gateway, output_store, fake_crawl):
    return GenerationOrchestrator(gateway=fake_gateway, store=output_store, crawl=fake_crawl)


class TestSuccessfulRun:
    """A full run against a three-file repository."""

    async def test_one_chapter_per_abstraction_in_plan_order(self, orchestrator, output_store):
        """Chapters follow the stubbed plan, after the synthesized overview."""
        result = await orchestrator.run(make_request())

        assert result.project_name == "tiny"
        assert [c.filename for c in result.chapters] == [
            "-1_overview.md",
            "00_chapter-1-app.md",
            "01_chapter-2-router.md",
            "02_chapter-3-store.md",
        ]
        assert [c.order for c in result.chapters] == [-1, 0, 1, 2]
        assert [c.abstractions_covered for c in result.chapters[1:]] == [
            ("App",),
            ("Router",),
            ("Store",),
        ]
        assert not result.partial

    async def test_project_is_persisted(self, orchestrator, output_store):
        """The finished project is readable from the store, overview included."""
        result = await orchestrator.run(make_request(user_id="user-1"))

        projects = output_store.list()
        assert [p["projectSlug"] for p in projects] == [result.project_slug]
        assert projects[0]["userId"] == "user-1"
        assert projects[0]["llmModel"] == "gpt-4o-mini"
        assert result.project_slug.startswith("acme-tiny-")

        overview = output_store.read(result.project_slug, "index.md")
        assert overview.startswith("# Tutorial: tiny")
        assert "```mermaid" in overview
        assert "1. [App](00_chapter-1-app.md)" in overview

        chapter = output_store.read(result.project_slug, "01_chapter-2-router.md")
        assert chapter.startswith("# Chapter 2: Router")

    async def test_progress_walks_through_every_stage(self, orchestrator, record, events):
        """Stages are reported in order, ending with exactly one complete event."""
        await orchestrator.run(make_request(), record)

        stages = []
        for event in events:
            if not stages or stages[-1] != event.stage:
                stages.append(event.stage)
        assert stages == [
            GenerationStage.INITIALIZING,
            GenerationStage.CRAWLING,
            GenerationStage.ANALYZING,
            GenerationStage.MAPPING,
            GenerationStage.ORDERING,
            GenerationStage.WRITING,
            GenerationStage.FINALIZING,
            GenerationStage.COMPLETE,
        ]
        assert [e.progress for e in events] == sorted(e.progress for e in events)
        assert events[-1].progress == 100
        assert sum(e.stage == GenerationStage.COMPLETE for e in events) == 1

    async def test_writing_events_carry_chapter_details(self, orchestrator, record, events):
        """Per-chapter events name the chapter and the plan size."""
        await orchestrator.run(make_request(), record)

        chapter_events = [e for e in events if e.current_chapter is not None]
        assert [(e.current_chapter, e.chapter_name) for e in chapter_events] == [
            (1, "App"),
            (1, "App"),
            (2, "Router"),
            (2, "Router"),
            (3, "Store"),
            (3, "Store"),
        ]
        assert {e.total_chapters for e in chapter_events} == {3}
        assert chapter_events[-1].to_dict()["chapterName"] == "Store"

    async def test_later_chapters_see_earlier_ones(self, orchestrator, fake_gateway):
        """Chapter prompts carry the text of the chapters written before them."""
        await orchestrator.run(make_request())

        prompts = fake_gateway.prompts("chapter")
        assert "This is the first chapter." in prompts[0]
        assert "About App." in prompts[1]
        assert "**App** Creates **Router**" in prompts[1]

    async def test_crawl_receives_token(self, orchestrator, fake_crawl):
        await orchestrator.run(make_request(github_token="ghp_x"))

        assert fake_crawl.calls == [(REPO_URL, "ghp_x")]

    async def test_invalid_chapter_diagram_falls_back_to_text(
        self, orchestrator, fake_gateway, output_store
    ):
        """A broken Mermaid block becomes a relationship list, not a failure."""
        fake_gateway.replies["chapter"] = [
            '# Chapter 1: App\n\n```mermaid\nflowchart TD\n    A["Start"\n```\n',
        ]

        result = await orchestrator.run(make_request())

        content = result.chapters[1].content
        assert "```mermaid" not in content
        assert "- **App** Creates **Router**" in content

    async def test_diagram_fallback_uses_the_chapter_abstraction(
        self, orchestrator, fake_gateway
    ):
        """Abstractions sharing a name keep their own relationship lists."""
        fake_gateway.replies["abstractions"] = [
            "```yaml\n"
            "- name: Core\n  description: Routes requests.\n  file_indices: [1]\n"
            "- name: Core\n  description: Stores sessions.\n  file_indices: [2]\n"
            "- name: App\n  description: Wires everything.\n  file_indices: [0]\n"
            "```"
        ]
        fake_gateway.replies["relationships"] = [
            "```yaml\nsummary: Two cores.\nrelationships:\n"
            "  - from_abstraction: 2\n    to_abstraction: 0\n    label: Creates\n"
            "  - from_abstraction: 0\n    to_abstraction: 1\n    label: Persists through\n"
            "```"
        ]
        fake_gateway.replies["chapter"] = [
            "# Chapter 1: App\n\nAbout App.",
            '# Chapter 2: Core\n\n```mermaid\nflowchart TD\n    A["Start"\n```\n',
        ]

        result = await orchestrator.run(make_request())

        content = result.chapters[2].content
        assert "```mermaid" not in content
        assert "- **App** Creates **Core**" in content
        assert result.chapters[2].abstraction_index == 0

    async def test_architecture_mode_sends_signatures(self, orchestrator, fake_gateway):
        await orchestrator.run(make_request(mode="architecture"))

        first_prompt = fake_gateway.prompts("abstractions")[0]
        assert "// TypeScript Module: src/router.ts" in first_prompt


class TestParseFailures:
    """One corrective re-prompt, then the stage fails."""

    async def test_malformed_reply_is_reprompted_once(self, orchestrator, fake_gateway):
        fake_gateway.replies["abstractions"] = ["Sure! Here are the abstractions: Router, Store"]

        result = await orchestrator.run(make_request())

        prompts = fake_gateway.prompts("abstractions")
        assert len(prompts) == 2
        assert "You must respond in the required format" not in prompts[0]
        assert "You must respond in the required format" in prompts[1]
        assert len(result.chapters) == 4

    async def test_second_failure_ends_the_run(
        self, orchestrator, fake_gateway, output_store, record, events
    ):
        fake_gateway.replies["order"] = ["```yaml\n- 0\n- 0\n```", "```yaml\n- 2\n```"]

        with pytest.raises(ParseError):
            await orchestrator.run(make_request(), record)

        assert len(fake_gateway.prompts("order")) == 2
        assert fake_gateway.prompts("chapter") == []
        assert output_store.list() == []
        assert events[-1].stage == GenerationStage.ERROR
        assert events[-1].error_kind == "parse"
        assert sum(e.stage == GenerationStage.ERROR for e in events) == 1


class TestFailures:
    """Run-level failures emit one error event and persist nothing."""

    async def test_invalid_url_is_rejected_before_crawling(
        self, orchestrator, fake_crawl, record, events
    ):
        with pytest.raises(ValidationError):
            await orchestrator.run(
                GenerationRequest(repo_url="not-a-url", llm_provider="openai", llm_model="m"),
                record,
            )

        assert fake_crawl.calls == []
        assert [e.stage for e in events] == [GenerationStage.ERROR]
        assert events[0].error_kind == "validation"

    async def test_crawl_error_is_reported_with_its_kind(
        self, fake_gateway, output_store, record, events
    ):
        crawl = FakeCrawl(CrawlResult(error=RateLimitedError()))
        orchestrator = GenerationOrchestrator(
            gateway=fake_gateway, store=output_store, crawl=crawl
        )

        with pytest.raises(RateLimitedError):
            await orchestrator.run(make_request(), record)

        assert fake_gateway.requests == []
        assert events[-1].error_kind == "rate_limited"
        assert "token" in events[-1].message

    async def test_empty_crawl_is_not_found(self, fake_gateway, output_store):
        orchestrator = GenerationOrchestrator(
            gateway=fake_gateway, store=output_store, crawl=FakeCrawl(CrawlResult())
        )

        with pytest.raises(NotFoundError, match="No documentable files"):
            await orchestrator.run(make_request())

    async def test_chapter_failure_persists_nothing(
        self, orchestrator, fake_gateway, output_store, record, events
    ):
        fake_gateway.replies["chapter"] = [
            "# Chapter 1: App\n\nok",
            GatewayError("model unavailable"),
        ]

        with pytest.raises(GatewayError):
            await orchestrator.run(make_request(), record)

        assert output_store.list() == []
        assert events[-1].stage == GenerationStage.ERROR
        assert events[-1].message == "model unavailable"

    async def test_partial_persistence_when_enabled(
        self, fake_gateway, output_store, fake_crawl
    ):
        """With allow_partial the chapters written before a failure are saved."""
        orchestrator = GenerationOrchestrator(
            gateway=fake_gateway, store=output_store, crawl=fake_crawl, allow_partial=True
        )
        fake_gateway.replies["chapter"] = [
            "# Chapter 1: App\n\nok",
            "# Chapter 2: Router\n\nok",
            GatewayError("model unavailable"),
        ]

        result = await orchestrator.run(make_request())

        assert result.partial
        assert [c.filename for c in result.chapters] == [
            "-1_overview.md",
            "00_chapter-1-app.md",
            "01_chapter-2-router.md",
        ]
        meta = output_store.get_meta(result.project_slug)
        assert len(meta["chapters"]) == 3


class TestCancellation:
    """Cancelling stops new model calls and persists nothing."""

    @pytest.mark.parametrize("allow_partial", [False, True])
    async def test_cancel_mid_writing(
        self, fake_gateway, output_store, fake_crawl, record, events, allow_partial
    ):
        cancel = asyncio.Event()

        def cancel_after_second_chapter(stage, prompt):
            if stage == "chapter" and "This is Chapter 2." in prompt:
                cancel.set()

        fake_gateway.on_call = cancel_after_second_chapter
        orchestrator = GenerationOrchestrator(
            gateway=fake_gateway,
            store=output_store,
            crawl=fake_crawl,
            allow_partial=allow_partial,
        )

        with pytest.raises(GenerationCancelledError):
            await orchestrator.run(make_request(), record, cancel)

        assert len(fake_gateway.prompts("chapter")) == 2
        assert output_store.list() == []
        assert not output_store.root.exists() or not any(output_store.root.iterdir())
        assert events[-1].error_kind == "cancelled"

    async def test_cancel_before_start(self, orchestrator, fake_crawl, fake_gateway):
        cancel = asyncio.Event()
        cancel.set()

        with pytest.raises(GenerationCancelledError):
            await orchestrator.run(make_request(), cancel_event=cancel)

        assert fake_crawl.calls == []
        assert fake_gateway.requests == []


class TestParallelChapters:
    """Concurrent chapter calls keep plan order."""

    async def test_progress_stays_in_plan_order(
        self, fake_gateway, output_store, fake_crawl, record, events
    ):
        fake_gateway.delays = {1: 0.05, 2: 0.0, 3: 0.02}
        orchestrator = GenerationOrchestrator(
            gateway=fake_gateway, store=output_store, crawl=fake_crawl, parallel_chapters=3
        )

        result = await orchestrator.run(make_request(), record)

        chapter_events = [e.current_chapter for e in events if e.current_chapter is not None]
        assert chapter_events == [1, 2, 3]
        assert [c.title for c in result.chapters[1:]] == [
            "Chapter 1: App",
            "Chapter 2: Router",
            "Chapter 3: Store",
        ]

    async def test_parallel_failure_persists_nothing(
        self, fake_gateway, output_store, fake_crawl
    ):
        fake_gateway.replies["chapter"] = [GatewayError("boom")]
        orchestrator = GenerationOrchestrator(
            gateway=fake_gateway, store=output_store, crawl=fake_crawl, parallel_chapters=2
        )

        with pytest.raises(GatewayError):
            await orchestrator.run(make_request())

        assert output_store.list() == []


class TestBudgetSettings:
    """Budget settings from config.ini reach the prompts."""

    async def test_head_ratio_from_config(self, data_dir, fake_gateway, output_store):
        (data_dir / "config.ini").write_text(
            "[budget]\nmax_lines_per_file = 10\nhead_ratio = 0.5\n"
        )
        long_file = "\n".join(f"row{i}" for i in range(40))
        crawl = FakeCrawl(
            make_crawl_result(
                [
                    ("src/index.ts", long_file),
                    ("src/router.ts", "export class Router {}\n"),
                    ("src/store.ts", "export class Store {}\n"),
                ]
            )
        )
        orchestrator = GenerationOrchestrator(
            gateway=fake_gateway, store=output_store, crawl=crawl
        )

        await orchestrator.run(make_request())

        assert orchestrator.head_ratio == 0.5
        prompt = fake_gateway.prompts("abstractions")[0]
        assert "row4" in prompt
        assert "row35" in prompt
        assert "row5" not in prompt


class TestHelpers:
    """Module-level helpers."""

    def test_clean_chapter_content_adds_heading(self):
        assert clean_chapter_content("Body text", 2, "Store") == (
            "# Chapter 2: Store\n\nBody text\n"
        )

    def test_clean_chapter_content_unwraps_fence(self):
        wrapped = "```markdown\n# Chapter 1: App\n\nHi\n```"
        assert clean_chapter_content(wrapped, 1, "App") == "# Chapter 1: App\n\nHi\n"

    def test_progress_for_chapter(self):
        assert progress_for_chapter(0, 4) == 30
        assert progress_for_chapter(4, 4) == 90
        assert progress_for_chapter(0, 0) == 90

    def test_context_reducer_respects_target(self):
        """The reducer hands the renderer whatever the fixed text leaves over."""
        seen = []

        def render(allowance):
            seen.append(allowance)
            return "x" * 100 + "y" * (allowance or 0)

        reduce = context_reducer(render)
        reduced = reduce("ignored", 100)

        assert seen == [0, 250]
        assert len(reduced) == 350

    def test_relationship_listing_is_used_for_cross_references(self):
        from repodocs.generation.orchestrator import _relationship_listing

        abstractions = [Abstraction(0, "A", "a"), Abstraction(1, "B", "b"), Abstraction(2, "C", "c")]
        analysis = ProjectAnalysis(
            summary="s",
            relationships=(Relationship(0, 1, "Calls"), Relationship(1, 2, "Feeds")),
        )

        assert _relationship_listing(abstractions[0], abstractions, analysis) == (
            "- **A** Calls **B**"
        )
        assert _relationship_listing(abstractions[2], abstractions, analysis) == (
            "- **B** Feeds **C**"
        )
