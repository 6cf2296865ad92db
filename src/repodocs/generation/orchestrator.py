"""Generation orchestrator for the documentation pipeline.

This module provides the GenerationOrchestrator class that turns a GitHub
repository into a tutorial, one stage at a time:

1. Crawling - List the repository tree and download the filtered files
2. Analyzing - Identify the core abstractions from budgeted file context
3. Mapping - Summarize the project and map relationships between abstractions
4. Ordering - Decide the narrative order of the abstractions
5. Writing - Write one chapter per abstraction, in plan order
6. Finalizing - Check diagrams, synthesize the overview and persist the project

Each stage starts only once the previous stage's output parsed cleanly. A
reply that cannot be parsed gets one corrective re-prompt; a second failure
ends the run. Nothing is persisted unless every chapter was written.
"""

import asyncio
import logging
import math
import re
from collections.abc import Awaitable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from itertools import islice
from typing import Any, Callable, Coroutine, Iterator, Optional, TypeVar

from repodocs.config import ConfigError, load_settings
from repodocs.constants.generation import (
    CHAPTER_MAX_TOKENS,
    DEFAULT_LANGUAGE,
    HEAD_RATIO,
    MAX_ABSTRACTIONS,
    MAX_CONTEXT_CHARS,
    MAX_LINES_PER_FILE,
    PARALLEL_CHAPTERS,
    PROGRESS_ANALYZING,
    PROGRESS_COMPLETE,
    PROGRESS_CRAWLING,
    PROGRESS_FINALIZING,
    PROGRESS_INITIALIZING,
    PROGRESS_MAPPING,
    PROGRESS_ORDERING,
    PROGRESS_WRITING_END,
    PROGRESS_WRITING_START,
)
from repodocs.constants.llm import CHARS_PER_TOKEN, DEFAULT_TEMPERATURE, MAX_TOKENS
from repodocs.errors import (
    GenerationCancelledError,
    NotFoundError,
    ParseError,
    RepoDocsError,
)
from repodocs.generation.budget import (
    BudgetMode,
    build_file_context,
    build_file_listing,
    fit_file_contents,
    format_file_contents,
    get_content_for_indices,
)
from repodocs.generation.mermaid import downgrade_invalid_diagrams
from repodocs.generation.models import Abstraction, Chapter, ProjectAnalysis, ProjectDoc
from repodocs.generation.overview import OverviewGenerator
from repodocs.generation.prompts import (
    SYSTEM_PROMPT,
    StagePrompt,
    build_analyze_relationships_prompt,
    build_identify_abstractions_prompt,
    build_order_chapters_prompt,
    build_write_chapter_prompt,
    with_format_correction,
)
from repodocs.generation.responses import (
    parse_abstractions,
    parse_chapter_order,
    parse_relationships,
)
from repodocs.llm.client import ContentReduction, LLMGateway, LLMRequest, PromptReducer
from repodocs.output.naming import create_chapter_filename, generate_project_slug
from repodocs.output.store import OutputStore
from repodocs.repo.crawler import CrawlResult, crawl_repository
from repodocs.repo.url_parser import parse_repo_url

logger = logging.getLogger(__name__)

T = TypeVar("T")


class GenerationStage(str, Enum):
    """States of a generation run. ``complete`` and ``error`` are terminal."""

    INITIALIZING = "initializing"
    CRAWLING = "crawling"
    ANALYZING = "analyzing"
    MAPPING = "mapping"
    ORDERING = "ordering"
    WRITING = "writing"
    FINALIZING = "finalizing"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class GenerationProgress:
    """Progress update during generation.

    Attributes:
        stage: Current pipeline stage.
        message: Human-readable progress message.
        progress: Percent complete, 0-100.
        current_chapter: 1-based chapter number while writing.
        total_chapters: Number of chapters in the plan.
        chapter_name: Abstraction the current chapter covers.
        error_kind: Error kind on the terminal ``error`` event.
    """

    stage: GenerationStage
    message: str
    progress: int
    current_chapter: int | None = None
    total_chapters: int | None = None
    chapter_name: str | None = None
    error_kind: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "stage": self.stage.value,
            "message": self.message,
            "progress": self.progress,
        }
        if self.current_chapter is not None:
            data["currentChapter"] = self.current_chapter
        if self.total_chapters is not None:
            data["totalChapters"] = self.total_chapters
        if self.chapter_name is not None:
            data["chapterName"] = self.chapter_name
        if self.error_kind is not None:
            data["errorKind"] = self.error_kind
        return data


@dataclass
class GenerationRequest:
    """Inputs of one generation run."""

    repo_url: str
    llm_provider: str
    llm_model: str
    llm_api_key: str | None = None
    llm_base_url: str | None = None
    github_token: str | None = None
    user_id: str | None = None
    linked_project_id: str | None = None
    language: str | None = None
    mode: BudgetMode = BudgetMode.TUTORIAL


@dataclass
class GenerationResult:
    """Result of a finished run.

    Attributes:
        project_name: Display name, the repository name.
        project_slug: Slug the project was saved under.
        chapters: Overview first, then chapters in plan order.
        total_cost: Summed cost of the run's model calls.
        partial: True when a failure left some chapters unwritten and
            partial persistence is enabled.
    """

    project_name: str
    project_slug: str
    chapters: list[Chapter] = field(default_factory=list)
    total_cost: float = 0.0
    partial: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "projectName": self.project_name,
            "projectSlug": self.project_slug,
            "chapters": [{"filename": c.filename, "title": c.title} for c in self.chapters],
        }


# Type alias for progress callback
ProgressCallback = Callable[[GenerationProgress], Coroutine[Any, Any, None]]

# (repo_url, token) -> CrawlResult
CrawlFunction = Callable[[str, Optional[str]], Awaitable[CrawlResult]]

# Renders a prompt whose variable content fits in the given number of
# characters; None means no limit beyond the configured budget.
PromptRenderer = Callable[[Optional[int]], str]

CHAPTER_HEADING_RE = "^#+\\s*Chapter\\s+{number}\\s*:"
WRAPPING_FENCE_RE = re.compile(r"^```(?:markdown|md)?[ \t]*\n([\s\S]*?)\n```\s*$")


def batched(iterable, n: int) -> Iterator[list]:
    """Batch an iterable into chunks of size n.

    Args:
        iterable: Items to batch.
        n: Batch size.

    Yields:
        Lists of up to n items.
    """
    it = iter(iterable)
    while batch := list(islice(it, n)):
        yield batch


def context_reducer(render: PromptRenderer) -> PromptReducer:
    """Build a self-healing reducer that re-renders a prompt with less context.

    The fixed part of the prompt (instructions, listings) is measured once by
    rendering with a zero allowance; a token target then leaves whatever
    remains for the file context.
    """
    fixed_chars = len(render(0))

    def reduce(prompt: str, target_tokens: int) -> str:
        allowance = int(target_tokens * CHARS_PER_TOKEN) - fixed_chars
        return render(max(allowance, 0))

    return reduce


def clean_chapter_content(content: str, chapter_number: int, name: str) -> str:
    """Unwrap a fenced reply and make sure the chapter opens with its heading."""
    content = content.strip()
    wrapped = WRAPPING_FENCE_RE.match(content)
    if wrapped:
        content = wrapped.group(1).strip()
    heading = re.compile(CHAPTER_HEADING_RE.format(number=chapter_number), re.IGNORECASE)
    if not heading.match(content):
        content = f"# Chapter {chapter_number}: {name}\n\n{content}"
    return content + "\n"


def progress_for_chapter(completed: int, total: int) -> int:
    """Percent complete after ``completed`` of ``total`` chapters."""
    if total <= 0:
        return PROGRESS_WRITING_END
    span = PROGRESS_WRITING_END - PROGRESS_WRITING_START
    return PROGRESS_WRITING_START + round(completed / total * span)


@dataclass
class _ChapterSlot:
    """One entry of the chapter plan with its precomputed filename."""

    number: int
    abstraction: Abstraction
    title: str
    filename: str


@dataclass
class _Run:
    """Mutable state of one run, threaded through the stage methods."""

    request: GenerationRequest
    project_name: str
    callback: ProgressCallback | None
    cancel_event: asyncio.Event | None
    stage: GenerationStage = GenerationStage.INITIALIZING
    progress: int = PROGRESS_INITIALIZING
    cost: float = 0.0


class GenerationOrchestrator:
    """Orchestrates the staged documentation pipeline.

    Args:
        gateway: LLM gateway shared by every call of the run.
        store: Output store the finished project is written to.
        crawl: Crawl function. Defaults to :func:`crawl_repository`.
        max_abstractions: Upper bound for stage one.
        max_lines_per_file: Line budget per file.
        head_ratio: Share of each line budget kept from the start of a file.
        max_context_chars: Aggregate context ceiling (0 = unlimited).
        chapter_max_tokens: Response cap for chapter calls.
        parallel_chapters: Concurrent chapter calls.
        allow_partial: Persist completed chapters when writing fails.
        temperature: Sampling temperature for every stage.
        language: Default output language.
    """

    def __init__(
        self,
        gateway: LLMGateway,
        store: OutputStore,
        crawl: CrawlFunction | None = None,
        max_abstractions: int | None = None,
        max_lines_per_file: int | None = None,
        head_ratio: float | None = None,
        max_context_chars: int | None = None,
        chapter_max_tokens: int | None = None,
        parallel_chapters: int | None = None,
        allow_partial: bool | None = None,
        temperature: float | None = None,
        language: str | None = None,
        overview_generator: OverviewGenerator | None = None,
    ):
        try:
            settings = load_settings()
            budget = settings.budget
            generation = settings.generation
            defaults = {
                "max_abstractions": budget.max_abstractions,
                "max_lines_per_file": budget.max_lines_per_file,
                "head_ratio": budget.head_ratio,
                "max_context_chars": budget.max_context_chars,
                "chapter_max_tokens": generation.chapter_max_tokens,
                "parallel_chapters": generation.parallel_chapters,
                "allow_partial": generation.allow_partial,
                "temperature": generation.temperature,
                "language": generation.language,
                "max_tokens": settings.llm.max_tokens,
            }
        except (ValueError, OSError, ConfigError):
            defaults = {
                "max_abstractions": MAX_ABSTRACTIONS,
                "max_lines_per_file": MAX_LINES_PER_FILE,
                "head_ratio": HEAD_RATIO,
                "max_context_chars": MAX_CONTEXT_CHARS,
                "chapter_max_tokens": CHAPTER_MAX_TOKENS,
                "parallel_chapters": PARALLEL_CHAPTERS,
                "allow_partial": False,
                "temperature": DEFAULT_TEMPERATURE,
                "language": DEFAULT_LANGUAGE,
                "max_tokens": MAX_TOKENS,
            }

        def pick(value, key):
            return defaults[key] if value is None else value

        self.gateway = gateway
        self.store = store
        self.crawl = crawl or crawl_repository
        self.max_abstractions = pick(max_abstractions, "max_abstractions")
        self.max_lines_per_file = pick(max_lines_per_file, "max_lines_per_file")
        self.head_ratio = pick(head_ratio, "head_ratio")
        self.max_context_chars = pick(max_context_chars, "max_context_chars")
        self.chapter_max_tokens = pick(chapter_max_tokens, "chapter_max_tokens")
        self.parallel_chapters = max(1, pick(parallel_chapters, "parallel_chapters"))
        self.allow_partial = pick(allow_partial, "allow_partial")
        self.temperature = pick(temperature, "temperature")
        self.language = pick(language, "language")
        self.max_tokens = defaults["max_tokens"]
        self.overview_generator = overview_generator or OverviewGenerator()

    async def run(
        self,
        request: GenerationRequest,
        progress_callback: ProgressCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> GenerationResult:
        """Run the complete pipeline for one repository.

        Exactly one terminal progress event is emitted: ``complete`` on
        success, ``error`` (with the error kind) on failure.

        Args:
            request: Repository and model selection.
            progress_callback: Optional async callback for progress updates.
            cancel_event: Setting it stops the run before its next model call.

        Returns:
            GenerationResult for the saved project.

        Raises:
            RepoDocsError: The error that ended the run, after the ``error``
                event was emitted. Cancellation raises GenerationCancelledError.
        """
        run = _Run(
            request=request,
            project_name=request.repo_url,
            callback=progress_callback,
            cancel_event=cancel_event,
        )
        try:
            parsed = parse_repo_url(request.repo_url)
            run.project_name = parsed.repo
            result = await self._run_pipeline(run, parsed.owner, parsed.repo, parsed.branch)
        except RepoDocsError as e:
            if isinstance(e, GenerationCancelledError):
                logger.info(f"Generation for {request.repo_url} cancelled during {run.stage.value}")
            else:
                logger.error(
                    f"Generation for {request.repo_url} failed during {run.stage.value}: {e.message}"
                )
            await self._emit_progress(
                run.callback,
                GenerationProgress(
                    stage=GenerationStage.ERROR,
                    message=e.message,
                    progress=run.progress,
                    error_kind=e.kind,
                ),
            )
            raise

        await self._emit_progress(
            run.callback,
            GenerationProgress(
                stage=GenerationStage.COMPLETE,
                message=(
                    f"Saved {len(result.chapters) - 1} chapters (partial)"
                    if result.partial
                    else "Documentation generated successfully!"
                ),
                progress=PROGRESS_COMPLETE,
                total_chapters=len(result.chapters) - 1,
            ),
        )
        return result

    async def _run_pipeline(
        self, run: _Run, owner: str, repo: str, branch: str | None
    ) -> GenerationResult:
        await self._enter(run, GenerationStage.INITIALIZING, PROGRESS_INITIALIZING, "Starting...")

        await self._enter(
            run, GenerationStage.CRAWLING, PROGRESS_CRAWLING, f"Crawling {owner}/{repo}..."
        )
        crawl_result = await self.crawl(run.request.repo_url, run.request.github_token)
        if crawl_result.error is not None:
            raise crawl_result.error
        files = [(f.path, f.content) for f in crawl_result.files]
        if not files:
            raise NotFoundError(f"No documentable files found in {owner}/{repo}")
        if crawl_result.stats.default_branch:
            branch = branch or crawl_result.stats.default_branch
        logger.info(f"Crawled {len(files)} files from {owner}/{repo}")

        await self._enter(
            run,
            GenerationStage.ANALYZING,
            PROGRESS_ANALYZING,
            f"Identifying core abstractions in {len(files)} files...",
        )
        abstractions = await self._identify_abstractions(run, files)

        await self._enter(
            run,
            GenerationStage.MAPPING,
            PROGRESS_MAPPING,
            f"Analyzing relationships between {len(abstractions)} abstractions...",
        )
        analysis = await self._analyze_relationships(run, files, abstractions)

        await self._enter(
            run, GenerationStage.ORDERING, PROGRESS_ORDERING, "Determining chapter order..."
        )
        plan = await self._order_chapters(run, abstractions, analysis)

        slots = self._plan_slots(abstractions, plan)
        await self._enter(
            run,
            GenerationStage.WRITING,
            PROGRESS_WRITING_START,
            f"Writing {len(slots)} chapters...",
        )
        partial = False
        try:
            chapters = await self._write_chapters(run, files, abstractions, analysis, slots)
        except _ChapterFailure as failure:
            if not self.allow_partial or not failure.completed or failure.cancelled:
                raise failure.error from None
            logger.warning(
                f"Writing failed after {len(failure.completed)} of {len(slots)} chapters, "
                f"saving them: {failure.error.message}"
            )
            chapters = failure.completed
            partial = True

        await self._enter(
            run,
            GenerationStage.FINALIZING,
            PROGRESS_FINALIZING,
            "Combining chapters into final documentation...",
        )
        chapters = self._check_chapter_diagrams(chapters, abstractions, analysis)
        overview = self.overview_generator.generate(
            project_name=run.project_name,
            analysis=analysis,
            abstractions=abstractions,
            chapters=chapters,
            repo_url=run.request.repo_url,
        )
        all_chapters = [overview, *chapters]

        self._check_cancelled(run)
        doc = ProjectDoc(
            slug=generate_project_slug(owner, repo),
            project_name=run.project_name,
            repo_url=run.request.repo_url,
            created_at=datetime.now(timezone.utc).isoformat(),
            chapters=all_chapters,
            repo_owner=owner,
            repo_name=repo,
            branch=branch,
            user_id=run.request.user_id,
            llm_provider=run.request.llm_provider,
            llm_model=run.request.llm_model,
            linked_project_id=run.request.linked_project_id,
            total_cost=round(run.cost, 6),
        )
        self.store.save(doc)

        return GenerationResult(
            project_name=run.project_name,
            project_slug=doc.slug,
            chapters=all_chapters,
            total_cost=run.cost,
            partial=partial,
        )

    # =========================================================================
    # Stages
    # =========================================================================

    async def _identify_abstractions(
        self, run: _Run, files: Sequence[tuple[str, str]]
    ) -> list[Abstraction]:
        language = self._language(run)

        def render(allowance: int | None) -> str:
            limit = self.max_context_chars if allowance is None else max(allowance, 1)
            context = build_file_context(
                files, run.request.mode, self.max_lines_per_file, limit, self.head_ratio
            )
            return build_identify_abstractions_prompt(
                project_name=run.project_name,
                context=context.context,
                file_listing=build_file_listing(context.file_info),
                max_abstractions=self.max_abstractions,
                language=language,
            ).text

        budgeted = build_file_context(
            files,
            run.request.mode,
            self.max_lines_per_file,
            self.max_context_chars,
            self.head_ratio,
        )
        if budgeted.files_skipped:
            logger.warning(
                f"Context ceiling reached: {budgeted.files_included} files included, "
                f"{budgeted.files_skipped} skipped"
            )
        prompt = build_identify_abstractions_prompt(
            project_name=run.project_name,
            context=budgeted.context,
            file_listing=build_file_listing(budgeted.file_info),
            max_abstractions=self.max_abstractions,
            language=language,
        )
        abstractions = await self._structured_stage(
            run,
            prompt,
            lambda response: parse_abstractions(response, len(files)),
            context_reducer(render),
        )
        if len(abstractions) > self.max_abstractions:
            logger.warning(
                f"Model returned {len(abstractions)} abstractions, keeping the first "
                f"{self.max_abstractions}"
            )
            abstractions = abstractions[: self.max_abstractions]
        logger.info(f"Identified {len(abstractions)} abstractions")
        return abstractions

    async def _analyze_relationships(
        self,
        run: _Run,
        files: Sequence[tuple[str, str]],
        abstractions: Sequence[Abstraction],
    ) -> ProjectAnalysis:
        header = "Identified Abstractions:\n" + "".join(
            f"- Index {a.index}: {a.name} (Relevant file indices: "
            f"[{', '.join(str(i) for i in a.file_indices)}])\n  Description: {a.description}\n"
            for a in abstractions
        )
        indices = sorted({i for a in abstractions for i in a.file_indices})
        snippets = get_content_for_indices(
            files, indices, self.max_lines_per_file, self.head_ratio
        )
        language = self._language(run)

        def render(allowance: int | None) -> str:
            section = (
                format_file_contents(snippets)
                if allowance is None
                else fit_file_contents(snippets, allowance, self.head_ratio)
            )
            return build_analyze_relationships_prompt(
                project_name=run.project_name,
                context=f"{header}\nRelevant File Snippets:\n{section}",
                abstraction_listing=_abstraction_listing(abstractions),
                language=language,
            ).text

        prompt = build_analyze_relationships_prompt(
            project_name=run.project_name,
            context=f"{header}\nRelevant File Snippets:\n{format_file_contents(snippets)}",
            abstraction_listing=_abstraction_listing(abstractions),
            language=language,
        )
        analysis = await self._structured_stage(
            run,
            prompt,
            lambda response: parse_relationships(response, len(abstractions)),
            context_reducer(render),
        )
        logger.info(f"Mapped {len(analysis.relationships)} relationships")
        return analysis

    async def _order_chapters(
        self,
        run: _Run,
        abstractions: Sequence[Abstraction],
        analysis: ProjectAnalysis,
    ) -> list[int]:
        names = {a.index: a.name for a in abstractions}
        context = f"Project Summary:\n{analysis.summary}\n\nRelationships:\n" + "\n".join(
            f"- From {r.from_index} ({names[r.from_index]}) to {r.to_index} "
            f"({names[r.to_index]}): {r.label}"
            for r in analysis.relationships
        )
        prompt = build_order_chapters_prompt(
            project_name=run.project_name,
            abstraction_listing=_abstraction_listing(abstractions),
            context=context,
            language=self._language(run),
        )
        plan = await self._structured_stage(
            run,
            prompt,
            lambda response: parse_chapter_order(response, len(abstractions)),
            None,
        )
        logger.info(f"Chapter plan: {plan}")
        return plan

    async def _write_chapters(
        self,
        run: _Run,
        files: Sequence[tuple[str, str]],
        abstractions: Sequence[Abstraction],
        analysis: ProjectAnalysis,
        slots: list[_ChapterSlot],
    ) -> list[Chapter]:
        """Write every chapter in plan order.

        With ``parallel_chapters`` > 1 the calls of a batch run concurrently
        and results are awaited in plan order, so progress events keep that
        order regardless of which call finishes first. Concurrent chapters
        only see the titles of earlier chapters, not their text.

        Raises:
            _ChapterFailure: Wrapping the first error, with the chapters
                completed before it.
        """
        listing = "\n".join(
            f"{slot.number}. [{slot.abstraction.name}]({slot.filename})" for slot in slots
        )
        total = len(slots)
        chapters: list[Chapter] = []

        if self.parallel_chapters == 1:
            for slot in slots:
                previous = "\n---\n".join(chapter.content for chapter in chapters)
                try:
                    await self._emit_chapter_progress(run, slot, total, started=True)
                    chapter = await self._write_chapter(
                        run, files, abstractions, analysis, slot, listing, previous
                    )
                except RepoDocsError as e:
                    raise _ChapterFailure(e, chapters) from e
                chapters.append(chapter)
                await self._emit_chapter_progress(run, slot, total, started=False)
            return chapters

        semaphore = asyncio.Semaphore(self.parallel_chapters)

        async def write(slot: _ChapterSlot) -> Chapter:
            async with semaphore:
                earlier = "\n".join(
                    f"Chapter {s.number}: {s.abstraction.name} ({s.filename})"
                    for s in slots[: slot.number - 1]
                )
                return await self._write_chapter(
                    run, files, abstractions, analysis, slot, listing, earlier
                )

        for batch in batched(slots, self.parallel_chapters):
            tasks = [asyncio.create_task(write(slot)) for slot in batch]
            try:
                for slot, task in zip(batch, tasks):
                    chapter = await task
                    chapters.append(chapter)
                    await self._emit_chapter_progress(run, slot, total, started=False)
            except RepoDocsError as e:
                raise _ChapterFailure(e, chapters) from e
            finally:
                for task in tasks:
                    if not task.done():
                        task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
        return chapters

    async def _write_chapter(
        self,
        run: _Run,
        files: Sequence[tuple[str, str]],
        abstractions: Sequence[Abstraction],
        analysis: ProjectAnalysis,
        slot: _ChapterSlot,
        chapter_listing: str,
        previous_chapters: str,
    ) -> Chapter:
        abstraction = slot.abstraction
        contents = get_content_for_indices(
            files, abstraction.file_indices, self.max_lines_per_file, self.head_ratio
        )
        relationship_listing = _relationship_listing(abstraction, abstractions, analysis)
        language = self._language(run)

        def render(allowance: int | None) -> str:
            if allowance is None:
                previous, file_context = previous_chapters, format_file_contents(contents)
            else:
                # The most recent chapter text matters most; keep the tail
                keep = min(len(previous_chapters), allowance // 3)
                previous = previous_chapters[len(previous_chapters) - keep :] if keep else ""
                file_context = fit_file_contents(
                    contents, allowance - len(previous), self.head_ratio
                )
            return build_write_chapter_prompt(
                project_name=run.project_name,
                chapter_num=slot.number,
                abstraction_name=abstraction.name,
                abstraction_description=abstraction.description,
                full_chapter_listing=chapter_listing,
                previous_chapters=previous,
                file_context=file_context,
                relationship_listing=relationship_listing,
                language=language,
            ).text

        content = await self._call(
            run, render(None), context_reducer(render), max_tokens=self.chapter_max_tokens
        )
        return Chapter(
            filename=slot.filename,
            title=slot.title,
            content=clean_chapter_content(content, slot.number, abstraction.name),
            order=slot.number - 1,
            abstractions_covered=(abstraction.name,),
            abstraction_index=abstraction.index,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _structured_stage(
        self,
        run: _Run,
        prompt: StagePrompt,
        parse: Callable[[str], T],
        reducer: PromptReducer | None,
    ) -> T:
        """Call the model and parse its reply, re-prompting once on a parse failure.

        Raises:
            ParseError: If the corrected reply cannot be parsed either.
        """
        response = await self._call(run, prompt.text, reducer)
        try:
            return parse(response)
        except ParseError as e:
            problem = e.message
            logger.warning(f"{run.stage.value}: unusable reply ({problem}), re-prompting once")

        corrected = with_format_correction(prompt, problem)
        suffix = corrected.text[len(prompt.text) :]
        corrected_reducer = None
        if reducer is not None:

            def corrected_reducer(text: str, target_tokens: int) -> str:
                return reducer(text, target_tokens) + suffix

        response = await self._call(run, corrected.text, corrected_reducer)
        return parse(response)

    async def _call(
        self,
        run: _Run,
        prompt: str,
        reducer: PromptReducer | None,
        max_tokens: int | None = None,
    ) -> str:
        """One model call with self-healing; raises the error it reports."""
        self._check_cancelled(run)
        request = LLMRequest(
            prompt=prompt,
            provider=run.request.llm_provider,
            model=run.request.llm_model,
            temperature=self.temperature,
            max_tokens=max_tokens or self.max_tokens,
            custom_api_key=run.request.llm_api_key,
            custom_base_url=run.request.llm_base_url,
            system_prompt=SYSTEM_PROMPT,
        )
        stage, progress = run.stage, run.progress

        async def on_reduced(reduction: ContentReduction) -> None:
            await self._emit_progress(
                run.callback,
                GenerationProgress(
                    stage=stage,
                    message=(
                        f"Prompt too large, reduced by {math.floor(reduction.reduction_percent)}% "
                        f"(attempt {reduction.attempt + 1})..."
                    ),
                    progress=progress,
                ),
            )

        result = await self.gateway.call_with_self_healing(
            request, reducer=reducer, on_content_reduced=on_reduced
        )
        if result.error is not None:
            raise result.error
        if result.response is not None and result.response.cost:
            run.cost += result.response.cost
        return result.content

    def _plan_slots(
        self, abstractions: Sequence[Abstraction], plan: Sequence[int]
    ) -> list[_ChapterSlot]:
        slots = []
        for position, index in enumerate(plan):
            abstraction = abstractions[index]
            title = f"Chapter {position + 1}: {abstraction.name}"
            slots.append(
                _ChapterSlot(
                    number=position + 1,
                    abstraction=abstraction,
                    title=title,
                    filename=create_chapter_filename(position, title),
                )
            )
        return slots

    def _check_chapter_diagrams(
        self,
        chapters: list[Chapter],
        abstractions: Sequence[Abstraction],
        analysis: ProjectAnalysis,
    ) -> list[Chapter]:
        """Replace chapter diagrams that fail validation with relationship text."""
        by_index = {a.index: a for a in abstractions}
        checked = []
        for chapter in chapters:
            abstraction = by_index.get(chapter.abstraction_index)
            fallback = (
                _relationship_listing(abstraction, abstractions, analysis)
                if abstraction
                else "- No relationships were identified."
            )
            content, replaced = downgrade_invalid_diagrams(chapter.content, fallback)
            if replaced:
                logger.warning(
                    f"{chapter.filename}: {replaced} invalid diagram(s) replaced with text"
                )
                chapter = Chapter(
                    filename=chapter.filename,
                    title=chapter.title,
                    content=content,
                    order=chapter.order,
                    abstractions_covered=chapter.abstractions_covered,
                    abstraction_index=chapter.abstraction_index,
                )
            checked.append(chapter)
        return checked

    def _language(self, run: _Run) -> str:
        return run.request.language or self.language

    def _check_cancelled(self, run: _Run) -> None:
        if run.cancel_event is not None and run.cancel_event.is_set():
            raise GenerationCancelledError()

    async def _enter(
        self, run: _Run, stage: GenerationStage, progress: int, message: str
    ) -> None:
        """Move to ``stage`` after checking for cancellation."""
        self._check_cancelled(run)
        run.stage = stage
        run.progress = progress
        logger.info(f"[{run.project_name}] {stage.value}: {message}")
        await self._emit_progress(
            run.callback, GenerationProgress(stage=stage, message=message, progress=progress)
        )

    async def _emit_chapter_progress(
        self, run: _Run, slot: _ChapterSlot, total: int, started: bool
    ) -> None:
        completed = slot.number - 1 if started else slot.number
        run.progress = progress_for_chapter(completed, total)
        verb = "Writing" if started else "Completed"
        await self._emit_progress(
            run.callback,
            GenerationProgress(
                stage=GenerationStage.WRITING,
                message=f"{verb} chapter {slot.number}/{total}: {slot.abstraction.name}",
                progress=run.progress,
                current_chapter=slot.number,
                total_chapters=total,
                chapter_name=slot.abstraction.name,
            ),
        )

    async def _emit_progress(
        self,
        callback: ProgressCallback | None,
        progress: GenerationProgress,
    ) -> None:
        """Emit a progress update if callback is provided.

        Args:
            callback: Optional progress callback.
            progress: Progress update to emit.
        """
        if callback:
            await callback(progress)


class _ChapterFailure(Exception):
    """Carries a writing-stage error together with the chapters finished before it."""

    def __init__(self, error: RepoDocsError, completed: list[Chapter]):
        super().__init__(error.message)
        self.error = error
        self.completed = list(completed)
        self.cancelled = isinstance(error, GenerationCancelledError)


def _abstraction_listing(abstractions: Sequence[Abstraction]) -> str:
    return "\n".join(f"- {a.index} # {a.name}" for a in abstractions)


def _relationship_listing(
    abstraction: Abstraction,
    abstractions: Sequence[Abstraction],
    analysis: ProjectAnalysis,
) -> str:
    """Relationships touching ``abstraction``, for cross-references."""
    names = {a.index: a.name for a in abstractions}
    lines = [
        f"- **{names[r.from_index]}** {r.label} **{names[r.to_index]}**"
        for r in analysis.relationships
        if abstraction.index in (r.from_index, r.to_index)
        and r.from_index in names
        and r.to_index in names
    ]
    return "\n".join(lines) if lines else "- No relationships were identified."
