"""Shared pytest fixtures for all tests.

Every test runs against a private data directory so settings, the output
store and the LLM query log never touch the user's home directory.
"""

import asyncio
import gc
import re

import pytest

from repodocs.api.deps import _reset_llm_instances, get_settings
from repodocs.config import load_settings
from repodocs.llm.client import LLMResponse, SelfHealingResult
from repodocs.output.store import OutputStore
from repodocs.repo.crawler import CrawlResult, CrawlStats, RepoFile

PROVIDER_ENV_VARS = (
    "ACTIVE_PROVIDER",
    "ACTIVE_MODEL",
    "GITHUB_TOKEN",
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "GEMINI_API_KEY",
    "GOOGLE_API_KEY",
    "GROQ_API_KEY",
    "DEEPSEEK_API_KEY",
    "OPENROUTER_API_KEY",
    "XAI_API_KEY",
    "AZURE_API_KEY",
    "AZURE_OPENAI_API_KEY",
)


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point REPODOCS_DATA_DIR at a temp directory and clear cached settings.

    Provider keys and the GitHub token are removed from the environment so
    tests see the same defaults on every machine.
    """
    data_dir = tmp_path / "repodocs-data"
    data_dir.mkdir()
    monkeypatch.setenv("REPODOCS_DATA_DIR", str(data_dir))
    for name in PROVIDER_ENV_VARS:
        monkeypatch.delenv(name, raising=False)

    load_settings.cache_clear()
    get_settings.cache_clear()
    _reset_llm_instances()

    yield data_dir

    load_settings.cache_clear()
    get_settings.cache_clear()
    _reset_llm_instances()
    gc.collect()


@pytest.fixture
def data_dir(isolated_settings):
    """The temp data directory configured for the current test."""
    return isolated_settings


# =============================================================================
# Pipeline fakes
# =============================================================================

REPO_FILES = (
    ("src/index.ts", "import { Router } from './router';\nexport const app = new Router();\n"),
    ("src/router.ts", "export class Router {\n  route(path: string) { return path; }\n}\n"),
    ("src/store.ts", "export class Store {\n  get(key: string) { return key; }\n}\n"),
)

ABSTRACTIONS_REPLY = """```yaml
- name: Router
  description: Sends each request to its handler.
  file_indices:
    - 1 # src/router.ts
- name: Store
  description: Keeps session state between requests.
  file_indices:
    - 2 # src/store.ts
- name: App
  description: Wires the router into an application.
  file_indices:
    - 0 # src/index.ts
    - 1 # src/router.ts
```"""

RELATIONSHIPS_REPLY = """```yaml
summary: |
  A tiny web framework.
relationships:
  - from_abstraction: 2 # App
    to_abstraction: 0 # Router
    label: "Creates"
  - from_abstraction: 0 # Router
    to_abstraction: 1 # Store
    label: "Reads sessions from"
```"""

ORDER_REPLY = """```yaml
- 2 # App
- 0 # Router
- 1 # Store
```"""

CHAPTER_PROMPT_RE = re.compile(r'about "(?P<name>.+?)"\. This is Chapter (?P<number>\d+)\.')


def prompt_stage(prompt: str) -> str:
    """Which pipeline stage a prompt belongs to."""
    if "Write a beginner-friendly tutorial chapter" in prompt:
        return "chapter"
    if "Here are the core abstractions of the project" in prompt:
        return "relationships"
    if "Here are the abstractions of the project" in prompt:
        return "order"
    return "abstractions"


class FakeGateway:
    """Scripted stand-in for LLMGateway.

    Each stage answers with a canned reply unless ``replies`` queues
    overrides for it. A queued exception is reported as the call's error.
    ``delays`` maps chapter numbers to seconds to sleep before replying.
    """

    def __init__(self, cost: float = 0.01):
        self.cost = cost
        self.replies: dict[str, list] = {}
        self.delays: dict[int, float] = {}
        self.requests = []
        self.on_call = None

    def prompts(self, stage: str) -> list[str]:
        return [r.prompt for r in self.requests if prompt_stage(r.prompt) == stage]

    def default_reply(self, stage: str, prompt: str) -> str:
        if stage == "abstractions":
            return ABSTRACTIONS_REPLY
        if stage == "relationships":
            return RELATIONSHIPS_REPLY
        if stage == "order":
            return ORDER_REPLY
        match = CHAPTER_PROMPT_RE.search(prompt)
        return f"# Chapter {match['number']}: {match['name']}\n\nAbout {match['name']}."

    async def call_with_self_healing(
        self, request, reducer=None, max_attempts=None, on_content_reduced=None
    ):
        self.requests.append(request)
        stage = prompt_stage(request.prompt)
        if self.on_call is not None:
            self.on_call(stage, request.prompt)
        if stage == "chapter":
            number = int(CHAPTER_PROMPT_RE.search(request.prompt)["number"])
            await asyncio.sleep(self.delays.get(number, 0))

        queued = self.replies.get(stage)
        reply = queued.pop(0) if queued else self.default_reply(stage, request.prompt)
        if isinstance(reply, Exception):
            return SelfHealingResult(
                content="",
                attempts=1,
                was_reduced=False,
                original_tokens=1,
                final_tokens=1,
                error=reply,
            )
        return SelfHealingResult(
            content=reply,
            attempts=1,
            was_reduced=False,
            original_tokens=1,
            final_tokens=1,
            response=LLMResponse(content=reply, cost=self.cost),
        )


class FakeCrawl:
    """Crawl function returning a fixed result and recording its calls."""

    def __init__(self, result: CrawlResult):
        self.result = result
        self.calls = []

    async def __call__(self, repo_url, token=None):
        self.calls.append((repo_url, token))
        return self.result


def make_crawl_result(files=REPO_FILES) -> CrawlResult:
    repo_files = [RepoFile(path, content, len(content), "typescript") for path, content in files]
    stats = CrawlStats(default_branch="main")
    for repo_file in repo_files:
        stats.record_download(repo_file)
    return CrawlResult(files=repo_files, stats=stats)


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def fake_crawl():
    return FakeCrawl(make_crawl_result())


@pytest.fixture
def output_store(tmp_path):
    return OutputStore(root=tmp_path / "docs-output", staging_suffix=".building")
