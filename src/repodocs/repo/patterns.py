"""Curated include/exclude path categories and the glob classifier.

Paths are matched case-insensitively against glob rules:

- ``*`` matches within a single path segment
- ``?`` matches one character within a segment
- ``[abc]`` is a character class
- ``**/`` matches zero or more leading directories
- a trailing ``/**`` matches everything below a directory

Rules that do not start with ``**/`` are anchored at the repository root.
Exclusion always wins over inclusion, and a path matching no include rule
is excluded.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import lru_cache


@dataclass(frozen=True)
class PatternCategory:
    """A labelled group of glob rules."""

    label: str
    patterns: tuple[str, ...]
    description: str = ""


@dataclass(frozen=True)
class FilterDecision:
    """Outcome of classifying a single path."""

    included: bool
    category: str | None = None
    reason: str | None = None


def _ext(*extensions: str) -> tuple[str, ...]:
    return tuple(f"**/*.{extension}" for extension in extensions)


INCLUDED_CATEGORIES: list[PatternCategory] = [
    PatternCategory(
        "Web Development",
        _ext("html", "css", "scss", "sass", "less", "js", "jsx", "ts", "tsx"),
        "HTML, stylesheets and JavaScript/TypeScript sources",
    ),
    PatternCategory(
        "Backend",
        _ext("py", "java", "go", "rb", "php", "c", "cpp", "cs", "rs"),
        "Python, Java, Go, Ruby, PHP, C/C++, C# and Rust sources",
    ),
    PatternCategory(
        "Data & Configuration",
        _ext("json", "yaml", "yml", "xml", "toml", "ini", "env.example"),
        "Structured data and configuration files",
    ),
    PatternCategory(
        "Documentation",
        _ext("md", "mdx", "markdown", "txt", "rst", "adoc") + ("**/README",),
        "Markdown and plain text documentation",
    ),
    PatternCategory(
        "Mobile Development",
        _ext("swift", "kt", "m", "mm", "dart"),
        "iOS, Android and Flutter sources",
    ),
    PatternCategory(
        "Infrastructure",
        _ext("tf", "hcl")
        + ("**/Dockerfile", "**/docker-compose.yml", "**/docker-compose.yaml"),
        "Infrastructure as code and container definitions",
    ),
    PatternCategory(
        "Database",
        _ext("sql", "prisma", "mongodb", "graphql", "gql"),
        "Schemas and query files",
    ),
    PatternCategory(
        "Shell Scripts",
        _ext("sh", "bash", "zsh", "bat", "cmd", "ps1"),
        "Shell and batch automation scripts",
    ),
    PatternCategory(
        "Machine Learning",
        (
            "**/models/*.py",
            "**/nn/*.py",
            "**/torch/*.py",
            "**/tensorflow/*.py",
            "**/keras/*.py",
            "**/*.ipynb",
        ),
        "Model definitions and notebooks",
    ),
    PatternCategory("Smart Contracts", _ext("sol", "vy"), "Blockchain contracts"),
    PatternCategory(
        "System Programming", _ext("cu", "cuh", "asm", "s"), "CUDA and assembly sources"
    ),
    PatternCategory("Web Assembly", _ext("wat", "wasm"), "WebAssembly modules"),
    PatternCategory(
        "Serialization & RPC", _ext("proto", "avro", "thrift"), "Interface definition files"
    ),
]


EXCLUDED_CATEGORIES: list[PatternCategory] = [
    PatternCategory(
        "Test Files",
        (
            "test/*",
            "tests/*",
            "**/test/**",
            "**/tests/**",
            "**/__tests__/**",
            "**/*test.js",
            "**/*spec.js",
            "**/*test.ts",
            "**/*spec.ts",
        ),
        "Tests restate source logic and double API usage without adding understanding",
    ),
    PatternCategory(
        "Large Media Files",
        _ext(
            # video
            "mp4", "mov", "avi", "mkv", "webm", "flv", "wmv", "m4v", "mpeg", "mpg",
            "mpe", "vob", "qt", "swf",
            # audio
            "mp3", "wav", "flac", "aac", "ogg", "mp2", "m4a",
            # images
            "png", "jpg", "jpeg", "gif", "webp", "svg", "ico", "tiff", "bmp", "raw",
            "heic", "heif", "cr2", "nef", "tga", "dicom", "eps", "jfif", "exif", "pcx",
            "jp2", "apng", "avif",
            # design
            "psd", "ai", "xd", "sketch", "fig", "xcf", "pdf",
            # 3D
            "blend", "fbx", "obj", "stl", "3ds", "dae", "glb", "gltf", "3dm", "ply", "max",
            # archives
            "iso", "zip", "tar", "gz", "rar", "7z", "bz2", "xz", "tgz",
        ),
        "Binary media holds no readable code and wastes API quota",
    ),
    PatternCategory(
        "Binary Datasets",
        _ext("bin", "dat", "pkl", "h5", "hdf5"),
        "Large data files without readable code",
    ),
    PatternCategory(
        "Node Modules",
        ("**/node_modules/**", "**/node_module/**"),
        "Third-party packages; tens of thousands of files",
    ),
    PatternCategory(
        "Package Files",
        ("**/package-lock.json", "**/yarn.lock", "**/pnpm-lock.yaml"),
        "Generated lockfiles, often thousands of lines long",
    ),
    PatternCategory(
        "Minified Files",
        ("**/*.min.js", "**/*.min.css"),
        "Single-line bundles with unminified counterparts",
    ),
    PatternCategory(
        "Build Output",
        (
            "**/dist/**",
            "**/build/**",
            "**/.next/**",
            "**/out/**",
            "**/output/**",
            "**/target/**",
            "**/.output/**",
            "**/_build/**",
        ),
        "Generated files that are not part of the source",
    ),
    PatternCategory(
        "Git Files",
        (
            "**/.git/**",
            "**/.gitignore",
            "**/.gitattributes",
            "**/.gitmodules",
            "**/.github/**",
        ),
        "Repository metadata and history",
    ),
    PatternCategory(
        "Dependency Dirs",
        ("**/bower_components/**", "**/.pnp/**", "**/jspm_packages/**"),
        "Vendored third-party dependencies",
    ),
    PatternCategory(
        "Python Environments and Cache",
        (
            "**/.venv/**",
            "**/venv/**",
            "**/.env/**",
            "**/env/**",
            "**/.virtualenv/**",
            "**/virtualenv/**",
            "**/__pycache__/**",
            "**/*.py[cod]",
            "**/*.so",
            "**/*.egg",
            "**/*.egg-info/**",
            "**/.pytest_cache/**",
        ),
        "Virtual environments and compiled artifacts",
    ),
    PatternCategory(
        "Editor Config",
        ("**/.vscode/**", "**/.idea/**", "**/.eclipse/**", "**/.nbproject/**", "**/.sublime-*"),
        "IDE settings",
    ),
    PatternCategory(
        "Coverage Reports",
        ("**/coverage/**", "**/.coverage", "**/.nyc_output/**", "**/htmlcov/**"),
        "Generated coverage reports",
    ),
    PatternCategory(
        "Logs",
        ("**/logs/**", "**/log/**", "**/*.log", "**/*.log.*"),
        "Runtime logs",
    ),
    PatternCategory(
        "Temp Files",
        (
            "**/tmp/**",
            "**/temp/**",
            "**/.tmp/**",
            "**/.temp/**",
            "**/*.tmp",
            "**/*.temp",
            "**/.cache/**",
            "**/cache/**",
        ),
        "Temporary and cache files",
    ),
    PatternCategory(
        "CI Files",
        ("**/.travis.yml", "**/.gitlab-ci.yml", "**/.circleci/**", "**/.github/workflows/**"),
        "CI/CD configuration without application logic",
    ),
    PatternCategory(
        "TypeScript Maps",
        ("**/*.js.map", "**/*.d.ts.map"),
        "Source maps used only for debugging",
    ),
    PatternCategory(
        "Frontend Build Caches",
        (
            "**/node_modules/.cache/**",
            "**/.sass-cache/**",
            "**/.parcel-cache/**",
            "**/webpack-stats.json",
            "**/.turbo/**",
            "**/storybook-static/**",
        ),
        "Build tool caches",
    ),
    PatternCategory(
        "Backend Build Files",
        (
            "**/.gradle/**",
            "**/.m2/**",
            "**/vendor/**",
            "**/__snapshots__/**",
            "**/Pods/**",
            "**/.serverless/**",
            "**/venv.bak/**",
            "**/.rts2_cache_*/**",
        ),
        "Framework build artifacts and vendored code",
    ),
    PatternCategory(
        "Env & Config Files",
        (
            "**/.env.local",
            "**/.env.development",
            "**/.env.production",
            "**/.direnv/**",
            "**/terraform.tfstate*",
            "**/cdk.out/**",
            "**/.terraform/**",
        ),
        "Environment files that often hold secrets",
    ),
    PatternCategory(
        "Editor & OS Files",
        (
            "**/.settings/**",
            "**/.project",
            "**/.classpath",
            "**/*.swp",
            "**/*~",
            "**/*.bak",
            "**/.DS_Store",
            "**/Thumbs.db",
        ),
        "Editor and operating system metadata",
    ),
    PatternCategory(
        "Compiled Binaries",
        _ext("class", "o", "dll", "exe", "obj", "apk", "ipa"),
        "Binaries generated from source",
    ),
]


# =============================================================================
# Glob Matching
# =============================================================================


@lru_cache(maxsize=4096)
def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Compile a glob rule into an anchored, case-insensitive regex."""
    parts: list[str] = []
    i = 0
    n = len(pattern)
    while i < n:
        if pattern.startswith("**/", i):
            parts.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("/**", i) and i + 3 == n:
            parts.append("/.*")
            i += 3
        elif pattern.startswith("**", i):
            parts.append(".*")
            i += 2
        elif pattern[i] == "*":
            parts.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            parts.append("[^/]")
            i += 1
        elif pattern[i] == "[":
            close = pattern.find("]", i + 1)
            if close == -1:
                parts.append(re.escape("["))
                i += 1
            else:
                stuff = pattern[i + 1 : close].replace("\\", "\\\\")
                if stuff.startswith("!"):
                    stuff = "^" + stuff[1:]
                elif stuff.startswith("^"):
                    stuff = "\\" + stuff
                parts.append("[" + stuff + "]")
                i = close + 1
        else:
            parts.append(re.escape(pattern[i]))
            i += 1
    return re.compile("^" + "".join(parts) + "$", re.IGNORECASE)


def matches_pattern(path: str, patterns: tuple[str, ...] | list[str]) -> bool:
    """Check whether a repository-relative path matches any glob rule."""
    normalized = path.replace("\\", "/").lstrip("/")
    return any(glob_to_regex(pattern).match(normalized) for pattern in patterns)


def _first_match(path: str, categories: list[PatternCategory]) -> PatternCategory | None:
    for category in categories:
        if matches_pattern(path, category.patterns):
            return category
    return None


@dataclass
class PatternSet:
    """Include and exclude category lists used by :func:`classify`."""

    include: list[PatternCategory] = field(default_factory=lambda: list(INCLUDED_CATEGORIES))
    exclude: list[PatternCategory] = field(default_factory=lambda: list(EXCLUDED_CATEGORIES))

    def classify(self, path: str) -> FilterDecision:
        """Classify a path. Exclusion rules are checked first and always win."""
        excluded_by = _first_match(path, self.exclude)
        if excluded_by is not None:
            return FilterDecision(
                included=False, category=excluded_by.label, reason=excluded_by.description
            )

        included_by = _first_match(path, self.include)
        if included_by is not None:
            return FilterDecision(included=True, category=included_by.label)

        return FilterDecision(included=False, reason="No include rule matched")


def build_pattern_set(
    include_labels: list[str] | None = None,
    exclude_labels: list[str] | None = None,
    extra_includes: list[str] | None = None,
    extra_excludes: list[str] | None = None,
) -> PatternSet:
    """Build a PatternSet from category labels plus ad-hoc rules.

    Args:
        include_labels: Include categories to keep. None keeps all of them.
        exclude_labels: Exclude categories to keep. None keeps all of them.
        extra_includes: Additional include globs, grouped as "Custom".
        extra_excludes: Additional exclude globs, grouped as "Custom".

    Returns:
        PatternSet ready for classification.

    Raises:
        KeyError: If a label does not name a known category.
    """
    include = _select(INCLUDED_CATEGORIES, include_labels)
    exclude = _select(EXCLUDED_CATEGORIES, exclude_labels)
    if extra_includes:
        include.append(PatternCategory("Custom", tuple(extra_includes), "User supplied"))
    if extra_excludes:
        exclude.append(PatternCategory("Custom", tuple(extra_excludes), "User supplied"))
    return PatternSet(include=include, exclude=exclude)


def _select(categories: list[PatternCategory], labels: list[str] | None) -> list[PatternCategory]:
    if labels is None:
        return list(categories)
    by_label = {category.label: category for category in categories}
    return [by_label[label] for label in labels]


DEFAULT_PATTERN_SET = PatternSet()


def classify(path: str) -> FilterDecision:
    """Classify a path against the default category tables."""
    return DEFAULT_PATTERN_SET.classify(path)
