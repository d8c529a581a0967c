"""codeground configuration loader.

Priority (high → low):
  1. CLI flags                 (handled at call site, not in this module)
  2. Environment variables     (CODEGROUND_*; see _ENV_OVERRIDES)
  3. Per-project codeground.yaml  (current working directory)
  4. Global ~/.codeground/config.yaml  (defaults only, no API keys)
  5. Hardcoded defaults

Global config must never contain API keys or tokens; use environment variables
(OPENAI_API_KEY, GIT_TOKEN, ...) instead.
All YAML reads use yaml.safe_load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".codeground"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "codeground.yaml"

# Key names that look like credentials; forbidden in the global config.
# Does NOT match legitimate keys like token_budget, reserved_tokens, max_tokens.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    [
        "storage",
        "embedding",
        "vector_db",
        "chunking",
        "scheduler",
        "retrieval",
        "generation",
        "logging",
    ]
)

_LOG_LEVELS: frozenset[str] = frozenset(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file or environment variable holds an invalid value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class StorageCfg:
    """Local clone storage (codeground.yaml: storage:).

    Attributes:
        repos_dir: Directory holding one ``<owner>/<repo>`` clone per repository.
        repo_list: Newline-delimited list of known repository URLs.
        default_repos: Written to *repo_list* when the file does not exist yet.
    """

    repos_dir: str = "data/repositories"
    repo_list: str = "data/known-repositories.txt"
    default_repos: list[str] = field(default_factory=list)


@dataclass
class EmbeddingCfg:
    """Embedding model configuration (codeground.yaml: embedding:)."""

    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536
    max_chars: int = 8_000
    mock: bool = False  # force the deterministic offline embedding
    num_retries: int = 2


@dataclass
class VectorDbCfg:
    """Vector index configuration (codeground.yaml: vector_db:).

    Attributes:
        locations: SQLite database paths tried in order; ``:memory:`` is allowed.
        collections: Collections created by ensure_collections(); the first one
            holds code embeddings.
        max_retries: Attempts made by ensure_collections() before mock mode.
        retry_delay: Base backoff in seconds, doubled on every attempt.
        allow_mock: When False, an unreachable index raises instead of degrading.
    """

    locations: list[str] = field(default_factory=lambda: ["data/vectors.db"])
    collections: list[str] = field(default_factory=lambda: ["code_embeddings"])
    max_retries: int = 3
    retry_delay: float = 1.0
    allow_mock: bool = True

    @property
    def code_collection(self) -> str:
        return self.collections[0]


@dataclass
class ChunkingCfg:
    """Chunk size bound and sliding-window overlap (codeground.yaml: chunking:)."""

    max_chunk_size: int = 8_000
    overlap: float = 0.10


@dataclass
class SchedulerCfg:
    """Ingestion scheduler configuration (codeground.yaml: scheduler:).

    Attributes:
        concurrency: Worker threads processing repositories in parallel.
        stage_timeout: Deadline in seconds for clone and parse; chunking and
            each embedding batch get half of it.
        init_timeout: Deadline for vector index initialisation.
        upsert_timeout: Deadline for each upsert call.
        batch_size: Chunks embedded and stored per batch.
        incremental: Keep existing points and overwrite by deterministic ID.
        fail_fast: Abort the remaining batches of a job on the first failure.
        reconcile: Delete points of this repository not produced by the run.
        update_interval: Seconds between recurring update runs.
        initial_delay: Seconds before the first recurring run.
        max_wait: Seconds update_all() waits before reporting a timeout.
        git_timeout: Deadline for each git subprocess.
        primary_branch: First branch tried by pull.
        secondary_branch: Fallback branch tried by pull.
    """

    concurrency: int = 2
    stage_timeout: float = 300.0
    init_timeout: float = 30.0
    upsert_timeout: float = 30.0
    batch_size: int = 50
    incremental: bool = True
    fail_fast: bool = False
    reconcile: bool = True
    update_interval: float = 3_600.0
    initial_delay: float = 5.0
    max_wait: float = 1_800.0
    git_timeout: float = 120.0
    primary_branch: str = "main"
    secondary_branch: str = "master"


@dataclass
class RetrievalCfg:
    """Question-time retrieval configuration (codeground.yaml: retrieval:).

    Attributes:
        limit: Snippets injected into an enhanced question.
        min_similarity: Cosine similarity a candidate must reach.
        diversity_margin: Extra similarity required for a second snippet
            from an already-included file.
        token_budget: Total prompt budget in estimated tokens.
        reserved_tokens: Part of the budget kept for the system prompt.
        default_repository: Used when a question refers to "this project".
    """

    limit: int = 3
    min_similarity: float = 0.65
    diversity_margin: float = 0.10
    token_budget: int = 3_000
    reserved_tokens: int = 500
    default_repository: str | None = None


@dataclass
class GenerationCfg:
    """Chat completion configuration (codeground.yaml: generation:)."""

    model: str = "openai/gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int = 500
    num_retries: int = 3


@dataclass
class LoggingCfg:
    """Logging configuration (codeground.yaml: logging:)."""

    level: str = "INFO"


@dataclass
class CodegroundConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    storage: StorageCfg = field(default_factory=StorageCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    vector_db: VectorDbCfg = field(default_factory=VectorDbCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    scheduler: SchedulerCfg = field(default_factory=SchedulerCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    generation: GenerationCfg = field(default_factory=GenerationCfg)
    logging: LoggingCfg = field(default_factory=LoggingCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  Credentials must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}'; ignored.",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: CodegroundConfig) -> None:
    """Raise ConfigError for values the pipeline cannot run with."""
    if cfg.scheduler.concurrency < 1:
        raise ConfigError(f"scheduler.concurrency must be >= 1, got {cfg.scheduler.concurrency}")
    if cfg.scheduler.batch_size < 1:
        raise ConfigError(f"scheduler.batch_size must be >= 1, got {cfg.scheduler.batch_size}")
    if cfg.scheduler.stage_timeout <= 0:
        raise ConfigError(
            f"scheduler.stage_timeout must be > 0, got {cfg.scheduler.stage_timeout}"
        )
    if cfg.chunking.max_chunk_size < 1:
        raise ConfigError(
            f"chunking.max_chunk_size must be >= 1, got {cfg.chunking.max_chunk_size}"
        )
    if not 0.0 <= cfg.chunking.overlap < 1.0:
        raise ConfigError(f"chunking.overlap must be in [0.0, 1.0), got {cfg.chunking.overlap}")
    if cfg.embedding.dimensions < 1:
        raise ConfigError(f"embedding.dimensions must be >= 1, got {cfg.embedding.dimensions}")
    if not cfg.vector_db.locations:
        raise ConfigError("vector_db.locations must name at least one database location")
    if not cfg.vector_db.collections:
        raise ConfigError("vector_db.collections must name at least one collection")
    if cfg.logging.level.upper() not in _LOG_LEVELS:
        raise ConfigError(
            f"logging.level must be one of {', '.join(sorted(_LOG_LEVELS))}, "
            f"got '{cfg.logging.level}'"
        )


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _parse_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"{name} must be a boolean (true/false), got '{value}'")


def _str_list(value: Any, name: str) -> list[str]:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, list):
        return [str(v) for v in value]
    raise ConfigError(f"{name} must be a list of strings, got {type(value).__name__}")


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    raw = data.get(name) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config section '{name}' must be a mapping")
    return raw


def _cfg_from_dict(data: dict[str, Any]) -> CodegroundConfig:
    """Build a *CodegroundConfig* from a merged raw YAML dict."""
    cfg = CodegroundConfig()

    try:
        if "storage" in data:
            s = _section(data, "storage")
            cfg.storage = StorageCfg(
                repos_dir=str(s.get("repos_dir", cfg.storage.repos_dir)),
                repo_list=str(s.get("repo_list", cfg.storage.repo_list)),
                default_repos=_str_list(
                    s.get("default_repos", cfg.storage.default_repos), "storage.default_repos"
                ),
            )

        if "embedding" in data:
            e = _section(data, "embedding")
            cfg.embedding = EmbeddingCfg(
                model=str(e.get("model", cfg.embedding.model)),
                dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
                max_chars=int(e.get("max_chars", cfg.embedding.max_chars)),
                mock=_parse_bool(e.get("mock", cfg.embedding.mock), "embedding.mock"),
                num_retries=int(e.get("num_retries", cfg.embedding.num_retries)),
            )

        if "vector_db" in data:
            v = _section(data, "vector_db")
            cfg.vector_db = VectorDbCfg(
                locations=_str_list(
                    v.get("locations", cfg.vector_db.locations), "vector_db.locations"
                ),
                collections=_str_list(
                    v.get("collections", cfg.vector_db.collections), "vector_db.collections"
                ),
                max_retries=int(v.get("max_retries", cfg.vector_db.max_retries)),
                retry_delay=float(v.get("retry_delay", cfg.vector_db.retry_delay)),
                allow_mock=_parse_bool(
                    v.get("allow_mock", cfg.vector_db.allow_mock), "vector_db.allow_mock"
                ),
            )

        if "chunking" in data:
            c = _section(data, "chunking")
            cfg.chunking = ChunkingCfg(
                max_chunk_size=int(c.get("max_chunk_size", cfg.chunking.max_chunk_size)),
                overlap=float(c.get("overlap", cfg.chunking.overlap)),
            )

        if "scheduler" in data:
            sc = _section(data, "scheduler")
            d = cfg.scheduler
            cfg.scheduler = SchedulerCfg(
                concurrency=int(sc.get("concurrency", d.concurrency)),
                stage_timeout=float(sc.get("stage_timeout", d.stage_timeout)),
                init_timeout=float(sc.get("init_timeout", d.init_timeout)),
                upsert_timeout=float(sc.get("upsert_timeout", d.upsert_timeout)),
                batch_size=int(sc.get("batch_size", d.batch_size)),
                incremental=_parse_bool(
                    sc.get("incremental", d.incremental), "scheduler.incremental"
                ),
                fail_fast=_parse_bool(sc.get("fail_fast", d.fail_fast), "scheduler.fail_fast"),
                reconcile=_parse_bool(sc.get("reconcile", d.reconcile), "scheduler.reconcile"),
                update_interval=float(sc.get("update_interval", d.update_interval)),
                initial_delay=float(sc.get("initial_delay", d.initial_delay)),
                max_wait=float(sc.get("max_wait", d.max_wait)),
                git_timeout=float(sc.get("git_timeout", d.git_timeout)),
                primary_branch=str(sc.get("primary_branch", d.primary_branch)),
                secondary_branch=str(sc.get("secondary_branch", d.secondary_branch)),
            )

        if "retrieval" in data:
            r = _section(data, "retrieval")
            cfg.retrieval = RetrievalCfg(
                limit=int(r.get("limit", cfg.retrieval.limit)),
                min_similarity=float(r.get("min_similarity", cfg.retrieval.min_similarity)),
                diversity_margin=float(
                    r.get("diversity_margin", cfg.retrieval.diversity_margin)
                ),
                token_budget=int(r.get("token_budget", cfg.retrieval.token_budget)),
                reserved_tokens=int(r.get("reserved_tokens", cfg.retrieval.reserved_tokens)),
                default_repository=r.get("default_repository") or cfg.retrieval.default_repository,
            )

        if "generation" in data:
            g = _section(data, "generation")
            cfg.generation = GenerationCfg(
                model=str(g.get("model", cfg.generation.model)),
                temperature=float(g.get("temperature", cfg.generation.temperature)),
                max_tokens=int(g.get("max_tokens", cfg.generation.max_tokens)),
                num_retries=int(g.get("num_retries", cfg.generation.num_retries)),
            )

        if "logging" in data:
            lg = _section(data, "logging")
            cfg.logging = LoggingCfg(level=str(lg.get("level", cfg.logging.level)).upper())
    except (TypeError, ValueError) as exc:
        if isinstance(exc, ConfigError):
            raise
        raise ConfigError(f"Invalid config value: {exc}") from exc

    return cfg


def _set(section: str, attr: str, convert: Callable[[str, str], Any]):
    def _apply(cfg: CodegroundConfig, raw: str, name: str) -> None:
        setattr(getattr(cfg, section), attr, convert(raw, name))

    return _apply


def _as_int(raw: str, name: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got '{raw}'") from None


def _as_float(raw: str, name: str) -> float:
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got '{raw}'") from None


def _as_str(raw: str, name: str) -> str:
    return raw


_ENV_OVERRIDES: dict[str, Callable[[CodegroundConfig, str, str], None]] = {
    "CODEGROUND_STAGE_TIMEOUT": _set("scheduler", "stage_timeout", _as_float),
    "CODEGROUND_CONCURRENCY": _set("scheduler", "concurrency", _as_int),
    "CODEGROUND_UPDATE_INTERVAL": _set("scheduler", "update_interval", _as_float),
    "CODEGROUND_BATCH_SIZE": _set("scheduler", "batch_size", _as_int),
    "CODEGROUND_INCREMENTAL": _set("scheduler", "incremental", _parse_bool),
    "CODEGROUND_FAIL_FAST": _set("scheduler", "fail_fast", _parse_bool),
    "CODEGROUND_MIN_SIMILARITY": _set("retrieval", "min_similarity", _as_float),
    "CODEGROUND_TOKEN_BUDGET": _set("retrieval", "token_budget", _as_int),
    "CODEGROUND_EMBEDDING_MODEL": _set("embedding", "model", _as_str),
    "CODEGROUND_GENERATION_MODEL": _set("generation", "model", _as_str),
    "CODEGROUND_MOCK_EMBEDDINGS": _set("embedding", "mock", _parse_bool),
    "CODEGROUND_VECTOR_DB": _set("vector_db", "locations", _str_list),
    "CODEGROUND_REPOS_DIR": _set("storage", "repos_dir", _as_str),
    "CODEGROUND_REPO_LIST": _set("storage", "repo_list", _as_str),
    "CODEGROUND_LOG_LEVEL": _set("logging", "level", lambda raw, _: raw.upper()),
}


def _apply_env_overrides(cfg: CodegroundConfig) -> CodegroundConfig:
    """Apply CODEGROUND_* environment variable overrides (layer 2)."""
    for name, apply in _ENV_OVERRIDES.items():
        if raw := os.environ.get(name):
            apply(cfg, raw, name)
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> CodegroundConfig:
    """Load and return a merged *CodegroundConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *codeground.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged *CodegroundConfig* with env var overrides applied.

    Raises:
        ConfigError: If the global config contains credential-like fields, or
            if any layer holds a value of the wrong type or out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)

    # Layer 3: env var overrides
    cfg = _apply_env_overrides(cfg)

    _validate(cfg)
    return cfg


def ensure_global_config(
    global_config_path: Path | None = None,
) -> Path:
    """Create ``~/.codeground/config.yaml`` with defaults if it does not exist.

    Creates the parent directory with mode 0o700 and the config file with
    mode 0o600 (owner-readable only).

    Args:
        global_config_path: Override path (for testing).

    Returns:
        Path to the global config file.
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        content = (
            "# codeground global configuration (defaults only).\n"
            "# NEVER store API keys or tokens here; use environment variables:\n"
            "#   export OPENAI_API_KEY=sk-...\n"
            "#   export GIT_TOKEN=ghp_...\n"
            "\n"
            "embedding:\n"
            "  model: openai/text-embedding-3-small\n"
            "\n"
            "generation:\n"
            "  model: openai/gpt-4o-mini\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target
