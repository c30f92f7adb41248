"""
Configuration Management for spacemind

Loads configuration from ~/.spacemind/config.json and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger("spacemind.common.config")

# Default config paths
CONFIG_DIR = Path.home() / ".spacemind"
CONFIG_PATH = CONFIG_DIR / "config.json"
LOGS_DIR = CONFIG_DIR / "logs"
STORE_PATH = CONFIG_DIR / "store.json"

PROVIDERS = ("google", "anthropic", "openai")


@dataclass
class LLMConfig:
    """Shared LLM provider configuration"""
    provider: str = "google"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-20250514"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    google_api_key: str = ""
    google_model: str = "gemini-2.5-flash"


@dataclass
class RetrieverConfig:
    """Retrieval and context assembly settings"""
    topk: int = 5
    specific_topk: int = 3  # when the query names a saved item
    excerpt_chars: int = 500


@dataclass
class MemoryConfig:
    """Space memory (one-shot digest) cache settings"""
    ttl_seconds: float = 300.0
    max_sample: int = 20
    recent_count: int = 5
    max_entries: int = 128
    sample_seed: Optional[int] = None


@dataclass
class SearchConfig:
    """Google Custom Search settings for web augmentation"""
    api_key: str = ""
    cx: str = ""
    num_results: int = 5
    timeout: float = 10.0


@dataclass
class StoreConfig:
    """Local node store settings"""
    path: str = str(STORE_PATH)


@dataclass
class SpacemindConfig:
    """Main spacemind configuration"""
    llm: LLMConfig = field(default_factory=LLMConfig)
    retriever: RetrieverConfig = field(default_factory=RetrieverConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    _env_sourced_keys: set = field(default_factory=set, repr=False)


def _parse_llm_config(data: dict) -> LLMConfig:
    """Parse llm section from config dict"""
    llm_data = data.get("llm", {})
    return LLMConfig(
        provider=llm_data.get("provider", "google"),
        anthropic_api_key=llm_data.get("anthropic_api_key", ""),
        anthropic_model=llm_data.get("anthropic_model", "claude-sonnet-4-20250514"),
        openai_api_key=llm_data.get("openai_api_key", ""),
        openai_model=llm_data.get("openai_model", "gpt-4o-mini"),
        google_api_key=llm_data.get("google_api_key", ""),
        google_model=llm_data.get("google_model", "gemini-2.5-flash"),
    )


def _parse_retriever_config(data: dict) -> RetrieverConfig:
    """Parse retriever section from config dict"""
    retriever_data = data.get("retriever", {})
    return RetrieverConfig(
        topk=retriever_data.get("topk", 5),
        specific_topk=retriever_data.get("specific_topk", 3),
        excerpt_chars=retriever_data.get("excerpt_chars", 500),
    )


def _parse_memory_config(data: dict) -> MemoryConfig:
    """Parse memory section from config dict"""
    memory_data = data.get("memory", {})
    return MemoryConfig(
        ttl_seconds=memory_data.get("ttl_seconds", 300.0),
        max_sample=memory_data.get("max_sample", 20),
        recent_count=memory_data.get("recent_count", 5),
        max_entries=memory_data.get("max_entries", 128),
        sample_seed=memory_data.get("sample_seed"),
    )


def _parse_search_config(data: dict) -> SearchConfig:
    """Parse search section from config dict"""
    search_data = data.get("search", {})
    return SearchConfig(
        api_key=search_data.get("api_key", ""),
        cx=search_data.get("cx", ""),
        num_results=search_data.get("num_results", 5),
        timeout=search_data.get("timeout", 10.0),
    )


def _parse_store_config(data: dict) -> StoreConfig:
    """Parse store section from config dict"""
    store_data = data.get("store", {})
    return StoreConfig(path=store_data.get("path", str(STORE_PATH)))


def load_config() -> SpacemindConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file (~/.spacemind/config.json)
    3. Default values
    """
    config = SpacemindConfig()

    # Load from config file if exists
    if CONFIG_PATH.exists():
        try:
            with open(CONFIG_PATH) as f:
                data = json.load(f)

            config.llm = _parse_llm_config(data)
            config.retriever = _parse_retriever_config(data)
            config.memory = _parse_memory_config(data)
            config.search = _parse_search_config(data)
            config.store = _parse_store_config(data)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning("Failed to load config file: %s", e)

    # LLM env var overrides (track env-sourced keys)
    _env_llm_map = {
        "GOOGLE_API_KEY": "google_api_key",
        "GEMINI_API_KEY": "google_api_key",
        "GOOGLE_MODEL": "google_model",
        "ANTHROPIC_API_KEY": "anthropic_api_key",
        "ANTHROPIC_MODEL": "anthropic_model",
        "OPENAI_API_KEY": "openai_api_key",
        "OPENAI_MODEL": "openai_model",
        "SPACEMIND_LLM_PROVIDER": "provider",
    }
    for env_var, attr in _env_llm_map.items():
        val = os.getenv(env_var)
        if val:
            setattr(config.llm, attr, val)
            config._env_sourced_keys.add(attr)

    if os.getenv("GOOGLE_SEARCH_API_KEY"):
        config.search.api_key = os.getenv("GOOGLE_SEARCH_API_KEY")
        config._env_sourced_keys.add("search_api_key")
    if os.getenv("GOOGLE_SEARCH_CX"):
        config.search.cx = os.getenv("GOOGLE_SEARCH_CX")

    _env_memory_map = {
        "SPACEMIND_MEMORY_TTL": ("ttl_seconds", float),
        "SPACEMIND_MEMORY_SEED": ("sample_seed", int),
    }
    for env_var, (attr, parse) in _env_memory_map.items():
        val = os.getenv(env_var)
        if not val:
            continue
        try:
            setattr(config.memory, attr, parse(val))
        except ValueError:
            logger.warning(
                "Invalid %s %r, keeping %s", env_var, val, getattr(config.memory, attr)
            )
    if os.getenv("SPACEMIND_STORE_PATH"):
        config.store.path = os.getenv("SPACEMIND_STORE_PATH")

    return config


def resolve_provider(llm: LLMConfig) -> str:
    """Resolve the "auto" provider to the first one with an API key.

    Returns the configured provider unchanged when it is not "auto".
    Falls back to "google" when no key is present at all.
    """
    provider = (llm.provider or "google").lower()
    if provider != "auto":
        return provider
    for candidate in PROVIDERS:
        if getattr(llm, f"{candidate}_api_key"):
            return candidate
    return "google"


def save_config(config: SpacemindConfig) -> None:
    """Save configuration to file.

    API key fields that were sourced from environment variables are written
    as empty strings so that secrets are not persisted to disk.
    """
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    env_sourced = getattr(config, "_env_sourced_keys", set())

    llm_section = {
        "provider": config.llm.provider,
        "anthropic_api_key": config.llm.anthropic_api_key,
        "anthropic_model": config.llm.anthropic_model,
        "openai_api_key": config.llm.openai_api_key,
        "openai_model": config.llm.openai_model,
        "google_api_key": config.llm.google_api_key,
        "google_model": config.llm.google_model,
    }
    for key in ("anthropic_api_key", "openai_api_key", "google_api_key"):
        if key in env_sourced:
            llm_section[key] = ""

    data = {
        "llm": llm_section,
        "retriever": {
            "topk": config.retriever.topk,
            "specific_topk": config.retriever.specific_topk,
            "excerpt_chars": config.retriever.excerpt_chars,
        },
        "memory": {
            "ttl_seconds": config.memory.ttl_seconds,
            "max_sample": config.memory.max_sample,
            "recent_count": config.memory.recent_count,
            "max_entries": config.memory.max_entries,
            "sample_seed": config.memory.sample_seed,
        },
        "search": {
            "api_key": "" if "search_api_key" in env_sourced else config.search.api_key,
            "cx": config.search.cx,
            "num_results": config.search.num_results,
            "timeout": config.search.timeout,
        },
        "store": {
            "path": config.store.path,
        },
    }

    with open(CONFIG_PATH, "w") as f:
        json.dump(data, f, indent=2)

    # Set secure permissions
    CONFIG_PATH.chmod(0o600)


def ensure_directories() -> None:
    """Ensure required directories exist"""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    LOGS_DIR.mkdir(parents=True, exist_ok=True)
