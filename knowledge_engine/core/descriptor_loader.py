"""Load knowledge descriptors from a directory and build a library from them."""

import json
import logging
from pathlib import Path
from typing import Any

import yaml

from knowledge_engine.core.knowledge_library import KnowledgeLibrary
from knowledge_engine.core.knowledge_source import KnowledgeSource
from knowledge_engine.executors.factory import ExecutorContext
from knowledge_engine.lib.config import EngineConfig
from knowledge_engine.models.descriptor import KnowledgeDescriptor, validate_descriptor
from knowledge_engine.models.errors import DescriptorValidationError

logger = logging.getLogger(__name__)

DESCRIPTOR_SUFFIXES = (".json", ".yaml", ".yml")


def read_descriptor_file(path: Path) -> Any:
    """Parse one descriptor document (JSON or YAML)."""
    text = path.read_text(encoding="utf-8")
    if path.suffix == ".json":
        return json.loads(text)
    return yaml.safe_load(text)


def iter_descriptor_files(directory: str | Path) -> list[Path]:
    root = Path(directory)
    if not root.is_dir():
        raise FileNotFoundError(f"Descriptor directory not found: {root}")
    return sorted(p for p in root.iterdir() if p.is_file() and p.suffix in DESCRIPTOR_SUFFIXES)


def check_descriptor_file(path: Path) -> KnowledgeDescriptor:
    """Read and validate one file.

    Raises:
        DescriptorValidationError: If the file cannot be parsed or fails validation
    """
    try:
        raw = read_descriptor_file(path)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise DescriptorValidationError(f"{path.name}: unreadable descriptor: {e}") from e
    return validate_descriptor(raw)


def load_descriptors(directory: str | Path) -> list[KnowledgeDescriptor]:
    """Load every valid descriptor in ``directory``, sorted by file name.

    Invalid files are logged and skipped. When two files share an id the
    later one wins.
    """
    loaded: dict[str, KnowledgeDescriptor] = {}

    for path in iter_descriptor_files(directory):
        try:
            descriptor = check_descriptor_file(path)
        except DescriptorValidationError as e:
            logger.error(
                f"Skipping invalid descriptor {path.name}: {e}",
                extra={"extra_fields": {"file": str(path), "field_errors": e.field_errors}},
            )
            continue

        if descriptor.id in loaded:
            logger.warning(f"Duplicate descriptor id '{descriptor.id}' in {path.name}, replacing")
        loaded[descriptor.id] = descriptor

    logger.info(f"Loaded {len(loaded)} knowledge descriptors from {directory}")
    return list(loaded.values())


def build_library(
    descriptors: list[KnowledgeDescriptor],
    ctx: ExecutorContext | None = None,
    config: EngineConfig | None = None,
) -> KnowledgeLibrary:
    """Create a library and register one source per descriptor, in order."""
    config = config or EngineConfig()
    ctx = ctx if ctx is not None else ExecutorContext.from_config(config)

    library = KnowledgeLibrary(
        max_suggestions=config.max_suggestions,
        concurrent_fetch=config.concurrent_fetch,
    )
    for descriptor in descriptors:
        library.register_source(
            KnowledgeSource.from_descriptor(descriptor, ctx, fuzzy_ratio=config.fuzzy_ratio)
        )
    return library
