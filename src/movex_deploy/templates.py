"""Render configuration templates into the generated tree."""

from __future__ import annotations

import re
from pathlib import Path
from typing import List, Mapping

from .config import DeploySettings
from .errors import DeployError
from .paths import ensure_dir, generated_dir, templates_dir
from .utils.logging import get_logger

logger = get_logger(__name__)

_PLACEHOLDER = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


class TemplatesNotFound(DeployError):
    pass


def substitute(text: str, values: Mapping[str, str]) -> str:
    """Replace ``${VAR}`` and ``$VAR`` for known keys; anything else is left as written."""

    def replace(match: "re.Match[str]") -> str:
        key = match.group(1) or match.group(2)
        return values.get(key, match.group(0))

    return _PLACEHOLDER.sub(replace, text)


def process_templates(source: Path, target: Path, values: Mapping[str, str]) -> List[Path]:
    """Mirror ``source`` into ``target``, rendering every file. Returns the written paths."""
    if not source.is_dir():
        raise TemplatesNotFound(f"Templates directory not found: {source}")
    written: List[Path] = []
    for template in sorted(source.rglob("*")):
        if not template.is_file():
            continue
        destination = target / template.relative_to(source)
        ensure_dir(destination.parent)
        destination.write_text(substitute(template.read_text(encoding="utf-8"), values), encoding="utf-8")
        logger.info("  %s -> %s", template.relative_to(source), destination)
        written.append(destination)
    return written


def process_configs(settings: DeploySettings) -> List[Path]:
    source = templates_dir(settings.project_root)
    target = generated_dir(settings.project_root)
    logger.info("Processing configuration templates from %s", source)
    written = process_templates(source, target, settings.placeholders())
    logger.info("Generated %d file(s) in %s", len(written), target)
    return written
