"""
Reference config renderer that writes the effective configuration as JSON.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

from ..core.contracts import RenderRequest

logger = logging.getLogger(__name__)


class JsonFileRenderer:
    """
    Write ``config.json`` plus one file per service, check and watch.

    Keys are sorted and output is compact unless ``pretty_config`` is set.
    The result counts as changed when any managed file was written. With
    ``purge_config_dir`` every other ``*.json`` file in the directory is
    removed, and removals count as a change.
    """

    name = "collaborators.render.json_file"

    def __init__(
        self, directory: str | Path | None = None, *, filename: str = "config.json"
    ) -> None:
        self._directory = Path(directory) if directory is not None else None
        self._filename = filename

    def target_for(self, request: RenderRequest) -> Path:
        directory = self._directory or Path(request.config_dir)
        return directory / self._filename

    def documents(self, request: RenderRequest) -> dict[str, str]:
        """File name to content for every file this renderer manages."""
        indent = request.pretty_config_indent if request.pretty_config else None
        separators = (",", ":") if indent is None else (",", ": ")
        documents = {self._filename: request.config.to_json(indent=indent) + "\n"}
        for name, payload in request.resources.agent_files().items():
            if name == self._filename:
                raise ValueError(f"resource file {name} would overwrite the main config")
            documents[name] = (
                json.dumps(payload, sort_keys=True, indent=indent, separators=separators) + "\n"
            )
        return documents

    async def render(self, request: RenderRequest) -> bool:
        return await asyncio.to_thread(self._render_sync, request)

    def _render_sync(self, request: RenderRequest) -> bool:
        directory = self.target_for(request).parent
        directory.mkdir(parents=True, exist_ok=True)
        documents = self.documents(request)

        changed = False
        for name, content in documents.items():
            changed = _write_if_changed(directory / name, content) or changed

        if request.purge_config_dir:
            for stray in sorted(directory.glob("*.json")):
                if stray.name in documents:
                    continue
                logger.info("Purging unmanaged config file %s", stray)
                stray.unlink()
                changed = True
        return changed


def _write_if_changed(target: Path, content: str) -> bool:
    if target.exists() and target.read_text(encoding="utf-8") == content:
        return False
    temp_path = target.with_suffix(target.suffix + ".tmp")
    temp_path.write_text(content, encoding="utf-8")
    temp_path.replace(target)
    logger.info("Wrote %s (%d bytes)", target, len(content))
    return True


__all__ = ["JsonFileRenderer"]
