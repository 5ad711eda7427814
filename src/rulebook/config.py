"""Compile configuration.

Defaults cover the usual layout (rule files plus ``_sections.md`` in one
directory). A JSON config file can pin paths and options; relative paths in
it resolve against the config file's directory. CLI flags override both.

Example ``rulebook.json``::

    {
      "rules_dir": "rules",
      "manifest": "rules/_sections.md",
      "metadata": "metadata.json",
      "output": "AGENTS.md",
      "workers": 8,
      "strict_warnings": false
    }
"""
from __future__ import annotations

from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

from rulebook.io_utils import load_json

DEFAULT_MANIFEST_NAME = "_sections.md"
DEFAULT_WORKERS = 8


@dataclass(frozen=True, slots=True)
class CompileConfig:
    rules_dir: Path
    manifest_path: Path | None = None
    metadata_path: Path | None = None
    output_path: Path | None = None
    workers: int = DEFAULT_WORKERS
    rule_glob: str = "*.md"
    skip_prefix: str = "_"          # "_sections.md", "_template.md", ...
    strict_warnings: bool = False   # warnings fail the compile
    check_rule_template: bool = True

    def __post_init__(self) -> None:
        if self.workers < 1:
            raise ValueError(f"CompileConfig.workers must be >= 1, got {self.workers}")

    @property
    def manifest(self) -> Path:
        return self.manifest_path or self.rules_dir / DEFAULT_MANIFEST_NAME

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, base_dir: Path | None = None) -> CompileConfig:
        """Build a config from decoded JSON.

        Accepts both the short keys used in config files (``manifest``,
        ``metadata``, ``output``) and the field names.
        """
        base = base_dir or Path.cwd()

        def _path(*keys: str) -> Path | None:
            for key in keys:
                value = data.get(key)
                if value:
                    p = Path(value)
                    return p if p.is_absolute() else base / p
            return None

        rules_dir = _path("rules_dir")
        if rules_dir is None:
            raise ValueError('config is missing "rules_dir"')
        return cls(
            rules_dir=rules_dir,
            manifest_path=_path("manifest", "manifest_path"),
            metadata_path=_path("metadata", "metadata_path"),
            output_path=_path("output", "output_path"),
            workers=int(data.get("workers", DEFAULT_WORKERS)),
            rule_glob=str(data.get("rule_glob", "*.md")),
            skip_prefix=str(data.get("skip_prefix", "_")),
            strict_warnings=bool(data.get("strict_warnings", False)),
            check_rule_template=bool(data.get("check_rule_template", True)),
        )

    @classmethod
    def from_file(cls, path: Path) -> CompileConfig:
        data = load_json(path)
        if not isinstance(data, dict):
            raise ValueError(f"{path}: config must be a JSON object")
        return cls.from_dict(data, base_dir=path.parent)

    def with_overrides(self, **overrides: Any) -> CompileConfig:
        """Return a copy with every non-None override applied."""
        names = {f.name for f in fields(self)}
        unknown = set(overrides) - names
        if unknown:
            raise TypeError(f"unknown config fields: {', '.join(sorted(unknown))}")
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self
