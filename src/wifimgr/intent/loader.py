"""Loading intent files from disk."""
import json
import logging
from pathlib import Path
from typing import Any, Optional

import yaml

from ..errors import AmbiguousError, IntentError
from .schema import IntentFile, SiteIntent, parse_intent

logger = logging.getLogger(__name__)

INTENT_SUFFIXES = (".json", ".yaml", ".yml")


class _IntentLoader(yaml.SafeLoader):
    """SafeLoader that keeps scalar mapping keys exactly as written.

    Without this, a MAC key such as 001122334455 would be read as an
    octal integer and 10:11:22:33:44:55 as a base-60 one.
    """


def _construct_mapping(loader: yaml.SafeLoader, node: yaml.MappingNode, deep: bool = False) -> dict:
    loader.flatten_mapping(node)
    mapping = {}
    for key_node, value_node in node.value:
        if isinstance(key_node, yaml.ScalarNode):
            key = key_node.value
        else:
            key = loader.construct_object(key_node, deep=deep)
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


_IntentLoader.add_constructor(yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG, _construct_mapping)


def parse_document(text: str, path: Path) -> Any:
    """Parse JSON or YAML text according to the file suffix.

    Raises:
        IntentError: On unsupported suffix or syntax errors
    """
    suffix = _base_suffix(path)
    try:
        if suffix == ".json":
            return json.loads(text)
        if suffix in (".yaml", ".yml"):
            return yaml.load(text, Loader=_IntentLoader)
    except (ValueError, yaml.YAMLError) as e:
        raise IntentError(str(path), f"cannot parse: {e}") from e
    raise IntentError(str(path), f"unsupported file type '{suffix}'")


def _base_suffix(path: Path) -> str:
    """Suffix of the live file name, also for backups such as site.yaml.3."""
    suffixes = [s for s in path.suffixes if s.lower() in INTENT_SUFFIXES]
    return suffixes[-1].lower() if suffixes else path.suffix.lower()


def load_document(path: Path) -> Any:
    """Read and parse an intent (or intent backup) file."""
    try:
        text = Path(path).read_text()
    except OSError as e:
        raise IntentError(str(path), f"cannot read: {e}") from e
    return parse_document(text, Path(path))


def load_intent_file(path: Path) -> IntentFile:
    return parse_intent(load_document(path), Path(path))


class IntentStore:
    """Locates and loads the operator's intent files.

    Files are read fresh on every call: intent is owned by the operator and
    may change between invocations.

    Args:
        config_dir: Directory that relative file names are resolved against
        site_configs: Intent files (relative to config_dir or absolute)
    """

    def __init__(self, config_dir: Optional[Path] = None, site_configs: Optional[list[str]] = None):
        self.config_dir = Path(config_dir) if config_dir else Path.cwd()
        self.site_configs = list(site_configs or [])

    def files(self) -> list[Path]:
        """Configured intent files; with none configured, every intent file in config_dir."""
        if self.site_configs:
            paths = []
            for name in self.site_configs:
                path = Path(name).expanduser()
                paths.append(path if path.is_absolute() else self.config_dir / path)
            return paths
        if not self.config_dir.is_dir():
            return []
        return sorted(
            p for p in self.config_dir.iterdir()
            if p.is_file() and p.suffix.lower() in INTENT_SUFFIXES
        )

    def load(self) -> dict[Path, IntentFile]:
        """Load every intent file.

        Raises:
            IntentError: If a file is missing or malformed
        """
        loaded = {}
        for path in self.files():
            loaded[path] = self._load_file(path)
            logger.debug(f"Loaded intent {path}: {len(loaded[path].sites)} sites")
        return loaded

    def get_site(self, name: str) -> tuple[SiteIntent, Path]:
        """Find a site by name (or site key) across all intent files.

        A file that is missing or does not parse is skipped while looking
        for another site's file. Its error is raised only when that file is
        the one that mentions ``name``.

        Raises:
            IntentError: If no file declares the site, or its own file is bad
            AmbiguousError: If several files declare it
        """
        matches = []
        unreadable: dict[Path, IntentError] = {}
        for path in self.files():
            try:
                intent = self._load_file(path)
            except IntentError as e:
                logger.warning(f"Skipping intent file {path} while looking up '{name}': {e.reason}")
                unreadable[path] = e
                continue
            site = intent.find_site(name)
            if site is not None:
                matches.append((site, path))

        if len(matches) > 1:
            files = ", ".join(str(p) for _, p in matches)
            raise AmbiguousError(f"Site '{name}' is declared in several intent files: {files}")
        if matches:
            return matches[0]
        for path, error in unreadable.items():
            if self._mentions(path, name):
                raise error
        raise IntentError(str(self.config_dir), f"site '{name}' is not declared in any intent file")

    def find_file_for_site(self, name: str, lenient: bool = False) -> Path:
        """Intent file that declares ``name``.

        With ``lenient``, a file that no longer parses is still returned when
        it is the only one whose name or text mentions the site, so a broken
        file can be rolled back.
        """
        try:
            return self.get_site(name)[1]
        except IntentError as e:
            if not lenient:
                raise
            error = e

        candidates = [path for path in self.files() if self._mentions(path, name)]
        if len(candidates) == 1:
            logger.warning(f"Intent file for '{name}' does not parse; using {candidates[0]}")
            return candidates[0]
        raise error

    def _load_file(self, path: Path) -> IntentFile:
        if not path.exists():
            raise IntentError(str(path), "intent file not found")
        return load_intent_file(path)

    @staticmethod
    def _mentions(path: Path, name: str) -> bool:
        """Whether a file's stem or raw text names the site."""
        needle = name.lower()
        if path.stem.lower() == needle:
            return True
        try:
            return needle in path.read_text().lower()
        except OSError:
            return False

    def site_names(self) -> list[str]:
        names = []
        for intent in self.load().values():
            names.extend(site.name for site in intent.sites.values())
        return sorted(names)
