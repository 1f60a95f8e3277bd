"""
Specialist discovery and matching.

Specialists are executor profiles (commands, agents, skills) described by
markdown files with YAML frontmatter. Discovery sits behind ProfileSource
so matching can be exercised with fixed profiles.

Automatic matching (match_specialist) is strict: anything short of an
explicit [name] tag must clear AUTO_MATCH_THRESHOLD. Ranking
(score_specialists) has no threshold and is for human-facing suggestions.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol

import yaml

from bartloop.lib.constants import AUTO_MATCH_THRESHOLD, MIN_SAMPLES, TAG_PATTERN
from bartloop.lib.history import HistoryEntry, compute_specialist_stats
from bartloop.lib.model import SpecialistModel, TaskFeatures, extract_features, significant_words
from bartloop.lib.tasks import Task

logger = logging.getLogger(__name__)

SPECIALIST_TYPES = ("command", "agent", "skill")

# File suffix -> keywords expected in a matching specialist's description
EXTENSION_KEYWORDS = {
    ".tsx": ["frontend", "react", "ui", "component", "view"],
    ".jsx": ["frontend", "react", "ui", "component", "view"],
    ".css": ["frontend", "style", "ui", "design"],
    ".scss": ["frontend", "style", "ui", "design"],
    ".sql": ["database", "query", "migration", "schema"],
    ".prisma": ["database", "schema", "orm"],
    ".test.ts": ["test", "testing", "spec"],
    ".spec.ts": ["test", "testing", "spec"],
    ".tf": ["infrastructure", "terraform", "deploy"],
    ".yml": ["config", "ci", "deploy", "pipeline"],
    ".yaml": ["config", "ci", "deploy", "pipeline"],
    ".dockerfile": ["docker", "container", "deploy"],
}

# score_specialists weights
KEYWORD_WEIGHT = 0.5
FILE_WEIGHT = 0.3
NAME_MENTION_BONUS = 0.2
HISTORY_ADJUSTMENT = 0.15
HISTORY_MIN_SAMPLES = 3
TYPE_BONUS = 0.05

_FRONTMATTER_RE = re.compile(r'^---\s*\n(.*?)\n---', re.DOTALL)


@dataclass
class Specialist:
    name: str
    description: str
    type: str  # "command", "agent" or "skill"
    path: Optional[Path] = None
    tools: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)


class ProfileSource(Protocol):
    """Where specialist profiles come from."""

    def specialists(self) -> list[Specialist]:
        ...

    def describe(self, name: str) -> Optional[tuple[str, list[str]]]:
        """Full profile text and tags for a specialist, or None if unknown."""
        ...


class StaticProfileSource:
    """Fixed set of profiles."""

    def __init__(self, specialists: list[Specialist]):
        self._specialists = list(specialists)

    def specialists(self) -> list[Specialist]:
        return list(self._specialists)

    def describe(self, name: str) -> Optional[tuple[str, list[str]]]:
        for s in self._specialists:
            if s.name == name:
                return s.description, list(s.tags)
        return None


def parse_frontmatter(content: str) -> dict:
    """YAML frontmatter between leading --- markers, or {} if absent or invalid."""
    match = _FRONTMATTER_RE.match(content)
    if not match:
        return {}
    try:
        data = yaml.safe_load(match.group(1))
    except yaml.YAMLError as e:
        logger.warning(f"Invalid frontmatter: {e}")
        return {}
    return data if isinstance(data, dict) else {}


def _as_list(value) -> list[str]:
    if value is None:
        return []
    if isinstance(value, list):
        return [str(v) for v in value]
    return [v.strip() for v in str(value).split(",") if v.strip()]


def _first_line(value) -> str:
    if value is None:
        return ""
    lines = str(value).strip().splitlines()
    return lines[0].strip() if lines else ""


def _load_profile(path: Path, type_: str, default_name: str) -> Optional[Specialist]:
    try:
        fm = parse_frontmatter(path.read_text())
    except OSError as e:
        logger.warning(f"Cannot read specialist file {path}: {e}")
        return None
    name = str(fm.get("name") or default_name)
    if not name:
        return None
    return Specialist(
        name=name,
        description=_first_line(fm.get("description")),
        type=type_,
        path=path,
        tools=_as_list(fm.get("tools") or fm.get("allowed-tools")),
        tags=_as_list(fm.get("tags")),
    )


def scan_directory(directory: Path, type_: str) -> list[Specialist]:
    """Profiles from *.md and *.skill files directly in directory."""
    if not directory.is_dir():
        return []
    found = []
    for entry in sorted(directory.iterdir()):
        if entry.is_file() and entry.suffix in (".md", ".skill"):
            profile = _load_profile(entry, type_, entry.stem)
            if profile:
                found.append(profile)
    return found


def _scan_plugin_dir(plugin_dir: Path) -> list[Specialist]:
    found = []
    skills_dir = plugin_dir / "skills"
    if skills_dir.is_dir():
        for skill_dir in sorted(skills_dir.iterdir()):
            skill_file = skill_dir / "SKILL.md"
            if skill_dir.is_dir() and skill_file.is_file():
                profile = _load_profile(skill_file, "skill", skill_dir.name)
                if profile:
                    found.append(profile)

    root_skill = plugin_dir / "SKILL.md"
    if root_skill.is_file():
        profile = _load_profile(root_skill, "skill", plugin_dir.name)
        if profile:
            found.append(profile)

    found.extend(scan_directory(plugin_dir / "agents", "agent"))
    found.extend(scan_directory(plugin_dir / "commands", "command"))
    return found


def _is_plugin_dir(path: Path) -> bool:
    markers = (".claude-plugin", "skills", "agents", "commands", "SKILL.md")
    return any((path / m).exists() for m in markers)


def scan_plugins(plugins_dir: Path) -> list[Specialist]:
    """Profiles from installed plugin marketplaces.

    Handles marketplaces/<name>/plugins/<plugin>/ and the flat
    marketplaces/<name>/<plugin>/ layout.
    """
    marketplaces = plugins_dir / "marketplaces"
    if not marketplaces.is_dir():
        return []

    found = []
    for marketplace in sorted(marketplaces.iterdir()):
        if not marketplace.is_dir():
            continue
        nested = marketplace / "plugins"
        if nested.is_dir():
            for plugin in sorted(nested.iterdir()):
                if plugin.is_dir():
                    found.extend(_scan_plugin_dir(plugin))
        for sub in sorted(marketplace.iterdir()):
            if sub.name == "plugins" or sub.name.startswith(".") or sub.name == "node_modules":
                continue
            if sub.is_dir() and _is_plugin_dir(sub):
                found.extend(_scan_plugin_dir(sub))
    return found


class DirectoryProfileSource:
    """Profiles discovered from project-local and user-global .claude directories.

    Search order: project commands, project agents, global commands, global
    agents, plugins, global skills. The first profile seen for a name wins.
    """

    def __init__(self, project_root: Path, home: Optional[Path] = None):
        self.project_root = project_root
        self.home = home if home is not None else Path(os.path.expanduser("~"))
        self._cache: Optional[list[Specialist]] = None

    def _discover(self) -> list[Specialist]:
        project = self.project_root / ".claude"
        user = self.home / ".claude"
        candidates = (
            scan_directory(project / "commands", "command")
            + scan_directory(project / "agents", "agent")
            + scan_directory(user / "commands", "command")
            + scan_directory(user / "agents", "agent")
            + scan_plugins(user / "plugins")
            + scan_directory(user / "skills", "skill")
        )
        seen = set()
        result = []
        for s in candidates:
            if s.name in seen:
                continue
            seen.add(s.name)
            result.append(s)
        logger.debug(f"Discovered {len(result)} specialists")
        return result

    def specialists(self) -> list[Specialist]:
        if self._cache is None:
            self._cache = self._discover()
        return list(self._cache)

    def describe(self, name: str) -> Optional[tuple[str, list[str]]]:
        for s in self.specialists():
            if s.name != name:
                continue
            # Full (possibly multi-line) description, not just the listing line
            description = s.description
            if s.path is not None:
                try:
                    fm = parse_frontmatter(s.path.read_text())
                    if fm.get("description"):
                        description = str(fm["description"]).strip()
                except OSError as e:
                    logger.warning(f"Cannot read specialist file {s.path}: {e}")
            return description, list(s.tags)
        return None


def find_specialist(specialists: list[Specialist], name: str) -> Optional[Specialist]:
    for s in specialists:
        if s.name == name:
            return s
    return None


# --- Matching ---

@dataclass
class Match:
    specialist: Specialist
    confidence: float
    reason: str  # "tag", "model", "extension" or "keywords"


def file_keywords(files: list[str]) -> set[str]:
    """Union of EXTENSION_KEYWORDS for every file hint."""
    keywords = set()
    for f in files:
        lower = f.lower()
        for ext, words in EXTENSION_KEYWORDS.items():
            if lower.endswith(ext):
                keywords.update(words)
    return keywords


def _profile_text(s: Specialist) -> str:
    return " ".join([s.description] + s.tags).lower()


def _tag_match(task: Task, specialists: list[Specialist]) -> Optional[Specialist]:
    by_name = {s.name.lower(): s for s in specialists}
    for tag in TAG_PATTERN.findall(task.title):
        found = by_name.get(tag.strip().lower())
        if found:
            return found
    return None


def _model_match(features: TaskFeatures, specialists: list[Specialist],
                 model: SpecialistModel) -> Optional[Match]:
    best = None
    for s in specialists:
        confidence = model.confidence(s.name, features, MIN_SAMPLES)
        if confidence is None:
            continue
        if best is None or confidence > best.confidence:
            best = Match(s, confidence, "model")
    if best and best.confidence >= AUTO_MATCH_THRESHOLD:
        return best
    return None


def _extension_match(task: Task, specialists: list[Specialist]) -> Optional[Match]:
    keywords = file_keywords(task.files)
    if not keywords:
        return None
    best, best_score = None, 0
    for s in specialists:
        text = _profile_text(s)
        score = sum(1 for k in keywords if k in text)
        if score > best_score:
            best, best_score = s, score
    if best is None:
        return None
    ratio = best_score / len(keywords)
    if ratio >= AUTO_MATCH_THRESHOLD:
        return Match(best, ratio, "extension")
    return None


def _keyword_match(task: Task, specialists: list[Specialist]) -> Optional[Match]:
    task_words = significant_words(f"{task.title} {task.description}")
    if not task_words:
        return None
    best, best_score = None, 0
    for s in specialists:
        score = len(task_words & significant_words(_profile_text(s)))
        if score > best_score:
            best, best_score = s, score
    if best is None:
        return None
    ratio = best_score / len(task_words)
    if ratio >= AUTO_MATCH_THRESHOLD:
        return Match(best, ratio, "keywords")
    return None


def match_specialist(task: Task, specialists: list[Specialist],
                     model: Optional[SpecialistModel] = None) -> Optional[Match]:
    """Pick a specialist for task, or None for the default executor.

    First match wins: explicit [name] tag, learned model, file extension
    keywords, description keyword overlap.
    """
    if not specialists:
        return None

    tagged = _tag_match(task, specialists)
    if tagged:
        return Match(tagged, 1.0, "tag")

    if model is not None:
        matched = _model_match(extract_features(task), specialists, model)
        if matched:
            return matched

    return _extension_match(task, specialists) or _keyword_match(task, specialists)


# --- Ranking ---

@dataclass
class ScoredSpecialist:
    specialist: Specialist
    score: float
    reasons: list[str] = field(default_factory=list)


def score_specialists(description: str, files: list[str], specialists: list[Specialist],
                      history: Optional[list[HistoryEntry]] = None,
                      model: Optional[SpecialistModel] = None) -> list[ScoredSpecialist]:
    """Rank every specialist for a piece of work, best first."""
    task_words = significant_words(description)
    fkeywords = file_keywords(files)
    stats = compute_specialist_stats(history) if history else {}
    features = extract_features(Task(id="", workstream="", title="", description=description, files=list(files)))
    mention_text = description.lower()

    ranked = []
    for s in specialists:
        text = _profile_text(s)
        reasons = []
        score = 0.0

        if task_words:
            overlap = len(task_words & significant_words(text))
            if overlap:
                score += KEYWORD_WEIGHT * overlap / len(task_words)
                reasons.append(f"{overlap} keyword(s)")

        if fkeywords:
            hits = sum(1 for k in fkeywords if k in text)
            if hits:
                score += FILE_WEIGHT * hits / len(fkeywords)
                reasons.append("file types")

        if s.name.lower() in mention_text:
            score += NAME_MENTION_BONUS
            reasons.append("named")

        st = stats.get(s.name)
        if st and st.total >= HISTORY_MIN_SAMPLES:
            if st.success_rate >= 0.8:
                score += HISTORY_ADJUSTMENT
                reasons.append(f"{st.success_rate:.0%} success")
            elif st.success_rate < 0.5:
                score -= HISTORY_ADJUSTMENT
                reasons.append(f"{st.success_rate:.0%} success")

        if s.type != "command":
            score += TYPE_BONUS

        if model is not None:
            confidence = model.confidence(s.name, features, min_samples=1)
            if confidence is not None:
                score = 0.5 * score + 0.5 * confidence
                reasons.append(f"model {confidence:.0%}")

        ranked.append(ScoredSpecialist(s, max(0.0, min(1.0, score)), reasons))

    ranked.sort(key=lambda r: (-r.score, r.specialist.name))
    return ranked
