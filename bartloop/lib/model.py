"""
Learned specialist model.

Not a trained model: an append-only log of (specialist, task features,
success) outcomes, scored by similarity-weighted success rate. The file is
rewritten whole on every record and never pruned.
"""

import logging
import os
import re
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from bartloop.lib.constants import MIN_SAMPLES
from bartloop.lib.tasks import Task, now_iso

logger = logging.getLogger(__name__)

MODEL_VERSION = 1

GLOBAL_WEIGHT = 0.4
SIMILARITY_WEIGHT = 0.6

_WORD_SPLIT = re.compile(r'\W+')


class SpecialistModelError(Exception):
    """The model file exists but cannot be read."""
    pass


class TaskFeatures(BaseModel):
    extensions: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    complexity: int = 0  # Number of file hints
    workstream: str = ""


class ModelEntry(BaseModel):
    specialist: str
    features: TaskFeatures
    success: bool
    timestamp: str


class ModelDocument(BaseModel):
    version: int = MODEL_VERSION
    entries: list[ModelEntry] = Field(default_factory=list)


def significant_words(text: str) -> set[str]:
    """Lowercased words longer than three characters."""
    return {w for w in _WORD_SPLIT.split(text.lower()) if len(w) > 3}


def extract_features(task: Task) -> TaskFeatures:
    extensions = {Path(f).suffix.lower() for f in task.files if Path(f).suffix}
    return TaskFeatures(
        extensions=sorted(extensions),
        keywords=sorted(significant_words(f"{task.title} {task.description}")),
        complexity=len(task.files),
        workstream=task.workstream,
    )


def _jaccard(a: set, b: set) -> float:
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def similarity(a: TaskFeatures, b: TaskFeatures) -> float:
    """Mean of extension overlap, keyword overlap and complexity closeness."""
    ext = _jaccard(set(a.extensions), set(b.extensions))
    kw = _jaccard(set(a.keywords), set(b.keywords))
    complexity = 1 - abs(a.complexity - b.complexity) / max(a.complexity, b.complexity, 1)
    return (ext + kw + complexity) / 3


class SpecialistModel:
    """Outcome log bound to a file path."""

    def __init__(self, path: Path, document: Optional[ModelDocument] = None):
        self.path = path
        self.document = document or ModelDocument()

    @classmethod
    def load(cls, path: Path) -> "SpecialistModel":
        """Load the model, or an empty one when the file does not exist.

        Raises:
            SpecialistModelError: if the file is unreadable or malformed
        """
        if not path.exists():
            return cls(path)
        try:
            document = ModelDocument.model_validate_json(path.read_text())
        except (ValidationError, ValueError, OSError) as e:
            raise SpecialistModelError(f"Cannot read specialist model {path}: {e}") from None
        return cls(path, document)

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(f".{self.path.name}.{os.getpid()}.tmp")
        tmp_path.write_text(self.document.model_dump_json(indent=2) + "\n")
        os.replace(tmp_path, self.path)

    @property
    def entries(self) -> list[ModelEntry]:
        return self.document.entries

    def record(self, specialist: str, task: Task, success: bool, timestamp: Optional[str] = None) -> ModelEntry:
        """Append one outcome and persist."""
        entry = ModelEntry(
            specialist=specialist,
            features=extract_features(task),
            success=success,
            timestamp=timestamp or now_iso(),
        )
        self.document.entries.append(entry)
        self.save()
        logger.debug(f"[model] recorded {specialist} success={success} ({len(self.entries)} entries)")
        return entry

    def samples(self, specialist: str) -> int:
        return sum(1 for e in self.entries if e.specialist == specialist)

    def confidence(self, specialist: str, features: TaskFeatures, min_samples: int = MIN_SAMPLES) -> Optional[float]:
        """Blend of overall success rate and success rate weighted by
        similarity to features. None below min_samples."""
        own = [e for e in self.entries if e.specialist == specialist]
        if len(own) < max(min_samples, 1):
            return None

        global_rate = sum(1 for e in own if e.success) / len(own)

        weights = [similarity(features, e.features) for e in own]
        total_weight = sum(weights)
        if total_weight > 0:
            weighted_rate = sum(w for w, e in zip(weights, own) if e.success) / total_weight
        else:
            weighted_rate = global_rate

        return GLOBAL_WEIGHT * global_rate + SIMILARITY_WEIGHT * weighted_rate
