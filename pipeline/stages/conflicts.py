"""
Destination conflict resolution shared by every worker of an operation.
"""

import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Set

from archive_configs import ArchiveConfig
from archive_errors import ConflictAborted
from base_classes import ConflictDecision

logger = logging.getLogger(__name__)

PromptCallable = Callable[[Path], ConflictDecision]


def renamed_path(path: Path, counter: int) -> Path:
    """
    ``name.tar.gz`` -> ``name_<counter>.tar.gz``.

    The counter goes before the first suffix dot; a leading dot belongs to
    the name.
    """
    name = path.name
    dot = name.find('.', 1)
    if dot == -1:
        return path.with_name(f"{name}_{counter}")
    return path.with_name(f"{name[:dot]}_{counter}{name[dot:]}")


class ConflictPolicy:
    """
    Operation-scoped conflict state.

    Holds the prompt callable (interactive runs), the default decision
    (non-interactive runs) and the sticky overwrite-all flag. Decisions and
    prompts are serialized under one lock so concurrent workers never prompt
    at the same time. Every destination handed out is remembered, so a path
    another worker is about to create counts as taken.
    """

    def __init__(self, prompt: Optional[PromptCallable] = None,
                 default: Optional[ConflictDecision] = None):
        if default is ConflictDecision.OVERWRITE_ALL:
            default = ConflictDecision.OVERWRITE
        self.prompt = prompt
        self.default = default
        self._lock = threading.Lock()
        self._overwrite_all = False
        self._default_logged = False
        self._claimed: Set[str] = set()

    @classmethod
    def from_config(cls, config: ArchiveConfig,
                    prompt: Optional[PromptCallable] = None) -> 'ConflictPolicy':
        return cls(prompt=prompt if config.interactive else None,
                   default=config.conflict_default)

    @property
    def overwrite_all(self) -> bool:
        with self._lock:
            return self._overwrite_all

    def decide(self, path: Path) -> ConflictDecision:
        """Decision for an existing ``path``; OVERWRITE_ALL is folded into OVERWRITE"""
        with self._lock:
            if self._overwrite_all:
                return ConflictDecision.OVERWRITE

            if self.prompt is not None:
                decision = self.prompt(path)
            elif self.default is not None:
                decision = self.default
            else:
                if not self._default_logged:
                    logger.warning("No conflict decision supplied, existing files will be skipped")
                    self._default_logged = True
                decision = ConflictDecision.SKIP

            if decision is ConflictDecision.OVERWRITE_ALL:
                self._overwrite_all = True
                logger.info("Overwriting all remaining existing files")
                return ConflictDecision.OVERWRITE
            return decision

    def claim(self, path: Path) -> bool:
        """Take ``path`` if it neither exists nor was handed out before"""
        with self._lock:
            return self._take(path)

    def claim_rename(self, path: Path) -> Path:
        """First ``name_N`` sibling that neither exists nor was handed out before"""
        counter = 1
        with self._lock:
            while True:
                candidate = renamed_path(path, counter)
                if self._take(candidate):
                    return candidate
                counter += 1

    def _take(self, path: Path) -> bool:
        key = os.path.abspath(path)
        if key in self._claimed or os.path.lexists(path):
            return False
        self._claimed.add(key)
        return True


@dataclass(frozen=True)
class Resolution:
    """Where to write, and what was decided if something was in the way"""
    path: Path
    decision: Optional[ConflictDecision] = None

    @property
    def skip(self) -> bool:
        return self.decision is ConflictDecision.SKIP

    @property
    def overwrite(self) -> bool:
        return self.decision is ConflictDecision.OVERWRITE


class ConflictResolver:
    """Resolves destination collisions against a shared ConflictPolicy"""

    def __init__(self, policy: ConflictPolicy):
        self.policy = policy

    def resolve(self, path: Path) -> Resolution:
        """
        Decide what happens to ``path`` before it is written.

        Returns:
            Resolution whose ``path`` is the target to write (a new sibling
            for RENAME) and whose ``decision`` is None when nothing exists
            there yet and no other job of the operation claimed it

        Raises:
            ConflictAborted: ABORT was chosen
        """
        path = Path(path)
        if self.policy.claim(path):
            return Resolution(path)

        decision = self.policy.decide(path)
        if decision is ConflictDecision.ABORT:
            raise ConflictAborted("Operation aborted at existing destination", path=path)
        if decision is ConflictDecision.RENAME:
            renamed = self.policy.claim_rename(path)
            logger.info(f"Renaming output {path} -> {renamed.name}")
            return Resolution(renamed, ConflictDecision.RENAME)
        if decision is ConflictDecision.SKIP:
            logger.info(f"Skipping existing {path}")
        return Resolution(path, decision)
