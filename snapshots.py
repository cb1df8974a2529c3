"""
Working-tree snapshots for reverting coding-agent edits.

Before a direct-mode run the manager records a baseline per annotation id:
the whole working tree (tracked and untracked files, minus ignored ones)
written to a git tree object through a throwaway index, so neither the real
index nor the stash list is touched. Revert writes a second tree of the
current state, diffs the two, and puts every differing path back.
"""

import contextlib
import logging
import os
import subprocess
import tempfile
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from errors import RevertResult

logger = logging.getLogger(__name__)

_GIT_TIMEOUT = 60


class SnapshotError(Exception):
    pass


@dataclass
class SnapshotRef:
    """Baseline for one annotation id"""
    annotation_id: str
    ref: str  # tree object id
    created_at: float = field(default_factory=time.time)

    @property
    def short_ref(self) -> str:
        return self.ref[:7]


class SnapshotManager:
    """
    Keeps one baseline per annotation id. A second snapshot for the same id
    before revert replaces the first.
    """

    def __init__(self, working_directory: str):
        self.working_directory = os.path.abspath(working_directory)
        self._snapshots: Dict[str, SnapshotRef] = {}

    # ------------------------------------------------------------------
    # Baselines
    # ------------------------------------------------------------------

    def capture(self, annotation_id: str) -> Optional[SnapshotRef]:
        """Record the current tree in git without tracking it. Returns None outside a usable repo."""
        try:
            ref = self._write_tree()
        except SnapshotError as e:
            logger.warning("Failed to create snapshot for %s: %s", annotation_id, e)
            return None
        return SnapshotRef(annotation_id=annotation_id, ref=ref)

    def track(self, snapshot: SnapshotRef) -> None:
        if snapshot.annotation_id in self._snapshots:
            logger.info("Replacing snapshot for %s", snapshot.annotation_id)
        self._snapshots[snapshot.annotation_id] = snapshot
        logger.info("Created snapshot %s for %s", snapshot.short_ref, snapshot.annotation_id)

    def create_snapshot(self, annotation_id: str) -> Optional[SnapshotRef]:
        snapshot = self.capture(annotation_id)
        if snapshot is not None:
            self.track(snapshot)
        return snapshot

    def get(self, annotation_id: str) -> Optional[SnapshotRef]:
        return self._snapshots.get(annotation_id)

    def forget(self, annotation_id: str, snapshot: Optional[SnapshotRef] = None) -> None:
        """Drop the baseline for annotation_id, unless it was replaced by a newer one than snapshot."""
        current = self._snapshots.get(annotation_id)
        if current is not None and (snapshot is None or current is snapshot):
            del self._snapshots[annotation_id]

    def tracked_ids(self) -> List[str]:
        return list(self._snapshots.keys())

    # ------------------------------------------------------------------
    # Revert
    # ------------------------------------------------------------------

    def revert(self, annotation_id: str) -> RevertResult:
        """Restore every path changed since the baseline and drop it. Never raises."""
        snapshot = self._snapshots.get(annotation_id)
        if snapshot is None:
            return RevertResult(False, f"No snapshot found for {annotation_id}")
        result = self.restore(snapshot)
        if result.success:
            self.forget(annotation_id, snapshot)
        return result

    def restore(self, snapshot: SnapshotRef) -> RevertResult:
        """Put the tree back to snapshot. Touches git objects and the filesystem only."""
        try:
            current = self._write_tree()
            changed = self._changed_paths(snapshot.ref, current)
        except SnapshotError as e:
            return RevertResult(False, str(e))
        if not changed:
            return RevertResult(True, "No changes to revert")

        reverted = [path for path in changed if self._restore_path(snapshot.ref, path)]
        logger.info("Reverted %d file(s) for %s", len(reverted), snapshot.annotation_id)
        return RevertResult(True, f"Reverted {len(reverted)} file(s)", reverted)

    def _restore_path(self, ref: str, path: str) -> bool:
        try:
            if self._exists_in(ref, path):
                # Checkout through a scratch index so untracked baseline files stay untracked
                with _scratch_index() as env:
                    self._git("checkout", ref, "--", path, env=env)
                return True
            # Not in the baseline: the run created it
            self._git("rm", "--cached", "--quiet", "--ignore-unmatch", "--", path, check=False)
        except SnapshotError as e:
            logger.warning("Could not restore %s: %s", path, e)
            return False
        return self._remove_path(path)

    def _remove_path(self, path: str) -> bool:
        full = os.path.join(self.working_directory, path)
        try:
            if os.path.lexists(full):
                os.remove(full)
            return True
        except OSError as e:
            logger.warning("Could not remove %s: %s", path, e)
            return False

    # ------------------------------------------------------------------
    # git helpers
    # ------------------------------------------------------------------

    def _write_tree(self) -> str:
        """Write the working tree, untracked files included, as a tree object."""
        with _scratch_index() as env:
            # Seed from HEAD so tracked files matched by .gitignore are kept
            self._git("read-tree", "HEAD", env=env, check=False)
            self._git("add", "-A", env=env)
            return self._git("write-tree", env=env).strip()

    def _changed_paths(self, base: str, current: str) -> List[str]:
        out = self._git("diff-tree", "-r", "-z", "--name-only", "--no-renames", "--relative", base, current)
        return [p for p in out.split("\0") if p]

    def _exists_in(self, ref: str, path: str) -> bool:
        try:
            result = subprocess.run(
                ["git", "cat-file", "-e", f"{ref}:./{path}"],
                cwd=self.working_directory, capture_output=True, timeout=_GIT_TIMEOUT,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise SnapshotError(f"git cat-file failed: {e}")
        return result.returncode == 0

    def _git(self, *args: str, check: bool = True, env: Optional[Dict[str, str]] = None) -> str:
        try:
            result = subprocess.run(
                ["git", "--literal-pathspecs", *args], cwd=self.working_directory, env=env,
                capture_output=True, encoding="utf-8", errors="surrogateescape",
                timeout=_GIT_TIMEOUT,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise SnapshotError(f"git {' '.join(args)} failed: {e}")
        if check and result.returncode != 0:
            raise SnapshotError(f"git {' '.join(args)} failed: {result.stderr.strip()}")
        return result.stdout


@contextlib.contextmanager
def _scratch_index():
    """Environment with GIT_INDEX_FILE pointing at a temporary, initially empty index."""
    with tempfile.TemporaryDirectory(prefix="skema-index-") as tmp:
        yield {**os.environ, "GIT_INDEX_FILE": os.path.join(tmp, "index")}
