"""
Merge engine: reconcile fetched candidates with a user's stored tasks.

A candidate is new iff its (source, source_id) key is not already stored.
Only new candidates are inserted; stored tasks are never updated or deleted here,
so a user's status edits survive every re-sync. Within one batch the first
candidate with a given key wins. Manual candidates have no key and are always new.
"""
import logging
from collections import Counter, namedtuple
from typing import Dict, Iterable, List, Optional, Set, Tuple

from goldfish.core import task_store
from goldfish.core.models import Source
from goldfish.sources.base import TaskCandidate, candidate_key

logger = logging.getLogger(__name__)

MergeResult = namedtuple(
    "MergeResult",
    [
        "fetched",          # candidates received
        "inserted",         # rows written
        "already_present",  # key already stored
        "duplicates",       # repeated key within the batch (dropped)
        "failed",           # new candidates whose insert failed
        "by_source",        # {source: inserted count}
        "by_status",        # {status: inserted count}
    ],
    defaults=(0, 0, 0, 0, 0, None, None),
)

MergePlan = namedtuple("MergePlan", ["new", "already_present", "duplicates"])


def _is_manual(candidate: TaskCandidate) -> bool:
    source = candidate.source.value if isinstance(candidate.source, Source) else str(candidate.source)
    return source == Source.MANUAL.value


def _status_value(candidate: TaskCandidate) -> str:
    return getattr(candidate.status, "value", candidate.status)


def plan_merge(candidates: Iterable[TaskCandidate], existing_keys: Set[Tuple[str, str]]) -> MergePlan:
    """Split candidates into new ones (in input order), already-stored, and in-batch duplicates."""
    new: List[TaskCandidate] = []
    seen: Set[Tuple[str, str]] = set()
    already_present = 0
    duplicates = 0
    for candidate in candidates:
        if _is_manual(candidate):
            new.append(candidate)
            continue
        key = candidate_key(candidate)
        if key in existing_keys:
            already_present += 1
        elif key in seen:
            duplicates += 1
            logger.debug(f"Dropping duplicate candidate {key}")
        else:
            seen.add(key)
            new.append(candidate)
    return MergePlan(new, already_present, duplicates)


def _insert_one_by_one(user_id: str, candidates: List[TaskCandidate]) -> List[TaskCandidate]:
    """Fallback path: each insert in its own transaction. Returns the candidates that were written."""
    written = []
    for candidate in candidates:
        try:
            task_store.insert_candidate(user_id, candidate)
            written.append(candidate)
        except Exception as e:
            logger.error(f"Failed to insert task {candidate_key(candidate)} for {user_id}: {e}")
    return written


def merge_candidates(
    user_id: str,
    candidates: List[TaskCandidate],
    existing_keys: Optional[Set[Tuple[str, str]]] = None,
) -> MergeResult:
    """Insert the candidates that are not stored yet. Running it twice on the same input inserts nothing the second time."""
    candidates = list(candidates)
    if existing_keys is None:
        existing_keys = task_store.get_source_keys(user_id)
    plan = plan_merge(candidates, existing_keys)

    written: List[TaskCandidate] = []
    if plan.new:
        try:
            task_store.insert_candidates(user_id, plan.new)
            written = plan.new
        except Exception as e:
            logger.warning(f"Batch insert of {len(plan.new)} task(s) failed for {user_id}, inserting one by one: {e}")
            written = _insert_one_by_one(user_id, plan.new)

    by_source: Dict[str, int] = dict(Counter(candidate_key(c)[0] for c in written))
    by_status: Dict[str, int] = dict(Counter(_status_value(c) for c in written))
    result = MergeResult(
        fetched=len(candidates),
        inserted=len(written),
        already_present=plan.already_present,
        duplicates=plan.duplicates,
        failed=len(plan.new) - len(written),
        by_source=by_source,
        by_status=by_status,
    )
    logger.info(
        f"Merge for {user_id}: fetched={result.fetched} inserted={result.inserted} "
        f"already_present={result.already_present} duplicates={result.duplicates} failed={result.failed}"
    )
    return result
