from datetime import datetime
from fnmatch import fnmatchcase
import re
from typing import Collection, Iterable, List, Optional, Protocol, Sequence

from alps.model import Selector, SelectorKind

TAG_REF_PREFIX = "refs/tags/"

# only "*" is a wildcard, "?" and "[" match themselves
_LITERAL_GLOB_CHARS = re.compile(r"([?\[])")


class MatchableRun(Protocol):
    run_id: int
    name: str
    head_branch: Optional[str]
    workflow_created_at: datetime


def glob_match(value: str, pattern: str) -> bool:
    return fnmatchcase(value, _LITERAL_GLOB_CHARS.sub(r"[\1]", pattern))


def tag_name(ref: Optional[str], tags: Collection[str]) -> Optional[str]:
    """Return the tag a head ref points at, or ``None`` if it is not a tag."""
    if not ref:
        return None
    if ref.startswith(TAG_REF_PREFIX):
        return ref[len(TAG_REF_PREFIX) :]
    if ref in tags:
        return ref
    return None


def selector_matches(
    run: MatchableRun, selector: Selector, tags: Collection[str] = ()
) -> bool:
    if selector.kind == SelectorKind.workflow:
        return run.name is not None and glob_match(run.name, selector.pattern)

    tag = tag_name(run.head_branch, tags)
    if selector.kind == SelectorKind.tag:
        return tag is not None and glob_match(tag, selector.pattern)

    if tag is not None or not run.head_branch:
        return False
    return glob_match(run.head_branch, selector.pattern)


def matches(
    run: MatchableRun, selectors: Iterable[Selector], tags: Collection[str] = ()
) -> bool:
    return any(selector_matches(run, s, tags) for s in selectors)


def filter_runs(
    runs: Iterable[MatchableRun],
    selectors: Sequence[Selector],
    tags: Collection[str] = (),
) -> List[MatchableRun]:
    """Runs matching any selector, unique by run id and newest first."""
    tags = frozenset(tags)
    seen = set()
    selected = []
    for run in runs:
        if run.run_id in seen:
            continue
        if matches(run, selectors, tags):
            seen.add(run.run_id)
            selected.append(run)
    selected.sort(key=lambda r: r.workflow_created_at, reverse=True)
    return selected


def needs_tags(selectors: Iterable[Selector]) -> bool:
    return any(s.kind == SelectorKind.tag for s in selectors)
