"""Folds batches of externally delivered change events into a shape list.

The persistence channel echoes every write back to every connected engine,
the originator included, so the same "added" event routinely arrives for a
shape that was already inserted optimistically. Applying an event batch is
therefore idempotent for additions.

Conflict policy: the last MODIFIED event processed for an id wins. There is
no timestamp or version comparison, so an update generated earlier in
wall-clock time can overwrite a later one if the channel delivers it last.
"""

import logging
from typing import Iterable, List

from canvas.shape import ChangeEvent, ChangeKind, Shape

logger = logging.getLogger(__name__)


def apply_changes(shapes: List[Shape], events: Iterable[ChangeEvent]) -> List[Shape]:
    """Returns a new shape list with `events` applied strictly in order.

    - ADDED: appended only when no shape with that id exists.
    - MODIFIED: replaces the stored shape wholesale; unknown ids are ignored.
    - REMOVED: drops the shape if present; unknown ids are ignored.

    Never raises on duplicate or missing ids and never mutates `shapes`.
    """
    result = list(shapes)
    index = {s["id"]: i for i, s in enumerate(result)}

    added = modified = removed = 0

    for event in events:
        shape_id = event.shape_id
        position = index.get(shape_id)

        if event.kind == ChangeKind.ADDED:
            if position is not None:
                logger.debug("Skipped duplicate shape: %s", shape_id)
                continue
            index[shape_id] = len(result)
            result.append(event.shape)
            added += 1

        elif event.kind == ChangeKind.MODIFIED:
            if position is None:
                logger.debug("Ignored modification of unknown shape: %s", shape_id)
                continue
            result[position] = event.shape
            modified += 1

        elif event.kind == ChangeKind.REMOVED:
            if position is None:
                continue
            del result[position]
            index = {s["id"]: i for i, s in enumerate(result)}
            removed += 1

    logger.debug(
        "Applied change batch (added: %d, modified: %d, removed: %d)",
        added,
        modified,
        removed,
    )
    return result


def removed_ids(events: Iterable[ChangeEvent]) -> List[str]:
    return [e.shape_id for e in events if e.kind == ChangeKind.REMOVED]
