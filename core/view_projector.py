# core/view_projector.py
"""Filtered, ordered and grouped display lists derived from a store snapshot.

Pure-function module: nothing here mutates the store or the view state.
Filter first, then order, then group. Custom order only takes effect while a
single reference is focused under the ASSOCIATED filter.
"""
from typing import Dict, List, Mapping, Optional, Sequence

from core.entity_store import StoreSnapshot
from core.models import FileGroup, FileRecord, FilterStatus, Reference, SortOrder, ViewState


def _passes_status(f: FileRecord, view: ViewState) -> bool:
    if view.filter_status is FilterStatus.ASSOCIATED:
        focused = view.single_reference_id
        if focused is not None:
            return f.reference_id == focused
        return f.reference_id is not None
    if view.filter_status is FilterStatus.UNASSOCIATED:
        return f.reference_id is None
    return True


def filter_files(files: Sequence[FileRecord], view: ViewState) -> List[FileRecord]:
    """Status filter, then exact rating match (unrated counts as 0)."""
    kept = [f for f in files if _passes_status(f, view)]
    if view.rating_filter is not None:
        kept = [f for f in kept if (f.rating or 0) == view.rating_filter]
    return kept


def sort_by_date(files: Sequence[FileRecord], sort_order: SortOrder) -> List[FileRecord]:
    # sorted() stays stable with reverse=True, so ties keep store order
    return sorted(files, key=lambda f: f.last_modified, reverse=sort_order is SortOrder.DESC)


def order_files(filtered: Sequence[FileRecord], view: ViewState,
                custom_order: Mapping[str, Sequence[str]]) -> List[FileRecord]:
    focused = view.single_reference_id
    order = custom_order.get(focused) if focused is not None else None
    if not order:
        return sort_by_date(filtered, view.sort_order)

    matching = {f.id: f for f in filtered}
    head: List[FileRecord] = []
    placed = set()
    for file_id in order:
        f = matching.get(file_id)
        if f is None or f.reference_id != focused or file_id in placed:
            continue
        head.append(f)
        placed.add(file_id)
    rest = [f for f in filtered if f.id not in placed]
    return head + sort_by_date(rest, view.sort_order)


def group_files(ordered: Sequence[FileRecord], view: ViewState,
                references: Sequence[Reference]) -> List[FileGroup]:
    if not ordered:
        return []

    focused = view.single_reference_id
    if focused is not None:
        ref = next((r for r in references if r.id == focused), None)
        if ref is None:
            return []
        return [FileGroup(files=tuple(ordered), reference=ref)]

    known = {r.id for r in references}
    by_reference: Dict[str, List[FileRecord]] = {}
    unassociated: List[FileRecord] = []
    for f in ordered:
        if f.reference_id is not None and f.reference_id in known:
            by_reference.setdefault(f.reference_id, []).append(f)
        else:
            unassociated.append(f)

    groups: List[FileGroup] = []
    if view.filter_status in (FilterStatus.ALL, FilterStatus.ASSOCIATED):
        for ref in references:
            members = by_reference.get(ref.id)
            if members:
                groups.append(FileGroup(files=tuple(members), reference=ref))
    if view.filter_status in (FilterStatus.ALL, FilterStatus.UNASSOCIATED) and unassociated:
        groups.append(FileGroup(files=tuple(unassociated), is_unassociated=True))
    return groups


def ordered_files(snapshot: StoreSnapshot, view: ViewState) -> List[FileRecord]:
    """The flat filter+order stage, before grouping."""
    return order_files(filter_files(snapshot.files, view), view, snapshot.custom_order)


def project_view(snapshot: StoreSnapshot, view: ViewState) -> List[FileGroup]:
    return group_files(ordered_files(snapshot, view), view, snapshot.references)


def visible_ids(groups: Sequence[FileGroup]) -> List[str]:
    """Flatten groups into the on-screen id sequence used for range selection."""
    return [f.id for group in groups for f in group.files]


def files_for_reference(snapshot: StoreSnapshot, view: ViewState, reference_id: str) -> List[str]:
    """Visible ids associated with *reference_id*, in display order."""
    return [f.id for f in ordered_files(snapshot, view) if f.reference_id == reference_id]


def reference_preview(snapshot: StoreSnapshot, reference_id: str) -> Optional[str]:
    """Preview for a reference tile.

    First entry of the custom order when it is still associated and
    previewable, otherwise the newest associated file that has a preview.
    """
    by_id = snapshot.files_by_id
    order = snapshot.custom_order.get(reference_id)
    if order:
        first = by_id.get(order[0])
        if first is not None and first.reference_id == reference_id and first.has_image_preview:
            return first.preview

    associated = [f for f in snapshot.files if f.reference_id == reference_id]
    for f in sort_by_date(associated, SortOrder.DESC):
        if f.has_image_preview:
            return f.preview
    return None
