from typing import Dict, Hashable, List, Sequence


def split_evenly(total: int, count: int) -> List[int]:
    """Split an integer quantity into ``count`` parts that sum exactly to ``total``.

    Every part gets ``total // count``; the first part also takes the remainder.
    """
    if count <= 0:
        raise ValueError("count must be positive")
    if total < 0:
        raise ValueError("total must be non-negative")
    base = total // count
    remainder = total - base * count
    return [base + remainder] + [base] * (count - 1)


def apportion(owners: Sequence[Hashable], total: int) -> Dict[Hashable, int]:
    """Map each owner (in input order) to its share of ``total``.

    Used for the 100% credit split recorded on task owners and for splitting
    logged minutes between the owners of one task.
    """
    if not owners:
        return {}
    if len(set(owners)) != len(owners):
        raise ValueError("owners must be unique")
    return dict(zip(owners, split_evenly(total, len(owners))))


def share_weight(share_percentage) -> float:
    """0–1 credit fraction for a task owner. A missing share counts as full ownership."""
    if share_percentage is None:
        return 1.0
    return share_percentage / 100
