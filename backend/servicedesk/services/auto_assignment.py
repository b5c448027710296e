"""Technician selection for approved / open tickets."""

from __future__ import annotations

from typing import Iterable
from uuid import UUID

from ..domain import AssignmentCandidate


def is_eligible(
    candidate: AssignmentCandidate,
    *,
    department_id: UUID,
    respect_capacity: bool = False,
) -> bool:
    if not candidate.is_active or not candidate.is_available:
        return False
    if candidate.department_id != department_id:
        return False
    # Non-positive capacity means the technician takes no routed work.
    if candidate.workload_capacity <= 0:
        return False
    if respect_capacity and candidate.current_workload >= candidate.workload_capacity:
        return False
    return True


def rank_candidates(
    candidates: Iterable[AssignmentCandidate],
    *,
    department_id: UUID,
    respect_capacity: bool = False,
) -> list[AssignmentCandidate]:
    """Eligible candidates, least loaded first; equal load ratios fall back to id order."""
    pool = [
        candidate
        for candidate in candidates
        if is_eligible(candidate, department_id=department_id, respect_capacity=respect_capacity)
    ]
    return sorted(pool, key=lambda candidate: (candidate.load_ratio, candidate.technician_id))


def resolve(
    candidates: Iterable[AssignmentCandidate],
    *,
    department_id: UUID,
    respect_capacity: bool = False,
) -> UUID | None:
    """Return the technician to assign, or None when nobody is eligible."""
    ranked = rank_candidates(candidates, department_id=department_id, respect_capacity=respect_capacity)
    if not ranked:
        return None
    return ranked[0].technician_id
