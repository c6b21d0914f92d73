"""
Directory lookups shared by the summary builders.

Builders read record sets first and then join names in memory with one
read per entity type, so a report never issues per-row queries.
"""

from typing import Dict, Iterable, Mapping, Optional

from kpi_portal.models.enums import TeamMemberRole
from kpi_portal.models.records import Enrollment, Payment, Program, Student, TeamMember
from kpi_portal.repositories.base import Repository


async def load_members(repo: Repository) -> Dict[int, TeamMember]:
    """Every team member keyed by id, inactive ones included (history stays attributable)."""
    return {m.id: m for m in await repo.list_team_members()}


async def load_enrollments(repo: Repository, ids: Iterable[int]) -> Dict[int, Enrollment]:
    wanted = sorted(set(ids))
    if not wanted:
        return {}
    return {e.id: e for e in await repo.list_enrollments(ids=wanted)}


async def load_students(repo: Repository, ids: Iterable[int]) -> Dict[int, Student]:
    wanted = sorted(set(ids))
    if not wanted:
        return {}
    return {s.id: s for s in await repo.list_students(ids=wanted)}


async def load_programs(repo: Repository, ids: Iterable[Optional[int]]) -> Dict[int, Program]:
    wanted = sorted({i for i in ids if i is not None})
    if not wanted:
        return {}
    return {p.id: p for p in await repo.list_programs(ids=wanted)}


def resolve_member(
    members: Mapping[int, TeamMember],
    name: Optional[str],
    role: TeamMemberRole,
) -> Optional[int]:
    """
    Id of the member of `role` whose name matches (case-insensitive, trimmed).

    Returns None when nothing matches.
    """
    if name is None:
        return None
    wanted = " ".join(name.split()).lower()
    for member in sorted(members.values(), key=lambda m: m.id):
        if member.role == role and " ".join(member.name.split()).lower() == wanted:
            return member.id
    return None


def members_with_role(members: Mapping[int, TeamMember], role: TeamMemberRole) -> Dict[int, TeamMember]:
    return {mid: m for mid, m in members.items() if m.role == role}


def payer_email(
    payment: Payment,
    enrollment: Optional[Enrollment],
    students: Mapping[int, Student],
) -> Optional[str]:
    """Email used for source attribution: the payment's payer, else the enrolled student."""
    if payment.payer_email:
        return payment.payer_email
    student = students.get(enrollment.student_id) if enrollment else None
    return student.email if student else None
