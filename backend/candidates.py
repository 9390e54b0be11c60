"""
Candidate list storage.

A room's candidates are persisted in ``rooms.candidates_json`` in one of two
shapes: a flat JSON array shared by every role (the only shape rooms had
before multi-role support) or a JSON object keyed by role name. Both decode
to the same in-memory form, a ``{role: [names]}`` mapping.
"""
import json
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from utils import DEFAULT_ROLE, normalize_name, sanitize_names

RoleCandidates = Dict[str, List[str]]


@dataclass(frozen=True)
class FlatCandidates:
    names: List[str]


@dataclass(frozen=True)
class PerRoleCandidates:
    by_role: RoleCandidates


StoredCandidates = Union[FlatCandidates, PerRoleCandidates]


def parse_stored(candidates_json: Optional[str]) -> Optional[StoredCandidates]:
    if not candidates_json:
        return None
    parsed = json.loads(candidates_json)

    if isinstance(parsed, list):
        names = sanitize_names(parsed)
        return FlatCandidates(names) if names else None

    if isinstance(parsed, dict):
        by_role = {}
        for role, names in parsed.items():
            if not isinstance(names, list):
                continue
            cleaned = sanitize_names(names)
            if cleaned:
                by_role[role] = cleaned
        return PerRoleCandidates(by_role) if by_role else None

    return None


def decode_candidates(candidates_json: Optional[str], roles: List[str]) -> Optional[RoleCandidates]:
    """Decode stored candidates into a per-role mapping.

    A flat list is handed to every role. Roles absent from the result take
    write-ins only.
    """
    stored = parse_stored(candidates_json)
    if stored is None:
        return None
    if isinstance(stored, FlatCandidates):
        return {role: list(stored.names) for role in roles}
    return {role: list(names) for role, names in stored.by_role.items()}


def encode_candidates(role_candidates: Optional[RoleCandidates], roles: List[str]) -> Optional[str]:
    """Encode a per-role mapping for storage.

    The flat array is only written when every role of the room carries the
    exact same list, so decoding gives back the same mapping.
    """
    if not role_candidates:
        return None
    lists = [role_candidates.get(role) for role in roles]
    first = lists[0]
    if first and all(lst == first for lst in lists) and len(role_candidates) == len(roles):
        return json.dumps(first)
    return json.dumps(role_candidates)


def stored_form(candidates_json: Optional[str]):
    """The raw stored value (list, dict or None) as exposed to older clients."""
    stored = parse_stored(candidates_json)
    if stored is None:
        return None
    if isinstance(stored, FlatCandidates):
        return list(stored.names)
    return dict(stored.by_role)


def sanitize_roles(roles) -> List[str]:
    cleaned = sanitize_names(roles if isinstance(roles, list) else [])
    return cleaned or [DEFAULT_ROLE]


def match_role(name: Optional[str], roles: List[str]) -> Optional[str]:
    """Return the room's canonical spelling of ``name``, or None if it is not a role."""
    if not isinstance(name, str) or not name.strip():
        return None
    key = normalize_name(name)
    for role in roles:
        if normalize_name(role) == key:
            return role
    return None


def sanitize_candidate_input(candidates, roles: List[str]) -> Optional[RoleCandidates]:
    """Clean host-supplied candidates into a per-role mapping.

    ``candidates`` is either a flat list applied to every role or a mapping
    from role name to list. Keys that match no role are dropped and roles
    whose list ends up empty are left out.
    """
    result: RoleCandidates = {}
    if isinstance(candidates, list):
        names = sanitize_names(candidates)
        if names:
            result = {role: list(names) for role in roles}
    elif isinstance(candidates, dict):
        for key, names in candidates.items():
            role = match_role(key, roles)
            if role is None or not isinstance(names, list):
                continue
            merged = sanitize_names(result.get(role, []) + list(names))
            if merged:
                result[role] = merged
    return result or None
