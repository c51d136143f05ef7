"""Domain checks on a load profile, run before anything is spawned."""
from typing import List, Optional, Sequence

from core.errors import ConfigIssue, InvalidConfigError
from core.models.config_data import durationCeiling, default_duration_ceilings
from core.models.load_test_config import LoadProfile

MIN_VIRTUAL_USERS = 1
MAX_VIRTUAL_USERS = 10000
MAX_RAMP_UP_TIME = 300
MIN_DURATION = 1
MAX_DURATION = 3600


def max_duration_for(virtual_users: int, ceilings: Sequence[durationCeiling]) -> Optional[int]:
    """Longest duration allowed for this many users, or None above the last tier."""
    for tier in sorted(ceilings, key=lambda c: c.max_users):
        if virtual_users <= tier.max_users:
            return tier.max_duration
    return None


def check_load_profile(load: LoadProfile, ceilings: Optional[Sequence[durationCeiling]] = None) -> List[ConfigIssue]:
    """Return every violated rule (empty list when the profile is acceptable)."""
    if ceilings is None:
        ceilings = default_duration_ceilings()
    issues: List[ConfigIssue] = []

    users_ok = MIN_VIRTUAL_USERS <= load.virtual_users <= MAX_VIRTUAL_USERS
    if not users_ok:
        issues.append(ConfigIssue(
            field="load.virtual_users",
            message=f"Virtual users must be between {MIN_VIRTUAL_USERS} and {MAX_VIRTUAL_USERS:,}",
            code="virtual_users_out_of_range",
        ))

    if not 0 <= load.ramp_up_time <= MAX_RAMP_UP_TIME:
        issues.append(ConfigIssue(
            field="load.ramp_up_time",
            message=f"Ramp-up time must be between 0 and {MAX_RAMP_UP_TIME} seconds",
            code="ramp_up_out_of_range",
        ))

    duration_ok = MIN_DURATION <= load.duration <= MAX_DURATION
    if not duration_ok:
        issues.append(ConfigIssue(
            field="load.duration",
            message=f"Test duration must be between {MIN_DURATION} and {MAX_DURATION} seconds",
            code="duration_out_of_range",
        ))

    if load.ramp_up_time >= load.duration:
        issues.append(ConfigIssue(
            field="load.ramp_up_time",
            message="Ramp-up time must be shorter than the test duration",
            code="ramp_up_exceeds_duration",
        ))

    if users_ok and duration_ok:
        limit = max_duration_for(load.virtual_users, ceilings)
        if limit is None or load.duration > limit:
            issues.append(ConfigIssue(
                field="load.duration",
                message=(
                    f"Test duration too long for {load.virtual_users} virtual users"
                    + (f" (maximum {limit} seconds)" if limit is not None else "")
                ),
                code="duration_exceeds_user_ceiling",
            ))

    return issues


def validate_load_profile(load: LoadProfile, ceilings: Optional[Sequence[durationCeiling]] = None):
    """Raise InvalidConfigError listing every violated rule."""
    issues = check_load_profile(load, ceilings)
    if issues:
        raise InvalidConfigError(issues)
