"""Client-side retry policy for governance commands.

The service never retries on its own. Callers that hit a transient failure
(ConcurrentModification, CommandTimeout) may resubmit; every attempt reloads
the team, so a retried command is re-validated against fresh state rather
than blindly reapplied. State-conflict and permission failures come back
immediately: retrying them without new information reproduces them. So
does a ConcurrentModification on a command pinned to a version, since a
team never returns to an earlier version.
"""

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

import structlog

from guildhall.governance.commands import Command, command_name, pinned_at_submission
from guildhall.governance.errors import ConcurrentModification

if TYPE_CHECKING:
    from guildhall.governance.service import CommandResult, MembershipService

log = structlog.get_logger()


@dataclass
class RetryPolicy:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    base_delay: float = 0.05
    max_delay: float = 1.0
    exponential_base: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Backoff before the attempt following attempt (0-based)."""
        return min(self.base_delay * (self.exponential_base**attempt), self.max_delay)


async def execute_with_retry(
    service: "MembershipService",
    caller_id: str,
    team_id: str,
    command: Command,
    policy: Optional[RetryPolicy] = None,
) -> "CommandResult":
    """Execute a command, retrying transient failures with backoff.

    Args:
        service: MembershipService to run the command on
        caller_id: User issuing the command
        team_id: Target team
        command: Command to run; keep expected_version unset if the caller
            wants retries to apply against whatever state is current
        policy: Retry configuration (uses defaults if None)

    Returns:
        The last CommandResult: success, a non-retryable failure, or the
        transient failure of the final attempt
    """
    policy = policy or RetryPolicy()
    name = command_name(command)

    for attempt in range(policy.max_attempts):
        result = await service.execute(caller_id, team_id, command)
        if result.ok or not result.error.retryable:
            return result
        if isinstance(result.error, ConcurrentModification) and (
            command.expected_version is not None or pinned_at_submission(command)
        ):
            log.info("retry_skipped_stale_version", command=name, team_id=team_id)
            return result

        if attempt < policy.max_attempts - 1:
            delay = policy.delay_for(attempt)
            log.warning(
                "retry_attempt",
                command=name,
                team_id=team_id,
                attempt=attempt + 1,
                max_attempts=policy.max_attempts,
                delay=delay,
                error=result.error.kind.value,
            )
            await asyncio.sleep(delay)
        else:
            log.error(
                "retry_exhausted",
                command=name,
                team_id=team_id,
                attempts=policy.max_attempts,
                error=result.error.kind.value,
            )

    return result
