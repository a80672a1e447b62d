"""Vesting schedule encoding.

A schedule is a staircase: each step says that once `wait_time` days have
passed since the token listing, `percentage` of the allocation is vested.
Steps are packed into 256-bit words, `VESTING_STEPS_PER_WORD` per word, each
step using `VESTING_STEP_BITS` bits laid out as `wait_time << 7 | percentage`.
Since a valid percentage is never zero, an all-zero slot marks the end of the
schedule.
"""

from typing import Iterable, NamedTuple, Optional, Sequence

from apelaunch.conf.get_settings import get_global_settings
from apelaunch.conf.settings import LedgerSettings
from apelaunch.contracts.exception import ContractFail
from apelaunch.contracts.types import Timestamp

PERCENTAGE_BITS = 7
PERCENTAGE_MASK = (1 << PERCENTAGE_BITS) - 1
SUCCESS_MESSAGE = "Success"


class VestingStep(NamedTuple):
    wait_time: int
    percentage: int


class InvalidVestingSchedule(ContractFail):
    pass


def _as_steps(steps: Iterable[Sequence[int]]) -> list[VestingStep]:
    return [VestingStep(int(step[0]), int(step[1])) for step in steps]


def validate_vesting_steps(steps: Sequence[VestingStep], settings: LedgerSettings) -> None:
    if not steps:
        raise InvalidVestingSchedule("empty vesting schedule")
    if len(steps) > settings.MAX_VESTING_STEPS:
        raise InvalidVestingSchedule("too many vesting steps")

    previous: Optional[VestingStep] = None
    for step in steps:
        if step.wait_time < 0:
            raise InvalidVestingSchedule("waitTime cannot be negative")
        if step.wait_time > settings.MAX_VESTING_WAIT_TIME:
            raise InvalidVestingSchedule(f"waitTime cannot be more than {settings.MAX_VESTING_WAIT_TIME} days")
        if step.percentage <= 0:
            raise InvalidVestingSchedule("percentage must be greater than zero")
        if previous is not None:
            if step.wait_time <= previous.wait_time:
                raise InvalidVestingSchedule("waitTime must be strictly increasing")
            if step.percentage <= previous.percentage:
                raise InvalidVestingSchedule("percentage must be strictly increasing")
        previous = step

    if steps[-1].percentage != 100:
        raise InvalidVestingSchedule("last percentage must be 100")


def pack_vesting_steps(steps: Sequence[VestingStep], settings: LedgerSettings) -> list[int]:
    per_word = settings.VESTING_STEPS_PER_WORD
    words = [0] * ((len(steps) + per_word - 1) // per_word)
    for i, step in enumerate(steps):
        slot = (step.wait_time << PERCENTAGE_BITS) | step.percentage
        words[i // per_word] |= slot << (settings.VESTING_STEP_BITS * (i % per_word))
    return words


def validate_and_pack_vesting_steps(
    steps: Iterable[Sequence[int]],
    settings: Optional[LedgerSettings] = None,
) -> tuple[list[int], str]:
    """Validate a schedule and pack it in the minimum number of words."""
    settings = settings or get_global_settings()
    normalized = _as_steps(steps)
    validate_vesting_steps(normalized, settings)
    return pack_vesting_steps(normalized, settings), SUCCESS_MESSAGE


def unpack_vesting_steps(words: Sequence[int], settings: Optional[LedgerSettings] = None) -> list[VestingStep]:
    settings = settings or get_global_settings()
    slot_mask = (1 << settings.VESTING_STEP_BITS) - 1
    steps: list[VestingStep] = []
    for word in words:
        for i in range(settings.VESTING_STEPS_PER_WORD):
            slot = (word >> (settings.VESTING_STEP_BITS * i)) & slot_mask
            if slot == 0:
                return steps
            steps.append(VestingStep(slot >> PERCENTAGE_BITS, slot & PERCENTAGE_MASK))
    return steps


def calculate_vested_percentage(
    words: Sequence[int],
    list_timestamp: Timestamp,
    timestamp: Timestamp,
    settings: Optional[LedgerSettings] = None,
) -> int:
    """Percentage vested at `timestamp` for a token listed at `list_timestamp`.

    Returns 0 while the token is not listed (`list_timestamp == 0`) or when
    `timestamp` is before the listing.
    """
    settings = settings or get_global_settings()
    if list_timestamp == 0 or timestamp < list_timestamp:
        return 0

    elapsed = (timestamp - list_timestamp) // settings.VESTING_TIME_UNIT
    vested = 0
    for step in unpack_vesting_steps(words, settings):
        if step.wait_time > elapsed:
            break
        vested = step.percentage
    return vested
