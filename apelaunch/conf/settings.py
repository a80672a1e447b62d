from pydantic import BaseModel, ConfigDict, model_validator


class LedgerSettings(BaseModel):
    """Protocol constants shared by every blueprint."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    NETWORK_NAME: str

    # All fees are expressed in points out of this denominator.
    FEE_POINTS_DENOMINATOR: int = 10_000

    # Upper bounds for fees configured on a sale setup.
    MAX_TOKEN_FEE_POINTS: int = 2_000
    MAX_PAYMENT_FEE_POINTS: int = 2_000
    MAX_INVESTOR_FEE_POINTS: int = 2_000

    # Fee charged by the bundle manager on split and merge.
    DEFAULT_BUNDLE_FEE_POINTS: int = 100
    MAX_BUNDLE_FEE_POINTS: int = 1_000

    # Vesting schedules.
    MAX_VESTING_WAIT_TIME: int = 9_999
    VESTING_TIME_UNIT: int = 24 * 3600
    VESTING_STEP_BITS: int = 21
    VESTING_WAIT_TIME_BITS: int = 14
    VESTING_WORD_BITS: int = 256
    MAX_VESTING_WORDS: int = 3

    # Allocation word layout: sale id, full amount, remaining amount.
    ALLOCATION_SALE_ID_BITS: int = 32
    ALLOCATION_AMOUNT_BITS: int = 112

    @property
    def VESTING_STEPS_PER_WORD(self) -> int:
        return self.VESTING_WORD_BITS // self.VESTING_STEP_BITS

    @property
    def MAX_VESTING_STEPS(self) -> int:
        return self.VESTING_STEPS_PER_WORD * self.MAX_VESTING_WORDS

    @model_validator(mode="after")
    def _check_layouts(self) -> "LedgerSettings":
        if self.VESTING_WAIT_TIME_BITS + 7 > self.VESTING_STEP_BITS:
            raise ValueError("VESTING_STEP_BITS must hold the wait time and a 7 bit percentage")
        if (1 << self.VESTING_WAIT_TIME_BITS) <= self.MAX_VESTING_WAIT_TIME:
            raise ValueError("VESTING_WAIT_TIME_BITS cannot represent MAX_VESTING_WAIT_TIME")
        if self.ALLOCATION_SALE_ID_BITS + 2 * self.ALLOCATION_AMOUNT_BITS > 256:
            raise ValueError("allocation fields do not fit in a 256 bit word")
        if self.DEFAULT_BUNDLE_FEE_POINTS > self.MAX_BUNDLE_FEE_POINTS:
            raise ValueError("DEFAULT_BUNDLE_FEE_POINTS is above MAX_BUNDLE_FEE_POINTS")
        return self
