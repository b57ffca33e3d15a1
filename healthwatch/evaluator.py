# healthwatch/evaluator.py
from decimal import Decimal, localcontext

from healthwatch.config import EvaluationConfig
from healthwatch.models import (
    Action, Evaluation, RawAccountData, RiskSnapshot, TrackedAccount,
)

NATIVE_DECIMALS = 18   # v2 getUserAccountData collateral / debt (ETH wei)
BASE_DECIMALS   = 8    # v3 getUserAccountData collateral / debt (USD base currency)
RATIO_DECIMALS  = 18   # health factor is a wad

# uint256 products of wei × price stay well under 78 significant digits
PRECISION = 78


def to_snapshot(raw: RawAccountData, rate: Decimal, pool_version: str = "v2") -> RiskSnapshot:
    """USD view of one account. v2 reports ETH wei and needs the ETH/USD rate; v3 is already USD."""
    with localcontext() as ctx:
        ctx.prec = PRECISION
        if pool_version == "v3":
            collateral = Decimal(raw.total_collateral).scaleb(-BASE_DECIMALS)
            debt       = Decimal(raw.total_debt).scaleb(-BASE_DECIMALS)
        else:
            collateral = Decimal(raw.total_collateral).scaleb(-NATIVE_DECIMALS) * rate
            debt       = Decimal(raw.total_debt).scaleb(-NATIVE_DECIMALS) * rate
        ratio = Decimal(raw.health_factor).scaleb(-RATIO_DECIMALS)
    return RiskSnapshot(collateral_usd=collateral, debt_usd=debt, risk_ratio=ratio)


def evaluate(account: TrackedAccount, raw: RawAccountData, rate: Decimal,
             config: EvaluationConfig) -> Evaluation:
    """Decide what this cycle does with one tracked account.

    DROP wins over everything else. ALERT only fires on the healthy -> breach
    edge (account not yet alerted) and CLEAR only on the breach -> healthy
    edge, so a persisting breach never re-alerts.
    """
    snap = to_snapshot(raw, rate, config.pool_version)

    if snap.debt_usd < config.ignore_threshold:
        action = Action.DROP
    elif (snap.risk_ratio < config.risk_ratio_threshold
          and snap.collateral_usd > config.collateral_upper_threshold
          and not account.alerted):
        action = Action.ALERT
    elif snap.risk_ratio >= config.risk_ratio_threshold and account.alerted:
        action = Action.CLEAR
    else:
        action = Action.NONE

    return Evaluation(address=account.address, snapshot=snap, action=action)
