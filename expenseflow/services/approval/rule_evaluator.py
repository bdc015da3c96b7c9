"""
Conditional approval rules

Rules hang off a flow, not a step, and run after every approve decision on
that flow's expenses. The set of rule kinds is closed: each kind has one pure
evaluation function, rules run in creation order and the first one that
returns AUTO_APPROVE wins. HYBRID is reserved and never fires.
"""
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from expenseflow.models.approval.approval_rule import ApprovalRule
from expenseflow.models.shared.enums import RuleOutcome, RuleType

logger = logging.getLogger(__name__)


def _param(params: Dict[str, Any], *names: str, default: Any = None) -> Any:
    """Read a rule parameter under its snake_case or camelCase key"""
    for name in names:
        if params.get(name) is not None:
            return params[name]
    return default


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def evaluate_percentage(params: Dict[str, Any], amount: Any, deciding_user_id: int) -> RuleOutcome:
    # threshold is an amount cutoff, unrelated to the flow's min_approval_percentage
    try:
        threshold = Decimal(str(_param(params, "threshold", default=0)))
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        logger.warning(f"Ignoring PERCENTAGE rule with unusable threshold: {params!r}")
        return RuleOutcome.NONE

    if value < threshold:
        return RuleOutcome.AUTO_APPROVE
    return RuleOutcome.NONE


def evaluate_specific_approver(params: Dict[str, Any], amount: Any, deciding_user_id: int) -> RuleOutcome:
    approver_id = _param(params, "approver_id", "approverId")
    skip_remaining = _as_bool(_param(params, "skip_remaining", "skipRemaining", default=False))

    if approver_id is not None and skip_remaining and str(approver_id) == str(deciding_user_id):
        return RuleOutcome.AUTO_APPROVE
    return RuleOutcome.NONE


def evaluate_hybrid(params: Dict[str, Any], amount: Any, deciding_user_id: int) -> RuleOutcome:
    return RuleOutcome.NONE


RULE_EVALUATORS: Dict[RuleType, Callable[[Dict[str, Any], Any, int], RuleOutcome]] = {
    RuleType.PERCENTAGE: evaluate_percentage,
    RuleType.SPECIFIC_APPROVER: evaluate_specific_approver,
    RuleType.HYBRID: evaluate_hybrid,
}


def evaluate_rules(
    rules: Iterable[ApprovalRule],
    expense: Any,
    deciding_user_id: int
) -> Tuple[RuleOutcome, Optional[ApprovalRule]]:
    """Run rules in order; first AUTO_APPROVE wins. Returns the outcome and the rule that fired."""
    for rule in rules:
        evaluator = RULE_EVALUATORS[RuleType(rule.rule_type)]
        outcome = evaluator(rule.params or {}, expense.amount, deciding_user_id)
        if outcome == RuleOutcome.AUTO_APPROVE:
            return outcome, rule
    return RuleOutcome.NONE, None


class RuleEvaluator:
    """Loads a flow's rules and evaluates them for one decision"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_rules(self, flow_id: int) -> List[ApprovalRule]:
        result = await self.session.execute(
            select(ApprovalRule)
            .where(ApprovalRule.flow_id == flow_id)
            .order_by(ApprovalRule.created_at, ApprovalRule.id)
        )
        return list(result.scalars().all())

    async def evaluate(self, flow_id: Optional[int], expense: Any, deciding_user_id: int) -> RuleOutcome:
        if flow_id is None:
            return RuleOutcome.NONE

        rules = await self.get_rules(flow_id)
        outcome, fired = evaluate_rules(rules, expense, deciding_user_id)

        if fired is not None:
            logger.info(
                f"Rule {fired.id} ({RuleType(fired.rule_type).value}) auto-approved "
                f"expense {expense.id} on decision by user {deciding_user_id}"
            )
        return outcome
