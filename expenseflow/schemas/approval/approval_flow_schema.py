from pydantic import BaseModel, validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from expenseflow.models.shared.enums import ApproverType, RuleType, SequenceType, UserRole

class ApprovalStepBase(BaseModel):
    step_order: int
    approver_type: ApproverType
    approver_ref: str  # User id for USER steps, role name for ROLE steps
    can_escalate_in: Optional[int] = None

class ApprovalStepCreate(ApprovalStepBase):
    @validator('step_order')
    def validate_step_order(cls, v):
        if v < 1:
            raise ValueError('step_order must be a positive integer')
        return v

    @validator('approver_ref', pre=True)
    def validate_approver_ref(cls, v, values):
        v = str(v).strip()
        if not v:
            raise ValueError('approver_ref is required')

        approver_type = values.get('approver_type')
        if approver_type == ApproverType.ROLE:
            # Case-sensitive against the role enum
            valid_roles = [r.value for r in UserRole]
            if v not in valid_roles:
                raise ValueError(f'Invalid role: {v}. Must be one of: {", ".join(valid_roles)}')
        elif approver_type == ApproverType.USER:
            if not v.isdigit():
                raise ValueError('approver_ref must be a user id for USER steps')
        return v

    @validator('can_escalate_in')
    def validate_can_escalate_in(cls, v):
        if v is not None and v < 0:
            raise ValueError('can_escalate_in cannot be negative')
        return v

class ApprovalRuleBase(BaseModel):
    rule_type: RuleType
    params: Dict[str, Any]

class ApprovalRuleCreate(ApprovalRuleBase):
    @validator('params')
    def validate_params(cls, v, values):
        rule_type = values.get('rule_type')

        if rule_type == RuleType.PERCENTAGE:
            threshold = v.get('threshold')
            if threshold is None:
                raise ValueError('PERCENTAGE rules need a threshold')
            try:
                float(threshold)
            except (TypeError, ValueError):
                raise ValueError('threshold must be a number')

        elif rule_type == RuleType.SPECIFIC_APPROVER:
            approver_id = v.get('approver_id', v.get('approverId'))
            if approver_id is None:
                raise ValueError('SPECIFIC_APPROVER rules need an approver_id')

        return v

class ApprovalFlowCreate(BaseModel):
    name: str
    steps: List[ApprovalStepCreate]
    rules: List[ApprovalRuleCreate] = []
    sequence_type: SequenceType = SequenceType.SEQUENTIAL
    min_approval_percentage: int = 100

    @validator('name')
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError('Flow name is required')
        return v.strip()

    @validator('steps')
    def validate_steps(cls, v):
        if not v:
            raise ValueError('At least one step is required')
        orders = [s.step_order for s in v]
        if len(orders) != len(set(orders)):
            raise ValueError('step_order values must be unique within a flow')
        return sorted(v, key=lambda s: s.step_order)

    @validator('min_approval_percentage')
    def validate_min_approval_percentage(cls, v):
        if not 1 <= v <= 100:
            raise ValueError('min_approval_percentage must be between 1 and 100')
        return v

class ApprovalFlowUpdate(BaseModel):
    name: Optional[str] = None
    is_active: Optional[bool] = None
    steps: Optional[List[ApprovalStepCreate]] = None
    rules: Optional[List[ApprovalRuleCreate]] = None
    sequence_type: Optional[SequenceType] = None
    min_approval_percentage: Optional[int] = None

    @validator('name')
    def validate_name(cls, v):
        if v is not None and not v.strip():
            raise ValueError('Flow name cannot be empty')
        return v.strip() if v else v

    @validator('steps')
    def validate_steps(cls, v):
        if v is None:
            return v
        if not v:
            raise ValueError('At least one step is required')
        orders = [s.step_order for s in v]
        if len(orders) != len(set(orders)):
            raise ValueError('step_order values must be unique within a flow')
        return sorted(v, key=lambda s: s.step_order)

    @validator('min_approval_percentage')
    def validate_min_approval_percentage(cls, v):
        if v is not None and not 1 <= v <= 100:
            raise ValueError('min_approval_percentage must be between 1 and 100')
        return v

    @property
    def changes_definition(self) -> bool:
        """Steps, rules or sequencing changed, so a new flow version is needed"""
        return any(
            value is not None
            for value in (self.steps, self.rules, self.sequence_type, self.min_approval_percentage)
        )

class ApprovalStepResponse(ApprovalStepBase):
    id: int
    flow_id: int

    class Config:
        from_attributes = True

class ApprovalRuleResponse(ApprovalRuleBase):
    id: int
    flow_id: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class ApprovalFlowResponse(BaseModel):
    id: int
    company_id: int
    name: str
    is_active: bool
    sequence_type: SequenceType
    min_approval_percentage: int
    version: int
    previous_version_id: Optional[int] = None
    steps: List[ApprovalStepResponse] = []
    rules: List[ApprovalRuleResponse] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
