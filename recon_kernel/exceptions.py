"""
Typed Exception Hierarchy for the Reconciliation Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the matcher and the approval workflow need to tell a malformed
rule apart from a lost concurrency race without parsing message strings.

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        service.decide(request_id, approver_id, ApprovalDecision.APPROVE)
    except StaleRequestError as e:
        refresh_and_retry(e.request_id)
    except UnauthorizedApproverError as e:
        api_response(code=e.code, approver=e.approver_id, reason=e.reason)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from ReconKernelError:

    ReconKernelError (base)
    |
    +-- ValidationFailedError
    |   +-- MissingRecordFieldError
    |   +-- InvalidConditionError
    |   +-- InvalidRuleError
    |   +-- InvalidPolicyError
    |   +-- InvalidDecisionError
    |   +-- ConfigValidationError
    |
    +-- NotFoundError
    |   +-- ApprovalRequestNotFoundError
    |   +-- ApproverNotFoundError
    |
    +-- UnauthorizedError
    |   +-- UnauthorizedApproverError
    |
    +-- ConcurrencyError
    |   +-- StaleRequestError
    |   +-- OptimisticLockError
    |   +-- RequestAlreadyPendingError
    |   +-- CandidateAlreadyMatchedError
    |
    +-- PolicyError
    |   +-- NoMatchingPolicyError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | MISSING_RECORD_FIELD        | Record lacks amount or date
                | INVALID_CONDITION           | Unknown field/operator, bad value
                | INVALID_RULE                | Weights do not sum to 1, bad tolerance
                | INVALID_POLICY              | Bad approver level layout
                | INVALID_DECISION            | Delegate without a target, etc.
                | CONFIG_VALIDATION_FAILED    | YAML configuration rejected
----------------|-----------------------------|-----------------------------------------
Not found       | APPROVAL_REQUEST_NOT_FOUND  | Unknown request id
                | APPROVER_NOT_FOUND          | Approver has no entry on the request
----------------|-----------------------------|-----------------------------------------
Unauthorized    | UNAUTHORIZED_APPROVER       | Acting above current level, over limit
----------------|-----------------------------|-----------------------------------------
Concurrency     | STALE_REQUEST               | Decision on non-pending request/entry
                | OPTIMISTIC_LOCK_CONFLICT    | Version compare-and-swap lost
                | REQUEST_ALREADY_PENDING     | Expense already has a pending request
                | CANDIDATE_ALREADY_MATCHED   | Candidate consumed by an earlier match
----------------|-----------------------------|-----------------------------------------
Policy          | NO_MATCHING_POLICY          | No approval policy applies to expense
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Modifying an append-only row

===============================================================================
HANDLING PATTERNS
===============================================================================

1. STALE REQUESTS ARE CONFLICTS, NOT SUCCESSES:

    try:
        service.decide(request_id, approver_id, decision)
    except StaleRequestError:
        request = service.get_request(request_id)  # show the current state

2. MATCHING NEVER RAISES FOR BAD TEXT:

    Scoring degrades to low scores on malformed text.  Only a record
    without amount or date raises MissingRecordFieldError.

3. CONFIGURATION ERRORS SURFACE AT LOAD TIME:

    Unknown condition fields and operators raise InvalidConditionError
    when the rule or policy is built, never during evaluation.
"""


class ReconKernelError(Exception):
    """
    Base exception for all reconciliation kernel errors.

    All subclasses must have a `code` class attribute for
    machine-readable error identification.
    """

    code: str = "RECON_KERNEL_ERROR"


# Validation exceptions


class ValidationFailedError(ReconKernelError):
    """Base exception for malformed input, rules, and policies."""

    code: str = "VALIDATION_FAILED"


class MissingRecordFieldError(ValidationFailedError):
    """A matchable record lacks a field required for scoring."""

    code: str = "MISSING_RECORD_FIELD"

    def __init__(self, record_id: str, field: str):
        self.record_id = record_id
        self.field = field
        super().__init__(f"Record {record_id} is missing required field '{field}'")


class InvalidConditionError(ValidationFailedError):
    """A rule or policy condition references an unknown field or operator."""

    code: str = "INVALID_CONDITION"

    def __init__(self, field: str, operator: str, reason: str):
        self.field = field
        self.operator = operator
        self.reason = reason
        super().__init__(f"Invalid condition {field} {operator}: {reason}")


class InvalidRuleError(ValidationFailedError):
    """A matching rule is structurally invalid."""

    code: str = "INVALID_RULE"

    def __init__(self, rule_id: str, reason: str):
        self.rule_id = rule_id
        self.reason = reason
        super().__init__(f"Invalid matching rule {rule_id}: {reason}")


class InvalidPolicyError(ValidationFailedError):
    """An approval policy or escalation rule is structurally invalid."""

    code: str = "INVALID_POLICY"

    def __init__(self, policy_id: str, reason: str):
        self.policy_id = policy_id
        self.reason = reason
        super().__init__(f"Invalid approval policy {policy_id}: {reason}")


class InvalidDecisionError(ValidationFailedError):
    """A decision call is missing data it needs."""

    code: str = "INVALID_DECISION"

    def __init__(self, request_id: str, decision: str, reason: str):
        self.request_id = request_id
        self.decision = decision
        self.reason = reason
        super().__init__(
            f"Invalid {decision} decision on request {request_id}: {reason}"
        )


class ConfigValidationError(ValidationFailedError):
    """A configuration set failed validation."""

    code: str = "CONFIG_VALIDATION_FAILED"

    def __init__(self, config_id: str, errors: list[str]):
        self.config_id = config_id
        self.errors = list(errors)
        super().__init__(
            f"Configuration {config_id} failed validation:\n"
            + "\n".join(f"  - {e}" for e in self.errors)
        )


# Lookup exceptions


class NotFoundError(ReconKernelError):
    """Base exception for unknown identifiers."""

    code: str = "NOT_FOUND"


class ApprovalRequestNotFoundError(NotFoundError):
    """Approval request with given ID was not found."""

    code: str = "APPROVAL_REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Approval request not found: {request_id}")


class ApproverNotFoundError(NotFoundError):
    """The approver has no entry on the request."""

    code: str = "APPROVER_NOT_FOUND"

    def __init__(self, request_id: str, approver_id: str):
        self.request_id = request_id
        self.approver_id = approver_id
        super().__init__(
            f"Approver {approver_id} is not assigned to request {request_id}"
        )


# Authorization exceptions


class UnauthorizedError(ReconKernelError):
    """Base exception for actors acting without permission."""

    code: str = "UNAUTHORIZED"


class UnauthorizedApproverError(UnauthorizedError):
    """Approver may not take this action on this request (yet)."""

    code: str = "UNAUTHORIZED_APPROVER"

    def __init__(self, request_id: str, approver_id: str, reason: str):
        self.request_id = request_id
        self.approver_id = approver_id
        self.reason = reason
        super().__init__(
            f"Approver {approver_id} cannot act on request {request_id}: {reason}"
        )


# Concurrency exceptions


class ConcurrencyError(ReconKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class StaleRequestError(ConcurrencyError):
    """Decision targets a request or entry that is no longer pending."""

    code: str = "STALE_REQUEST"

    def __init__(self, request_id: str, status: str, reason: str):
        self.request_id = request_id
        self.status = status
        self.reason = reason
        super().__init__(
            f"Stale decision on request {request_id} (status={status}): {reason}"
        )


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            f"expected version {expected_version}, found {actual_version}"
        )


class RequestAlreadyPendingError(ConcurrencyError):
    """The expense already has a pending approval request."""

    code: str = "REQUEST_ALREADY_PENDING"

    def __init__(self, expense_id: str, request_id: str | None = None):
        self.expense_id = expense_id
        self.request_id = request_id
        super().__init__(
            f"Expense {expense_id} already has a pending approval request"
            + (f" ({request_id})" if request_id else "")
        )


class CandidateAlreadyMatchedError(ConcurrencyError):
    """The candidate was already confirmed against another source."""

    code: str = "CANDIDATE_ALREADY_MATCHED"

    def __init__(self, candidate_id: str, source_id: str | None = None):
        self.candidate_id = candidate_id
        self.source_id = source_id
        super().__init__(
            f"Candidate {candidate_id} is already matched"
            + (f" to {source_id}" if source_id else "")
        )


# Policy exceptions


class PolicyError(ReconKernelError):
    """Base exception for approval policy selection errors."""

    code: str = "POLICY_ERROR"


class NoMatchingPolicyError(PolicyError):
    """No active approval policy matched the expense."""

    code: str = "NO_MATCHING_POLICY"

    def __init__(self, expense_id: str, policy_count: int):
        self.expense_id = expense_id
        self.policy_count = policy_count
        super().__init__(
            f"No approval policy matched expense {expense_id} "
            f"({policy_count} policies evaluated)"
        )


# Immutability exceptions


class ImmutabilityError(ReconKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
