"""
Contract State Machine
======================

processing -> active | failed

Only the two functions below write `status`, `analysis_results`,
`analysis_error` and the derived fields of a contract. `active` and `failed`
are terminal: no pipeline transition leaves them. Administrative states
(archived, expired, draft, expiring) are never produced here.
"""

from datetime import datetime
from typing import Dict, Set

from .db.models import Contract, ContractStatus
from .schemas import AnalysisResult


PIPELINE_TRANSITIONS: Dict[ContractStatus, Set[ContractStatus]] = {
    ContractStatus.PROCESSING: {ContractStatus.ACTIVE, ContractStatus.FAILED},
}

DERIVED_FIELDS = (
    "title",
    "counterparty",
    "contract_type",
    "risk_level",
    "value",
    "effective_date",
    "expiry_date",
)


class InvalidTransitionError(ValueError):
    pass


def _check_transition(contract: Contract, target: ContractStatus) -> None:
    current = ContractStatus(contract.status)
    allowed = PIPELINE_TRANSITIONS.get(current, set())
    if target not in allowed:
        raise InvalidTransitionError(
            f"Invalid transition {current.value} -> {target.value} for contract {contract.id}"
        )


def mark_active(contract: Contract, result: AnalysisResult) -> Contract:
    """Attach a validated analysis and move the contract to `active`."""
    _check_transition(contract, ContractStatus.ACTIVE)

    contract.status = ContractStatus.ACTIVE
    contract.analysis_results = result.to_storage()
    contract.analysis_error = None

    contract.title = result.title
    contract.counterparty = result.counterparty
    contract.contract_type = result.contract_type
    contract.risk_level = result.risk_level.value
    contract.value = result.value
    contract.effective_date = result.effective_date
    contract.expiry_date = result.expiry_date

    contract.updated_at = datetime.utcnow()
    return contract


def mark_failed(contract: Contract, diagnostic: str) -> Contract:
    """Record a failed analysis. Clears any previous results."""
    _check_transition(contract, ContractStatus.FAILED)

    contract.status = ContractStatus.FAILED
    contract.analysis_results = None
    contract.analysis_error = diagnostic or "Analysis failed."
    for name in DERIVED_FIELDS:
        setattr(contract, name, None)

    contract.updated_at = datetime.utcnow()
    return contract
