"""
Execution Scheduler — runs a plan's actions in dependency order.

  PENDING -> (dependencies EXECUTED?) -> RUNNING -> EXECUTED | FAILED
  include=false -> SKIPPED

Behavioral Contract:
- Excluded actions are SKIPPED up front and never scheduled
- An action that names a same-batch create instead of a concrete record id
  depends on that create; creates run before their dependents, and
  unrelated actions keep plan order (stable Kahn ordering)
- A dependent of an excluded or unsuccessful action is FAILED with a
  message naming the blocking action, never silently skipped
- One failing action never aborts the pass; actions run one at a time
- Results are reported in original plan order
"""

import logging
from typing import Dict, List

from narrative_engine.execution.executors import ActionExecutor, CreatedById
from narrative_engine.models.actions import ActionKind, NarrativeAction
from narrative_engine.models.plan import (
    ExecutionStatus,
    NarrativeExecutionReport,
    NarrativeExecutionResult,
    NarrativePlan,
)

logger = logging.getLogger(__name__)

SKIPPED_MESSAGE = "Action was not selected for execution."


def get_dependency_action_ids(action: NarrativeAction) -> List[str]:
    kind = action.kind
    if kind == ActionKind.CREATE_ENTITY:
        return []
    if kind == ActionKind.UPDATE_ENTITY:
        if action.selected_target_id or not action.linked_create_action_id:
            return []
        return [action.linked_create_action_id]
    if kind == ActionKind.ADD_CONTACT:
        if action.selected_parent_id or not action.linked_create_action_id:
            return []
        return [action.linked_create_action_id]
    if kind == ActionKind.LINK_COMPANY_CO_INVESTOR:
        dependencies = []
        if not action.selected_company_id and action.company_create_action_id:
            dependencies.append(action.company_create_action_id)
        if not action.selected_co_investor_id and action.co_investor_create_action_id:
            dependencies.append(action.co_investor_create_action_id)
        return dependencies
    raise ValueError(f"Unhandled action kind: {kind}")


def order_actions_for_execution(actions: List[NarrativeAction]) -> List[NarrativeAction]:
    """
    Included actions in a stable topological order.

    Among ready actions the lowest plan index goes first. Anything left
    over by a cycle is appended in plan order.
    """
    included = [a for a in actions if a.include]
    by_id = {a.id: a for a in included}
    index_of = {a.id: i for i, a in enumerate(actions)}

    in_degree: Dict[str, int] = {}
    dependents: Dict[str, List[str]] = {}
    for action in included:
        dependencies = [d for d in get_dependency_action_ids(action) if d in by_id]
        in_degree[action.id] = len(dependencies)
        for dependency_id in dependencies:
            dependents.setdefault(dependency_id, []).append(action.id)

    ready = sorted((a.id for a in included if in_degree[a.id] == 0), key=index_of.get)
    ordered: List[str] = []
    while ready:
        next_id = ready.pop(0)
        ordered.append(next_id)
        for dependent_id in dependents.get(next_id, []):
            in_degree[dependent_id] -= 1
            if in_degree[dependent_id] == 0:
                ready.append(dependent_id)
        ready.sort(key=index_of.get)

    placed = set(ordered)
    ordered.extend(a.id for a in included if a.id not in placed)
    return [by_id[action_id] for action_id in ordered]


def blocked_dependency_message(action: NarrativeAction, dependency_id: str) -> str:
    suffix = f"because dependency {dependency_id} did not execute successfully."
    kind = action.kind
    if kind == ActionKind.UPDATE_ENTITY:
        return f"Cannot update {action.target_name} {suffix}"
    if kind == ActionKind.ADD_CONTACT:
        return f"Cannot link contact {action.contact.name} {suffix}"
    if kind == ActionKind.LINK_COMPANY_CO_INVESTOR:
        return f"Cannot link {action.company_name} and {action.co_investor_name} {suffix}"
    return f"Dependency {dependency_id} did not execute successfully."


def _result(action: NarrativeAction, status: ExecutionStatus, message: str) -> NarrativeExecutionResult:
    return NarrativeExecutionResult(
        action_id=action.id, kind=action.kind, status=status, message=message
    )


class ExecutionScheduler:
    """Executes one plan sequentially against the store."""

    def __init__(self, executor: ActionExecutor):
        self.executor = executor

    def execute_plan(self, plan: NarrativePlan) -> NarrativeExecutionReport:
        created: CreatedById = {}
        results: Dict[str, NarrativeExecutionResult] = {}
        by_id = {a.id: a for a in plan.actions}

        for action in plan.actions:
            if not action.include:
                results[action.id] = _result(action, ExecutionStatus.SKIPPED, SKIPPED_MESSAGE)

        for action in order_actions_for_execution(plan.actions):
            blocking = self._blocking_dependency(action, by_id, results)
            if blocking is not None:
                results[action.id] = _result(
                    action, ExecutionStatus.FAILED, blocked_dependency_message(action, blocking)
                )
                logger.info("Action %s blocked by %s", action.id, blocking)
                continue

            try:
                results[action.id] = self.executor.execute(action, created)
            except Exception as e:
                results[action.id] = _result(action, ExecutionStatus.FAILED, str(e) or "Failed to execute action")
                logger.info("Action %s failed: %s", action.id, e)
                continue
            logger.info("Action %s executed", action.id)

        ordered_results = [
            results.get(a.id) or _result(a, ExecutionStatus.SKIPPED, SKIPPED_MESSAGE)
            for a in plan.actions
        ]
        executed = sum(1 for r in ordered_results if r.status == ExecutionStatus.EXECUTED)
        failed = sum(1 for r in ordered_results if r.status == ExecutionStatus.FAILED)
        skipped = sum(1 for r in ordered_results if r.status == ExecutionStatus.SKIPPED)

        return NarrativeExecutionReport(
            summary=f"Executed {executed}, failed {failed}, skipped {skipped}.",
            executed=executed,
            failed=failed,
            skipped=skipped,
            results=ordered_results,
            created_entities=list(created.values()),
        )

    @staticmethod
    def _blocking_dependency(
        action: NarrativeAction,
        by_id: Dict[str, NarrativeAction],
        results: Dict[str, NarrativeExecutionResult],
    ):
        for dependency_id in get_dependency_action_ids(action):
            dependency = by_id.get(dependency_id)
            if dependency is None:
                continue
            if not dependency.include:
                return dependency_id
            outcome = results.get(dependency_id)
            if outcome is None or outcome.status != ExecutionStatus.EXECUTED:
                return dependency_id
        return None
