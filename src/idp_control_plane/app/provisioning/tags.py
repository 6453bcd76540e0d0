"""Reserved stack tag keys and the workload kinds that own them.

Stack tags are the only persisted platform state. The reserved keys form a
closed set under the ``idp:`` prefix.
"""

from __future__ import annotations

from dataclasses import dataclass

TAG_PREFIX = 'idp:'

WORKLOAD_TAG = 'idp:workload'
WORKFLOW_TAG = 'idp:workflow'
PROJECT_ID_TAG = 'idp:projectid'
STAGE_TAG = 'idp:stage'
AUTO_DELETE_TAG = 'idp:auto-delete'

RESERVED_TAG_KEYS = frozenset(
    {WORKLOAD_TAG, WORKFLOW_TAG, PROJECT_ID_TAG, STAGE_TAG, AUTO_DELETE_TAG},
)


@dataclass(frozen=True, slots=True)
class WorkloadKind:
    """Which tag key marks a stack as belonging to this kind of workload."""

    name: str
    tag_key: str
    noun: str

    @property
    def plural(self) -> str:
        return f'{self.name}s'


WORKLOAD = WorkloadKind(name='workload', tag_key=WORKLOAD_TAG, noun='Workload')
WORKFLOW = WorkloadKind(name='workflow', tag_key=WORKFLOW_TAG, noun='Workflow')

KINDS = (WORKLOAD, WORKFLOW)
