"""
Sample managed module.

Counts ticks and sizes its simulated work to the allocation it receives.
Referenced by modules.example.json.
"""

import logging
from typing import Optional

from orchestration_engine.core.models import CapacityAllocation
from orchestration_engine.mailbox.base import Mailbox
from orchestration_engine.module_runtime.harness import ExecutionContext, ModuleHarness
from orchestration_engine.module_runtime.runner import run_module

logger = logging.getLogger(__name__)


class SampleWorker(ModuleHarness):
    def __init__(self, context: ExecutionContext, mailbox: Optional[Mailbox] = None):
        super().__init__(context.config.get("module_name", "sample-worker"), context, mailbox)
        self.batches_run = 0

    def tick(self) -> None:
        batch = int(self.capacity_usage()) or 1
        self.batches_run += batch
        logger.debug(f"[{self.name}] Ran batch of {batch} ({self.batches_run} total)")

    def on_allocation(self, allocation: CapacityAllocation) -> None:
        nodes = ", ".join(f"{node}={amount:.1f}" for node, amount in allocation.per_node_allocation.items())
        logger.info(f"[{self.name}] Allocation {allocation.allocated_total:.1f} ({nodes})")


if __name__ == "__main__":
    raise SystemExit(run_module(SampleWorker))
