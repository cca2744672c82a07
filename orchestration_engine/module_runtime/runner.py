"""Process entry helper for module executables."""

import logging
import sys
from typing import Callable, Optional, Sequence

from orchestration_engine.config.settings import settings
from orchestration_engine.infrastructure.sql.database import create_db_engine, get_session_factory, init_db
from orchestration_engine.mailbox.sql import SqlMailbox
from orchestration_engine.module_runtime.harness import ExecutionContext, ModuleHarness, parse_execution_context

logger = logging.getLogger(__name__)


def connect_mailbox(database_url: Optional[str] = None) -> SqlMailbox:
    """Mailbox on the same database the daemon uses."""
    engine = create_db_engine(database_url or settings.database_url)
    init_db(engine)
    return SqlMailbox(get_session_factory(engine), capacity=settings.mailbox_capacity)


def run_module(
    factory: Callable[[ExecutionContext, Optional[SqlMailbox]], ModuleHarness],
    argv: Optional[Sequence[str]] = None,
) -> int:
    """Parse argv, build the module and run it until told to stop."""
    logging.basicConfig(
        level=settings.log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    context = parse_execution_context(sys.argv[1:] if argv is None else argv)
    mailbox = connect_mailbox() if context.is_managed else None
    module = factory(context, mailbox)

    interval = float(context.config.get("update_interval", 5.0))
    try:
        module.run(interval)
    except KeyboardInterrupt:
        logger.info(f"[{module.name}] Interrupted")
    return 0
