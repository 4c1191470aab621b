"""Component factory for devflow.

Creates and wires the infrastructure (config, database, LLM client, cascade
invoker, chain tracker, activities, history store) and hands back a
workflow engine ready to start or resume runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from devflow.activities.coder import CoderActivity
from devflow.activities.default import DefaultActivities
from devflow.activities.deployer import DeployerActivity
from devflow.activities.notifier import WebhookNotifier
from devflow.activities.planner import PlannerActivity
from devflow.activities.rollback import RollbackActivity
from devflow.chain.tracker import ChainTracker, InMemoryChainStore, PostgresChainStore
from devflow.core.config import (
    AppConfig,
    CascadeRegistry,
    PromptLoader,
    load_cascade_registry,
    load_config,
)
from devflow.db.engine import DatabaseEngine
from devflow.db.repository import Repository
from devflow.llm.cascade import BackendDispatcher, CascadeInvoker
from devflow.llm.client import LLMClient
from devflow.orchestrator.workflow import DevelopFeatureWorkflow, WorkflowPolicy
from devflow.runtime.engine import LocalWorkflowEngine
from devflow.runtime.history import HistoryStore, InMemoryHistoryStore, PostgresHistoryStore
from devflow.runtime.metrics import ActivityMetrics
from devflow.runtime.retry import RetryPolicy

logger = logging.getLogger("devflow.factory")


@dataclass
class ComponentBundle:
    """Container for all initialized components.

    The CLI builds the bundle once and drives the engine; everything else is
    kept here so it can be closed cleanly.
    """

    config: AppConfig
    cascade_registry: CascadeRegistry
    llm_client: LLMClient
    cascade: CascadeInvoker
    chain_tracker: ChainTracker
    notifier: WebhookNotifier
    activities: DefaultActivities
    history_store: HistoryStore
    engine: LocalWorkflowEngine
    policy: WorkflowPolicy
    db_engine: Optional[DatabaseEngine] = None
    repository: Optional[Repository] = None


class ComponentFactory:
    """Factory for creating and wiring devflow.

    Usage:
        bundle = ComponentFactory.create(env="production")
        handle = bundle.engine.start("task-42", workflow_input)
    """

    @staticmethod
    def create(
        config_dir: Optional[Path] = None,
        env: Optional[str] = None,
        api_key: Optional[str] = None,
        initialize_schema: bool = True,
    ) -> ComponentBundle:
        """Create and wire all components.

        Args:
            config_dir: Path to config/ directory. Default: project root/config.
            env: Environment name for config overlay (e.g., "test", "production").
            api_key: OpenRouter API key. Falls back to OPENROUTER_API_KEY env var.
            initialize_schema: Whether to run schema.sql when a database is used.

        Returns:
            ComponentBundle with an engine ready to start or resume runs.
        """
        logger.info("Initializing components...")

        config = load_config(config_dir=config_dir, env=env)
        cascade_registry = load_cascade_registry(config_dir=config_dir)
        logger.info("Config loaded (%d cascade roles)", len(cascade_registry.roles()))

        # --- Database (only when a store lives there) ---
        db_engine = None
        repository = None
        if config.chain.backend == "postgresql" or config.workflow.history_backend == "postgresql":
            db_engine = DatabaseEngine(config.database)
            if initialize_schema:
                db_engine.initialize_schema()
                logger.info("Database schema initialized")
            repository = Repository(db_engine)

        # --- LLM ---
        llm_client = LLMClient(config=config.llm, api_key=api_key)
        cascade = CascadeInvoker(
            cascade_registry,
            BackendDispatcher(llm_client),
            attempt_timeout=config.llm.attempt_timeout_seconds,
            retry_delay=config.llm.retry_delay_seconds,
        )
        logger.info("LLM client configured (base_url=%s)", config.llm.base_url)

        # --- Chain tracking ---
        if config.chain.backend == "postgresql":
            chain_store = PostgresChainStore(repository)
        else:
            chain_store = InMemoryChainStore()
        chain_tracker = ChainTracker(
            chain_store,
            retention_seconds=config.chain.retention_seconds,
            key_prefix=config.chain.key_prefix,
        )

        # --- Activities ---
        prompt_loader = PromptLoader(config_dir / "prompts") if config_dir else PromptLoader()
        notifier = WebhookNotifier(config.notifications)
        activities = DefaultActivities(
            planner=PlannerActivity(cascade, config.project.project_dir, prompt_loader),
            coder=CoderActivity(cascade, config.project, prompt_loader),
            deployer=DeployerActivity(config.project),
            notifier=notifier,
            rollback=RollbackActivity(
                config.project, chain_tracker, loop_threshold=config.workflow.fix_loop_threshold
            ),
        )

        # --- Workflow engine ---
        if config.workflow.history_backend == "postgresql":
            history_store: HistoryStore = PostgresHistoryStore(repository)
        else:
            history_store = InMemoryHistoryStore()

        policy = WorkflowPolicy.from_config(config.workflow, config.notifications.subject_prefix)
        engine = LocalWorkflowEngine(
            workflow_factory=lambda: DevelopFeatureWorkflow(policy),
            activities=activities.as_mapping(),
            store=history_store,
            retry_policy=RetryPolicy.from_config(config.retry),
            metrics=ActivityMetrics(),
        )

        logger.info(
            "All components initialized (chain=%s, history=%s)",
            config.chain.backend, config.workflow.history_backend,
        )

        return ComponentBundle(
            config=config,
            cascade_registry=cascade_registry,
            llm_client=llm_client,
            cascade=cascade,
            chain_tracker=chain_tracker,
            notifier=notifier,
            activities=activities,
            history_store=history_store,
            engine=engine,
            policy=policy,
            db_engine=db_engine,
            repository=repository,
        )

    @staticmethod
    def close(bundle: ComponentBundle) -> None:
        """Cleanly shut down all components."""
        bundle.notifier.close()
        bundle.llm_client.close()
        if bundle.db_engine is not None:
            bundle.db_engine.close()
        logger.info("All components shut down")
