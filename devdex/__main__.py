import argparse
import logging
import sys

from llama_index.core import Settings as LlamaSettings

from .core.db.db import DatabaseManager, wait_for_db
from .core.project.project_manager import ProjectManager


def setup_logging(log_level: str = "INFO") -> None:
    """Configure application logging."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )
    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.ERROR)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("psycopg2").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


def build_app(settings):
    """Wire every service from settings and return the FastAPI app."""
    from .api.app import create_app
    from .core.analysis import AnalysisInvoker
    from .core.auth import AdminGate
    from .core.ingestion import FileIngestionService
    from .core.jobs import AnalysisDispatcher, AnalysisJobService
    from .core.model import create_llm
    from .core.oracle import OracleSessionStore
    from .core.storage import create_storage

    db_manager = DatabaseManager(
        settings.database.url,
        echo=settings.database.echo,
        pool_size=settings.database.pool_size,
    )
    wait_for_db(db_manager)
    db_manager.create_tables()

    project_manager = ProjectManager(db_manager)

    storage = create_storage(settings.storage)
    logger.info(f"Storage backend: {storage.name} (bucket={settings.storage.bucket})")
    ingestion = FileIngestionService(
        db_manager,
        storage,
        bucket=settings.storage.bucket,
        storage_required=settings.storage.required,
        max_file_size_mb=settings.ingestion.max_file_size_mb,
    )

    llm = None
    chat_llm = None
    if settings.llm.api_key:
        llm = create_llm(settings.llm)
        chat_llm = create_llm(settings.llm, temperature=settings.llm.chat_temperature)
        LlamaSettings.llm = llm
    else:
        logger.warning(
            f"No API key for LLM provider '{settings.llm.provider}'. "
            "Analysis and Oracle calls will fail until one is configured."
        )

    invoker = AnalysisInvoker(
        llm=llm,
        max_file_chars=settings.analysis.max_file_chars,
        timeout=settings.llm.request_timeout,
    )
    job_service = AnalysisJobService(db_manager, ingestion, invoker)
    reclaimed = job_service.reclaim_stale_jobs()
    if reclaimed:
        logger.warning(f"{reclaimed} analysis run(s) were abandoned by a previous process")
    dispatcher = AnalysisDispatcher(job_service)

    oracle_store = OracleSessionStore(
        chat_llm,
        ingestion=ingestion,
        max_file_chars=settings.oracle.max_file_chars,
        max_input_chars=settings.oracle.max_input_chars,
        idle_minutes=settings.oracle.session_idle_minutes,
        timeout=settings.llm.request_timeout,
    )

    admin_gate = AdminGate(settings.admin.password, settings.admin.session_ttl_hours)
    if settings.admin.password == "change-me":
        logger.warning("Admin password is the default; set DEVDEX_ADMIN_PASSWORD")

    return create_app(
        settings=settings,
        db_manager=db_manager,
        project_manager=project_manager,
        ingestion=ingestion,
        job_service=job_service,
        dispatcher=dispatcher,
        oracle_store=oracle_store,
        admin_gate=admin_gate,
        llm=llm,
        storage=storage,
    )


def main():
    """Main entry point for DevDex."""
    parser = argparse.ArgumentParser(description="DevDex - AI-enriched project catalog")
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port for the API server (defaults to server.port in the config)"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level"
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a devdex.yaml config file"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Debug logging (same as --log-level DEBUG)"
    )
    args = parser.parse_args()

    if args.debug:
        args.log_level = "DEBUG"
    setup_logging(args.log_level)

    from .setting import get_settings
    settings = get_settings(args.config)
    port = args.port or settings.server.port
    logger.info(
        f"Starting DevDex - db={settings.database.url.split('://')[0]}, "
        f"llm={settings.llm.provider}/{settings.llm.model}"
    )

    app = build_app(settings)

    import uvicorn

    logger.info(f"Starting FastAPI server on http://0.0.0.0:{port}")
    print(f"\n  DevDex is running at: http://localhost:{port}")
    print(f"  API docs at: http://localhost:{port}/docs\n")

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=port,
        log_level=args.log_level.lower(),
    )


if __name__ == "__main__":
    main()
