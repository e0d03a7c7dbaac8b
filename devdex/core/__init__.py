# Core services are imported from their subpackages directly, e.g.
# `from devdex.core.jobs import AnalysisJobService`, so that
# `devdex.core.db.models` can be used without loading the LLM stack.
