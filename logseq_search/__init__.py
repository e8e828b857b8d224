# Logseq Search MCP Server
#
# Modular package structure:
# - config.py: Settings (pydantic-settings) and constants
# - logging.py: structlog configuration
# - utils.py: Error types, regex patterns, tag/property/task helpers, block walk
# - models.py: Corpus models, content records, request/result envelopes
# - provider.py: CorpusProvider protocol and Logseq HTTP API provider
# - graph_files.py: Provider reading a graph directory from disk
# - cache.py: TTL caches and the CachedCorpus read-through layer
# - query.py: Query parser (OR / AND)
# - dates.py: Date query and timestamp parsing
# - evaluator.py: Atomic filters and AND/OR evaluation
# - filters.py: Scope and attribute filters
# - ranking.py: Relevance scoring and sorting
# - pagination.py: Cursor pagination
# - search.py: execute_search entry point
# - tools.py: MCP tool handlers and server factory
# - main.py: Entry point and server initialization
