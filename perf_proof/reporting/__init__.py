"""
perf_proof.reporting: Terminal formatting and flat-file export of performance views.

Works on the payload models produced by ``PerformanceAggregator``; it does
NOT query the database itself.

Modules:
  formatters: ASCII terminal table formatters for Typer CLI commands.
  export    : CSV/JSON flat-file export helpers.
"""
