"""
Recommendation performance: capture, evaluation and aggregation.

Modules
-------
outcomes       return / win rules, confidence buckets, grace window
stats          median, rounding, grouped statistics, scoreboard ordering
capture        write one entry-price snapshot of a recommendation
backfill       snapshot recommendations that were never captured
price_history  per-run price history cache and exit-price resolution
evaluator      horizon scoring and snapshot status fold
aggregator     overview, scoreboard and outcome listing (read-only)
feedback       track-record summary for the recommendation prompt
demo_seed      deterministic demo history (synthetic prices only)
"""
