"""
Price providers: historical closes and live quotes behind one contract.

Submodules:
  base               : PriceProvider ABC, PricePoint, PriceProviderError
  db_provider        : MockPriceProvider over the product's ideas + price_history
  synthetic_provider : deterministic demo series (no network)
  yahoo_provider     : live chart API over httpx
  factory            : get_price_provider(config, conn, now_fn)
"""
