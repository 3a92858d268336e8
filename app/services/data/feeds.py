"""Shared feed singleton, reused across API routes and the scheduler for cache efficiency.

NSEQuoteClient keeps its quote cache (15s) and session cookie (10 min) in
memory. Creating new instances per request bypasses both and makes NSE more
likely to rate-limit us, so the API process shares this one.
"""

from app.services.data.nse_feed import NSEQuoteClient

nse_feed = NSEQuoteClient()
