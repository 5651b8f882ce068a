"""Deal workflow module -- stage gate, persistence overlay, controller, router.

Tracks one influencer advertising deal through the fixed stage sequence
(select -> brief -> email -> outreach -> contract/payment -> shoot ->
approval -> payout) and derives the active stage and navigation ceiling from
the deal's independently mutable completion flags.
"""
