"""Environment-driven settings."""
import os

NETWORK = os.environ.get("CROWDTOKEN_NETWORK", "main")

# WhatsOnChain indexer
WOC_BASE_URL = os.environ.get("WOC_BASE_URL", "https://api.whatsonchain.com/v1/bsv")
WOC_API_KEY = os.environ.get("WOC_API_KEY")
INDEXER_TIMEOUT_SECONDS = float(os.environ.get("INDEXER_TIMEOUT_SECONDS", "10"))

# Heuristic classifier; both thresholds are approximate and meant to be tuned
SCAN_CONCURRENCY = int(os.environ.get("SCAN_CONCURRENCY", "8"))
SMALL_VALUE_THRESHOLD_SATOSHIS = int(os.environ.get("SMALL_VALUE_THRESHOLD_SATOSHIS", "100"))
LONG_SCRIPT_THRESHOLD_BYTES = int(os.environ.get("LONG_SCRIPT_THRESHOLD_BYTES", "100"))

# Campaign ledger
CAMPAIGN_GOAL_SATOSHIS = int(os.environ.get("CAMPAIGN_GOAL_SATOSHIS", "100"))
CAMPAIGN_DB_URL = os.environ.get("CAMPAIGN_DB_URL", "sqlite:///crowdfunding.db")

# Backend wallet
BSV_WALLET_DB = os.environ.get("BSV_WALLET_DB", "/tmp/crowdfund_wallet.db")
