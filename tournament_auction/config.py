"""
Configuration constants for the tournament live auction server.
"""

import os

# Bidding Rules
BID_WINDOW_SECONDS = float(os.getenv('AUCTION_BID_WINDOW_SECONDS', '10'))

# Increment tiers as (current bid threshold, minimum raise).
# The raise for a current bid comes from the highest threshold <= that bid.
INCREMENT_TIERS = [
    (0, 500_000),
    (5_000_000, 1_000_000),
]

# Team Defaults (used when a tournament does not specify its own)
DEFAULT_TEAM_PURSE = 100_000_000
DEFAULT_MIN_ROSTER = 11
DEFAULT_MAX_ROSTER = 16
DEFAULT_BASE_PRICE = 500_000

# Session storage
AUCTION_SESSIONS_DIR = os.getenv('AUCTION_SESSIONS_DIR', 'data/auction_sessions')
AUCTION_EVENTS_DIR = os.getenv('AUCTION_EVENTS_DIR', 'data/auction_events')

# External document store (HTTP). Empty means use the JSON file store.
DOCUMENT_STORE_URL = os.getenv('AUCTION_DOCUMENT_STORE_URL', '')
DOCUMENT_STORE_API_KEY = os.getenv('AUCTION_DOCUMENT_STORE_API_KEY')
DOCUMENT_STORE_TIMEOUT = 10  # seconds per request

# Snapshot save retries
SAVE_MAX_RETRIES = 4
SAVE_BACKOFF_SECONDS = 0.5  # doubled after every failed attempt

# Broadcaster
CLIENT_QUEUE_SIZE = 1000  # outbound messages buffered per client before it is dropped

# Connection roles
ROLE_AUCTIONEER = 'auctioneer'
ROLE_BIDDER = 'bidder'
ROLE_VIEWER = 'viewer'
ROLES = [ROLE_AUCTIONEER, ROLE_BIDDER, ROLE_VIEWER]

# Access tokens. Authentication lives outside this service; these map an
# already-issued token to a role. Bidder tokens are "token:team_id" pairs.
AUCTIONEER_TOKENS = [
    t for t in os.getenv('AUCTION_AUCTIONEER_TOKENS', '').split(',') if t
]
BIDDER_TOKENS = dict(
    pair.split(':', 1)
    for pair in os.getenv('AUCTION_BIDDER_TOKENS', '').split(',')
    if ':' in pair
)
ALLOW_ANONYMOUS_VIEWERS = os.getenv('AUCTION_ALLOW_ANONYMOUS_VIEWERS', '1') == '1'

# Player import
DUPLICATE_MATCH_THRESHOLD = 90  # fuzzy name score (0-100) treated as a duplicate
DUPLICATE_DECISION_TIMEOUT = 60.0  # seconds to wait for an external verdict
DUPLICATE_DEFAULT_DECISION = 'skipExisting'
IMPORT_REQUIRED_COLUMNS = ['name']

# API Server defaults
API_HOST = os.getenv('AUCTION_API_HOST', '127.0.0.1')
API_PORT = int(os.getenv('AUCTION_API_PORT', '8000'))

# Logging
LOG_LEVEL = 'INFO'
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
