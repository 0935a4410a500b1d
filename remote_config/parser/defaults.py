"""Documented defaults applied when a field is absent or invalid.

Every scalar field of every section falls back to the value listed here.
The parser never fails a whole section because one field is malformed.
"""

# Game balance
DEFAULT_PLAYER_HEALTH = 100
DEFAULT_PLAYER_SPEED = 5.0
DEFAULT_DIFFICULTY_MULTIPLIER = 1.0
DEFAULT_ENEMY_SPAWN_RATE = 1.0
DEFAULT_EXPERIENCE_MULTIPLIER = 1.0
DEFAULT_CURRENCY_MULTIPLIER = 1.0
DEFAULT_MAX_LEVEL = 50

# Monetization
DEFAULT_ADS_ENABLED = True
DEFAULT_INTERSTITIAL_FREQUENCY = 3
DEFAULT_REWARDED_AD_MULTIPLIER = 2.0
DEFAULT_STARTER_PACK_DISCOUNT = 0.0
DEFAULT_PRICE_TIER = "standard"
DEFAULT_SHOW_OFFER_WALL = False

# Performance
DEFAULT_TARGET_FRAME_RATE = 60
DEFAULT_QUALITY_LEVEL = "medium"
DEFAULT_MAX_PARTICLES = 500
DEFAULT_ENABLE_VSYNC = True
DEFAULT_TEXTURE_QUALITY = "high"

# Debug
DEFAULT_ENABLE_LOGGING = False
DEFAULT_SHOW_FPS = False
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_ENABLE_CHEATS = False

# Live ops
DEFAULT_MESSAGE_PRIORITY = 0

# Rollout and experiment bounds
MIN_PERCENTAGE = 0.0
MAX_PERCENTAGE = 100.0

# Variant reported when a user is not in a variant or a flag is off
CONTROL_VARIANT = "control"
