"""
Vault Constants

Fixed-point scales and the hard bounds that governance can never move.
"""

# Fixed-point scales
WAD = 10**18          # 1.0 for rates and health factors
BPS = 10_000          # 100% in basis points

# Fee bounds
MAX_FEE_BPS = 5_000   # 50% of interest

# Timelock bounds (seconds)
ONE_DAY = 24 * 60 * 60
MIN_TIMELOCK = ONE_DAY
MAX_TIMELOCK = 14 * ONE_DAY

# Strategy bounds
MAX_ITERATIONS = 10
MAX_LEVERAGE_BPS = 100_000  # 10x

# Reported by a venue for an account with no debt
NO_DEBT_SAFETY_RATIO = 2**256 - 1
