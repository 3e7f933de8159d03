"""Seed prices and per-symbol parameters for the market simulator."""

# Starting prices for the default tracked set
SEED_PRICES: dict[str, float] = {
    "BTCUSDT": 64000.00,
    "ETHUSDT": 3100.00,
    "BNBUSDT": 560.00,
    "ADAUSDT": 0.45,
    "SOLUSDT": 145.00,
    "DOTUSDT": 6.50,
    "LINKUSDT": 14.00,
    "AVAXUSDT": 28.00,
    "MATICUSDT": 0.55,
    "ATOMUSDT": 7.20,
}

# Per-symbol GBM parameters
# sigma: annualized volatility (crypto runs hot)
# mu: annualized drift
SYMBOL_PARAMS: dict[str, dict[str, float]] = {
    "BTCUSDT": {"sigma": 0.55, "mu": 0.10},
    "ETHUSDT": {"sigma": 0.70, "mu": 0.10},
    "BNBUSDT": {"sigma": 0.65, "mu": 0.08},
    "ADAUSDT": {"sigma": 0.90, "mu": 0.05},
    "SOLUSDT": {"sigma": 0.95, "mu": 0.08},
    "DOTUSDT": {"sigma": 0.85, "mu": 0.05},
    "LINKUSDT": {"sigma": 0.85, "mu": 0.06},
    "AVAXUSDT": {"sigma": 0.95, "mu": 0.06},
    "MATICUSDT": {"sigma": 0.90, "mu": 0.04},
    "ATOMUSDT": {"sigma": 0.85, "mu": 0.05},
}

# Default parameters for symbols not in the list above (dynamically added)
DEFAULT_PARAMS: dict[str, float] = {"sigma": 0.90, "mu": 0.05}

# Correlation groups for the simulator's Cholesky decomposition
CORRELATION_GROUPS: dict[str, set[str]] = {
    "majors": {"BTCUSDT", "ETHUSDT", "BNBUSDT"},
    "layer1": {"ADAUSDT", "SOLUSDT", "DOTUSDT", "AVAXUSDT", "ATOMUSDT", "MATICUSDT"},
}

INTRA_MAJORS_CORR = 0.8  # BTC leads, the majors follow closely
INTRA_LAYER1_CORR = 0.7
CROSS_GROUP_CORR = 0.6  # Everything in crypto is correlated with BTC to some degree
DEFAULT_CORR = 0.5  # Unknown symbols

# Spread as a fraction of price, applied half on each side
DEFAULT_SPREAD = 0.0004
