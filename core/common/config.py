# common/config.py
import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file at project root
dotenv_path = Path(__file__).parent.parent.parent / ".env"
load_dotenv(dotenv_path=dotenv_path)

# General settings
ENV = os.getenv("ENV", "development")

# Database settings (postgresql://... or sqlite:///path)
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///data/paper_trading.db")

# Logging settings
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", "logs/dexsim.log")

# Market data endpoints
DEXSCREENER_API_URL = os.getenv(
    "DEXSCREENER_API_URL", "https://api.dexscreener.com/token-pairs/v1/solana"
)
# Reference SOL/USD price endpoint
COINDESK_HTTPS_URI = os.getenv("COINDESK_HTTPS_URI", "")

# Simulation configuration file (JSON)
DEFAULT_CONFIG_PATH = Path(
    os.getenv("DEXSIM_CONFIG_PATH", str(Path(__file__).parent.parent / "config" / "default_config.json"))
)
