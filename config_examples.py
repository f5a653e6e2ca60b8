"""
SongCast Server - Configuration Examples
This file shows various configuration options for different scenarios.
"""

import logging
from dataclasses import replace

from media_server import ServerConfig

logger = logging.getLogger(__name__)


# ============================================================================
# Example 1: Basic Configuration (Default)
# ============================================================================
BASIC_CONFIG = ServerConfig(
    SERVER_NAME="SongCast",
    VERSION="1.0",
    PORT=8080,
    LIBRARY_PATH="music",
)


# ============================================================================
# Example 2: Home Library
# ============================================================================
HOME_CONFIG = ServerConfig(
    SERVER_NAME="Home Music Library",
    VERSION="1.0",
    PORT=8080,
    LIBRARY_PATH="~/Music",
    CHUNK_SIZE=128 * 1024,  # Larger reads for a local disk
)


# ============================================================================
# Example 3: Low Power Device (RaspberryPi, NAS)
# ============================================================================
LOW_POWER_CONFIG = ServerConfig(
    SERVER_NAME="Pi Music Server",
    VERSION="1.0",
    PORT=8080,
    LIBRARY_PATH="/srv/music",
    CHUNK_SIZE=16 * 1024,   # Smaller per-request memory footprint
    WRITE_TIMEOUT=15.0,     # Free handles held by stalled clients sooner
)


# ============================================================================
# Example 4: Party Mode (many listeners, slow Wi-Fi)
# ============================================================================
PARTY_CONFIG = ServerConfig(
    SERVER_NAME="Party Speaker Feed",
    VERSION="1.0",
    PORT=8080,
    LIBRARY_PATH="music",
    WRITE_TIMEOUT=60.0,     # Tolerate congested links
    SHUTDOWN_GRACE=5.0,
)


# ============================================================================
# Example 5: Quiet (no mDNS advertisement)
# ============================================================================
QUIET_CONFIG = ServerConfig(
    SERVER_NAME="SongCast",
    VERSION="1.0",
    PORT=8080,
    LIBRARY_PATH="music",
    ENABLE_MDNS=False,
)


CONFIGS = {
    'basic': BASIC_CONFIG,
    'home': HOME_CONFIG,
    'low_power': LOW_POWER_CONFIG,
    'party': PARTY_CONFIG,
    'quiet': QUIET_CONFIG,
}

CONFIG_DESCRIPTIONS = {
    'basic': "Default configuration",
    'home': "Home library in ~/Music",
    'low_power': "RaspberryPi / NAS, small buffers",
    'party': "Many listeners on slow Wi-Fi",
    'quiet': "No mDNS advertisement",
}


# ============================================================================
# Configuration Selection Helper
# ============================================================================
def get_config(name: str) -> ServerConfig:
    """
    Get a configuration by name.

    Args:
        name: Configuration name
               - 'basic': Default configuration
               - 'home': Home library
               - 'low_power': Low power device
               - 'party': Many listeners
               - 'quiet': No mDNS

    Returns:
        A fresh ServerConfig copy; callers may modify it.
        Unknown names fall back to 'basic'.
    """
    if name not in CONFIGS:
        logger.warning(f"Unknown configuration: {name} (available: {', '.join(CONFIGS)})")
        return replace(BASIC_CONFIG)

    return replace(CONFIGS[name])


if __name__ == "__main__":
    # Print available configurations
    print("SongCast Server - Available Configurations\n")

    for name, description in CONFIG_DESCRIPTIONS.items():
        config = get_config(name)
        print(f"- {name:15} - {description}")
        print(f"  Name:    {config.SERVER_NAME}")
        print(f"  Port:    {config.PORT}")
        print(f"  Library: {config.LIBRARY_PATH}")
        print()
