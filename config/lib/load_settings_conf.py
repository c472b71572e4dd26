"""Settings configuration loader module.

This module handles loading and parsing of the settings.conf file which contains
the marketplace settings: payment mode, Solana network endpoints, polling
parameters and the storage backend.

The settings file uses INI format with a [DEFAULT] section containing key-value pairs.
Every key is optional; missing keys fall back to DEFAULTS. Any key can also be
overridden by an environment variable with the upper-cased key name
(e.g. PAYMENT_MODE=production).

Example settings.conf:
    [DEFAULT]
    payment_mode = production
    solana_network = solana-devnet
    platform_wallet = 9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin

Raises:
    SettingsError: If the settings file cannot be parsed or values are invalid
"""
from configparser import ConfigParser, Error as ConfigParserError
from pathlib import Path
from typing import Dict, Any, List, Optional
import os


class ConfigValidationError:
    """Helper class to format configuration validation errors"""
    def __init__(self):
        self.invalid: List[str] = []

    def has_errors(self) -> bool:
        """Check if any errors exist"""
        return bool(self.invalid)

    def format_message(self) -> str:
        """Format error message in a clean, readable way"""
        messages = ["Invalid settings:"]
        messages.extend(f"  - {item}" for item in self.invalid)
        return "\n".join(messages)


class SettingsError(Exception):
    """Raised when there are issues loading or parsing the settings configuration."""
    pass


# Default settings
DEFAULTS = {
    'payment_mode': 'mock',  # mock or production
    'solana_network': 'solana-devnet',
    'solana_devnet_rpc': 'https://api.devnet.solana.com',
    'solana_mainnet_rpc': 'https://api.mainnet-beta.solana.com',
    'usdc_mint_devnet': '4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU',
    'usdc_mint_mainnet': 'EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v',
    'mock_default_balance': '1000',
    'mock_tx_id_prefix': 'MOCK',
    'tx_poll_max_attempts': '10',
    'tx_poll_interval_ms': '2000',
    'balance_cache_duration': '30',  # seconds
    'platform_wallet': 'platform-wallet',  # mystery box payments go here
    'storage_backend': 'memory',  # memory or postgres
    'db_url': 'postgresql://postgres@localhost:5432/bazaar',
    'api_host': '0.0.0.0',
    'api_port': '8000',
    'log_level': 'INFO',
}

PAYMENT_MODES = ('mock', 'production')
NETWORKS = ('solana-devnet', 'solana-mainnet')
STORAGE_BACKENDS = ('memory', 'postgres')


def load_settings_conf(settings_path: str = ".", environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Load settings.conf, apply environment overrides and validate.

    Args:
        settings_path: Directory containing settings.conf
        environ: Environment mapping to read overrides from (defaults to os.environ)

    Returns:
        Dictionary containing validated settings

    Raises:
        SettingsError: If parsing or validation fails
    """
    config_path = Path(settings_path) / 'settings.conf'
    settings = dict(DEFAULTS)

    if config_path.exists():
        try:
            parser = ConfigParser()
            parser.read(config_path)
            settings.update(dict(parser['DEFAULT']))
        except ConfigParserError as e:
            raise SettingsError(f"Error parsing settings.conf: {str(e)}")

    environ = os.environ if environ is None else environ
    for key in DEFAULTS:
        value = environ.get(key.upper())
        if value:
            settings[key] = value

    return validate_settings(settings)


def validate_settings(settings: Dict[str, Any]) -> Dict[str, Any]:
    """Validate loaded settings.

    Converts numeric settings and checks ranges and enumerations. All problems
    are collected and reported together.

    Args:
        settings: Dictionary of settings to validate

    Returns:
        Validated and processed settings

    Raises:
        SettingsError: If validation fails
    """
    errors = ConfigValidationError()
    settings = dict(settings)

    def _int(key: str, minimum: int) -> None:
        try:
            settings[key] = int(settings[key])
        except (TypeError, ValueError, KeyError):
            errors.invalid.append(f"{key} must be an integer")
            return
        if settings[key] < minimum:
            errors.invalid.append(f"{key} must be at least {minimum}")

    _int('mock_default_balance', 0)
    _int('tx_poll_max_attempts', 1)
    _int('tx_poll_interval_ms', 100)
    _int('balance_cache_duration', 0)
    _int('api_port', 1)

    settings['payment_mode'] = str(settings.get('payment_mode', '')).lower()
    if settings['payment_mode'] not in PAYMENT_MODES:
        errors.invalid.append(f"payment_mode must be one of {', '.join(PAYMENT_MODES)}")

    if settings.get('solana_network') not in NETWORKS:
        errors.invalid.append(f"solana_network must be one of {', '.join(NETWORKS)}")

    settings['storage_backend'] = str(settings.get('storage_backend', '')).lower()
    if settings['storage_backend'] not in STORAGE_BACKENDS:
        errors.invalid.append(f"storage_backend must be one of {', '.join(STORAGE_BACKENDS)}")

    for key in ('solana_devnet_rpc', 'solana_mainnet_rpc'):
        if not str(settings.get(key, '')).startswith(('http://', 'https://')):
            errors.invalid.append(f"{key} must be an http(s) URL")

    if errors.has_errors():
        raise SettingsError(
            "Settings Configuration Validation Failed\n\n" +
            errors.format_message()
        )

    return settings
