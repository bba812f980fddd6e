"""Shared Solana constants."""

import time

SOL_MINT = "So11111111111111111111111111111111111111112"
SOL_DECIMALS = 9
SOL_IMAGE = (
    "https://raw.githubusercontent.com/solana-labs/token-list/main/assets/mainnet/"
    "So11111111111111111111111111111111111111112/logo.png"
)

USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USDC_DECIMALS = 6

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
RAYDIUM_CLMM_PROGRAM_ID = "CAMMCzo5YL8w4VFF8KVHrK22GGUsp5VTaW7grrKgrWqK"
TOKEN_METADATA_PROGRAM_ID = "metaqbxxUerdq28cj1RbAWkYQm3ybzjb6a8bt518x1s"

INSTRUCTION_LOG_PREFIX = "Program log: Instruction: "

HOUR_SECONDS = 3_600
DAY_SECONDS = 86_400


def unix_now() -> int:
    """Current unix time in whole seconds."""
    return int(time.time())


__all__ = [
    "DAY_SECONDS",
    "HOUR_SECONDS",
    "INSTRUCTION_LOG_PREFIX",
    "RAYDIUM_CLMM_PROGRAM_ID",
    "SOL_DECIMALS",
    "SOL_IMAGE",
    "SOL_MINT",
    "TOKEN_METADATA_PROGRAM_ID",
    "TOKEN_PROGRAM_ID",
    "USDC_DECIMALS",
    "USDC_MINT",
    "unix_now",
]
