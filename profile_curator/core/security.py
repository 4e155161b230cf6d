def short_id(value: str | None, visible_chars: int = 8) -> str:
    """
    Shorten an identifier (pubkey, session id, client address) for logging.
    Shows the first few characters followed by ***.
    """
    if not value:
        return "None"
    if len(value) <= visible_chars:
        return value
    return f"{value[:visible_chars]}***"
