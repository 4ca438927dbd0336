"""ChatBridge – Account-scoped Redis key factory.

All Redis keys MUST go through this module to ensure account isolation.
No key may be stored without an account prefix.

Key schema:
    a{account_id}:{domain}:{identifier}

Examples:
    awhatsapp-default:answered:false_905551234567@c.us_3EB0C4
    ainstagram-default:claim:aWdfZAG1faW
"""


def redis_key(account_id: str, *parts: str) -> str:
    """Build an account-scoped Redis key.

    Args:
        account_id: Account identifier. Will be prefixed as 'a{id}'.
        *parts:     Key path segments joined with ':'.

    Returns:
        Fully-qualified key string like 'ashop-1:answered:m-42'.
    """
    if not account_id:
        raise ValueError("redis_key requires an account_id")
    if not parts:
        raise ValueError("redis_key requires at least one path part")
    return f"a{account_id}:" + ":".join(str(p) for p in parts)


def answered_key(account_id: str, message_id: str) -> str:
    return redis_key(account_id, "answered", message_id)


def claim_key(account_id: str, message_id: str) -> str:
    return redis_key(account_id, "claim", message_id)
