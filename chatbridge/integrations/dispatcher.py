"""ChatBridge – Outbound Message Dispatcher.

Routes OutboundMessages to the adapter of the account they belong to.
Delivery is best-effort: failures are logged and reported, never retried.
"""

import structlog

from chatbridge.accounts.registry import AccountRegistry
from chatbridge.core.errors import BridgeError
from chatbridge.gateway.schemas import OutboundMessage

logger = structlog.get_logger()


class OutboundDispatcher:
    """Flow: OutboundMessage → look up account → adapter.send_text"""

    def __init__(self, registry: AccountRegistry) -> None:
        self._registry = registry

    async def dispatch(self, account_id: str, message: OutboundMessage) -> bool:
        """Send ``message`` through the account's adapter.

        Returns:
            True if the platform accepted the message.
        """
        session = self._registry.find(account_id)
        if session is None:
            logger.warning("dispatcher.unknown_account", account_id=account_id)
            return False
        if session.platform != message.platform:
            logger.warning(
                "dispatcher.platform_mismatch",
                account_id=account_id,
                account_platform=session.platform.value,
                message_platform=message.platform.value,
            )
            return False

        try:
            await session.adapter.send_text(message.conversation_id, message.content, reply_to=message.reply_to)
        except BridgeError as e:
            logger.error(
                "dispatcher.send_failed",
                account_id=account_id,
                platform=message.platform.value,
                conversation_id=message.conversation_id,
                error=str(e),
            )
            return False

        logger.info(
            "dispatcher.sent",
            account_id=account_id,
            platform=message.platform.value,
            conversation_id=message.conversation_id,
            length=len(message.content),
        )
        return True
