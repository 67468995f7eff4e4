"""Error taxonomy shared by the LLM layer and the orchestration engine."""

MISSING_API_KEY_MESSAGE = "OpenRouter API Key 未设置。请在全局设置中配置。"
NO_ACTIVE_PERSONA_MESSAGE = "错误：没有活跃的人设参与群聊。请在设置中至少选择一位。"
SERVICE_UNAVAILABLE_MESSAGE = "AI 服务暂时不可用，请稍后重试。"
GENERIC_ERROR_MESSAGE = "发生错误，请重试。"


class PersonaChatError(Exception):
    """Base class; ``str(exc)`` is always safe to show to the user."""

    default_message = GENERIC_ERROR_MESSAGE

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class ConfigurationError(PersonaChatError):
    """Missing or rejected credential. Never retried, never falls back."""

    default_message = MISSING_API_KEY_MESSAGE


class NoActivePersonaError(PersonaChatError):
    default_message = NO_ACTIVE_PERSONA_MESSAGE


class TransientTransportError(PersonaChatError):
    """Network, validation or transform failure reported by the transport."""

    default_message = SERVICE_UNAVAILABLE_MESSAGE


class StreamTimeoutError(TransientTransportError):
    pass


class ServiceUnavailableError(TransientTransportError):
    """Raised once retries and the non-streaming fallback are exhausted."""


class ConversationNotFoundError(PersonaChatError):
    default_message = "会话不存在。"


class ConversationBusyError(PersonaChatError):
    default_message = "该会话正在生成回复，请稍候。"


class PersonaValidationError(PersonaChatError):
    pass


class InvalidSettingsError(PersonaChatError):
    default_message = "会话设置无效。"


def is_recoverable(exc: BaseException) -> bool:
    """Whether a failure before the first fragment may fall back to a plain completion."""
    if isinstance(exc, ConfigurationError):
        return False
    return isinstance(exc, TransientTransportError)


def user_message(exc: BaseException) -> str:
    if isinstance(exc, PersonaChatError):
        return exc.message
    return str(exc) or GENERIC_ERROR_MESSAGE
